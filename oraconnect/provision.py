"""SQL for creating the application user an operator connects as."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

import oracledb

from .connections import ConnectionBackendError
from .diagnostics import diagnose
from .models import ConnectionProfile

LOG = logging.getLogger(__name__)

DEFAULT_GRANTS: tuple[str, ...] = (
    "CREATE SESSION",
    "CREATE TABLE",
    "CREATE VIEW",
    "CREATE SEQUENCE",
    "CREATE PROCEDURE",
)

_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_$#]{0,127}$")
_PRIVILEGE = re.compile(r"^[A-Za-z_]+( [A-Za-z_]+)*$")


@dataclass(frozen=True, slots=True)
class Statement:
    """A statement plus a printable form with the password masked."""

    sql: str
    display: str


def build_user_statements(
    username: str,
    password: str,
    *,
    tablespace: str = "USERS",
    grants: Sequence[str] = DEFAULT_GRANTS,
) -> tuple[Statement, ...]:
    """Statements an administrator runs in the PDB to create ``username``."""

    user = _identifier(username, "username")
    space = _identifier(tablespace, "tablespace")
    if not password:
        raise ValueError("Password must not be empty.")
    if '"' in password:
        raise ValueError("Password must not contain double quotes.")
    privileges = [_privilege(grant) for grant in grants]

    statements = [
        Statement(
            sql=f'CREATE USER {user} IDENTIFIED BY "{password}" DEFAULT TABLESPACE {space} QUOTA UNLIMITED ON {space}',
            display=f'CREATE USER {user} IDENTIFIED BY "********" DEFAULT TABLESPACE {space} QUOTA UNLIMITED ON {space}',
        )
    ]
    if privileges:
        grant = f"GRANT {', '.join(privileges)} TO {user}"
        statements.append(Statement(sql=grant, display=grant))
    return tuple(statements)


def create_user(
    admin: ConnectionProfile,
    statements: Sequence[Statement],
    *,
    connect_timeout: float = 5.0,
) -> int:
    """Execute ``statements`` as ``admin``; stops at the first failure."""

    try:
        connection = oracledb.connect(
            user=admin.user,
            password=admin.password,
            dsn=admin.dsn,
            tcp_connect_timeout=connect_timeout,
        )
    except Exception as exc:
        diagnosis = diagnose(exc)
        raise ConnectionBackendError(
            f"Failed to connect to '{admin.name}' ({admin.dsn}): {diagnosis.message}", diagnosis
        ) from exc
    executed = 0
    try:
        cursor = connection.cursor()
        try:
            for statement in statements:
                LOG.info("Executing", extra={"statement": statement.display})
                try:
                    cursor.execute(statement.sql)
                except Exception as exc:
                    diagnosis = diagnose(exc)
                    raise ConnectionBackendError(
                        f"Statement failed: {statement.display}: {diagnosis.message}", diagnosis
                    ) from exc
                executed += 1
        finally:
            cursor.close()
    finally:
        connection.close()
    return executed


def _identifier(value: str, label: str) -> str:
    text = (value or "").strip()
    if not _IDENTIFIER.match(text):
        raise ValueError(f"Invalid {label} '{value}': use a letter followed by letters, digits, _, $ or #.")
    return text.upper()


def _privilege(value: str) -> str:
    text = " ".join((value or "").split())
    if not _PRIVILEGE.match(text):
        raise ValueError(f"Invalid privilege '{value}'.")
    return text.upper()


__all__ = [
    "DEFAULT_GRANTS",
    "Statement",
    "build_user_statements",
    "create_user",
]
