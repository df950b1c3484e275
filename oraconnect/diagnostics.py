"""Map Oracle and network errors to operator-facing diagnoses."""

from __future__ import annotations

import re
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

import oracledb


class ErrorCategory(str, Enum):
    """Coarse failure classes shown to the operator."""

    LISTENER_UNAVAILABLE = "listener_unavailable"
    SERVICE_UNKNOWN = "service_unknown"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    PASSWORD_EXPIRED = "password_expired"
    NAME_RESOLUTION = "name_resolution"
    NETWORK_TIMEOUT = "network_timeout"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


_NETWORK = {
    ErrorCategory.LISTENER_UNAVAILABLE,
    ErrorCategory.NAME_RESOLUTION,
    ErrorCategory.NETWORK_TIMEOUT,
}
_AUTHENTICATION = {
    ErrorCategory.INVALID_CREDENTIALS,
    ErrorCategory.ACCOUNT_LOCKED,
    ErrorCategory.PASSWORD_EXPIRED,
}


@dataclass(frozen=True, slots=True)
class TroubleshootingEntry:
    """One row of the troubleshooting table."""

    category: ErrorCategory
    summary: str
    remedy: str


@dataclass(frozen=True, slots=True)
class Diagnosis:
    """Classified failure with the manual remedy for it."""

    category: ErrorCategory
    code: str | None
    message: str
    remedy: str

    @property
    def is_network(self) -> bool:
        return self.category in _NETWORK

    @property
    def is_authentication(self) -> bool:
        return self.category in _AUTHENTICATION


_LISTENER_REMEDY = (
    "Start the listener (lsnrctl start, or the OracleOraDB23Home1TNSListener Windows service) "
    "and confirm the port with lsnrctl status. Check that a firewall rule allows the port."
)
_SERVICE_REMEDY = (
    "Run lsnrctl status and use one of the services it lists (FREEPDB1 for the pluggable "
    "database, FREE for the container). Open the PDB if it is mounted: "
    "ALTER PLUGGABLE DATABASE FREEPDB1 OPEN."
)
_CREDENTIALS_REMEDY = (
    "Check ORACLE_USER and ORACLE_PASSWORD. Users created in the PDB must connect to the PDB "
    "service, not the container."
)
_RESOLUTION_REMEDY = (
    "Use host:port/service (EZConnect) instead of a TNS alias, or fix the host name. "
    "Try 127.0.0.1 if localhost does not resolve."
)
_TIMEOUT_REMEDY = (
    "Confirm the host is reachable and the port is open (Test-NetConnection host -Port 1521 "
    "on Windows). Add an inbound firewall rule for TCP 1521 when connecting remotely."
)

TROUBLESHOOTING: Mapping[str, TroubleshootingEntry] = {
    "ORA-12541": TroubleshootingEntry(
        ErrorCategory.LISTENER_UNAVAILABLE, "No listener at the given host and port.", _LISTENER_REMEDY
    ),
    "DPY-6005": TroubleshootingEntry(
        ErrorCategory.LISTENER_UNAVAILABLE, "Cannot connect to the database (thin mode).", _LISTENER_REMEDY
    ),
    "ORA-12514": TroubleshootingEntry(
        ErrorCategory.SERVICE_UNKNOWN, "Listener does not know the requested service.", _SERVICE_REMEDY
    ),
    "DPY-6001": TroubleshootingEntry(
        ErrorCategory.SERVICE_UNKNOWN, "Service is not registered with the listener.", _SERVICE_REMEDY
    ),
    "ORA-01017": TroubleshootingEntry(
        ErrorCategory.INVALID_CREDENTIALS, "Invalid username or password.", _CREDENTIALS_REMEDY
    ),
    "ORA-28000": TroubleshootingEntry(
        ErrorCategory.ACCOUNT_LOCKED,
        "The account is locked.",
        "As an administrator run ALTER USER <name> ACCOUNT UNLOCK.",
    ),
    "ORA-28001": TroubleshootingEntry(
        ErrorCategory.PASSWORD_EXPIRED,
        "The password has expired.",
        "As an administrator run ALTER USER <name> IDENTIFIED BY <new password>.",
    ),
    "ORA-12154": TroubleshootingEntry(
        ErrorCategory.NAME_RESOLUTION, "Could not resolve the connect identifier.", _RESOLUTION_REMEDY
    ),
    "DPY-4026": TroubleshootingEntry(
        ErrorCategory.NAME_RESOLUTION, "tnsnames.ora was not found.", _RESOLUTION_REMEDY
    ),
    "DPY-4027": TroubleshootingEntry(
        ErrorCategory.NAME_RESOLUTION, "No configuration directory for TNS aliases.", _RESOLUTION_REMEDY
    ),
    "ORA-12170": TroubleshootingEntry(
        ErrorCategory.NETWORK_TIMEOUT, "Connect timeout occurred.", _TIMEOUT_REMEDY
    ),
    "DPY-4011": TroubleshootingEntry(
        ErrorCategory.NETWORK_TIMEOUT, "The database or network closed the connection.", _TIMEOUT_REMEDY
    ),
}

_CODE_PATTERN = re.compile(r"\b(ORA|DPY|DPI|TNS)-(\d{4,5})\b")
_REFUSED_HINTS = ("refused", "10061", "errno 111")
_RESOLUTION_HINTS = ("getaddrinfo", "name or service not known", "nodename nor servname", "11001")
_TIMEOUT_HINTS = ("timed out", "timeout", "10060")


def diagnose_code(code: str, message: str | None = None) -> Diagnosis:
    """Look up a code such as ``ORA-01017`` in the troubleshooting table."""

    normalized = code.strip().upper()
    entry = TROUBLESHOOTING.get(normalized)
    if entry is None:
        return Diagnosis(
            category=ErrorCategory.UNKNOWN,
            code=normalized or None,
            message=message or f"Unrecognised error code {normalized}.",
            remedy="Search the Oracle error reference for the code and check the alert log.",
        )
    category = entry.category
    remedy = entry.remedy
    if normalized == "DPY-6005" and message:
        # Thin mode wraps every socket failure in DPY-6005; the OS text says which one.
        category, remedy = _refine_socket_failure(message, category, remedy)
    return Diagnosis(category=category, code=normalized, message=message or entry.summary, remedy=remedy)


def diagnose(exc: BaseException) -> Diagnosis:
    """Classify an exception raised while reaching the database."""

    if isinstance(exc, oracledb.Error):
        return _diagnose_oracle(exc)
    if isinstance(exc, socket.gaierror):
        return Diagnosis(ErrorCategory.NAME_RESOLUTION, None, str(exc), _RESOLUTION_REMEDY)
    if isinstance(exc, UnicodeError):
        # Host names that cannot be IDNA-encoded never reach DNS.
        return Diagnosis(ErrorCategory.NAME_RESOLUTION, None, f"Invalid host name: {exc}", _RESOLUTION_REMEDY)
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return Diagnosis(ErrorCategory.NETWORK_TIMEOUT, None, str(exc) or "timed out", _TIMEOUT_REMEDY)
    if isinstance(exc, ConnectionRefusedError):
        return Diagnosis(ErrorCategory.LISTENER_UNAVAILABLE, None, str(exc), _LISTENER_REMEDY)
    if isinstance(exc, OSError):
        category, remedy = _refine_socket_failure(str(exc), ErrorCategory.UNKNOWN, "Check network connectivity.")
        return Diagnosis(category, None, str(exc), remedy)
    match = _CODE_PATTERN.search(str(exc))
    if match:
        return diagnose_code(match.group(0), str(exc))
    return Diagnosis(
        category=ErrorCategory.UNKNOWN,
        code=None,
        message=str(exc) or type(exc).__name__,
        remedy="Re-run with -v for details.",
    )


def _diagnose_oracle(exc: oracledb.Error) -> Diagnosis:
    error = exc.args[0] if exc.args else None
    message = getattr(error, "message", None) or str(exc)
    code = getattr(error, "full_code", None)
    if not code:
        match = _CODE_PATTERN.search(message)
        code = match.group(0) if match else None
    if code:
        diagnosis = diagnose_code(code, message)
        if diagnosis.category is ErrorCategory.UNKNOWN:
            # Unlisted codes may still carry a recognisable socket failure.
            category, remedy = _refine_socket_failure(message, diagnosis.category, diagnosis.remedy)
            return Diagnosis(category, diagnosis.code, message, remedy)
        return diagnosis
    category, remedy = _refine_socket_failure(message, ErrorCategory.UNKNOWN, "Re-run with -v for details.")
    return Diagnosis(category, None, message, remedy)


def _refine_socket_failure(
    message: str,
    category: ErrorCategory,
    remedy: str,
) -> tuple[ErrorCategory, str]:
    text = message.lower()
    if any(hint in text for hint in _RESOLUTION_HINTS):
        return ErrorCategory.NAME_RESOLUTION, _RESOLUTION_REMEDY
    if any(hint in text for hint in _TIMEOUT_HINTS):
        return ErrorCategory.NETWORK_TIMEOUT, _TIMEOUT_REMEDY
    if any(hint in text for hint in _REFUSED_HINTS):
        return ErrorCategory.LISTENER_UNAVAILABLE, _LISTENER_REMEDY
    return category, remedy


__all__ = [
    "Diagnosis",
    "ErrorCategory",
    "TROUBLESHOOTING",
    "TroubleshootingEntry",
    "diagnose",
    "diagnose_code",
]
