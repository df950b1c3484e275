"""Tests for the connection backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import oracledb
import pytest

from oraconnect.connections import (
    AsyncOracledbConnectionBackend,
    ConnectionBackend,
    ConnectionBackendError,
    DemoConnectionBackend,
    OracledbConnectionBackend,
    PROBE_QUERY,
)
from oraconnect.diagnostics import ErrorCategory
from oraconnect.models import ConnectionDescriptor, ConnectionProfile


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def profile() -> ConnectionProfile:
    return ConnectionProfile(
        name="Local",
        descriptor=ConnectionDescriptor(),
        user="app_user",
        password="s3cret",
    )


@dataclass
class _FakeOracleError:
    full_code: str
    message: str


class _FakeCursor:
    def __init__(self, row: tuple[Any, ...] | None) -> None:
        self.row = row
        self.executed: list[str] = []
        self.closed = False

    def execute(self, sql: str) -> None:
        self.executed.append(sql)

    def fetchone(self) -> tuple[Any, ...] | None:
        return self.row

    def close(self) -> None:
        self.closed = True


class _FakeConnection:
    version = "23.5.0.24.7"

    def __init__(self, row: tuple[Any, ...] | None = (1,)) -> None:
        self.cursor_obj = _FakeCursor(row)
        self.closed = False

    def cursor(self) -> _FakeCursor:
        return self.cursor_obj

    def close(self) -> None:
        self.closed = True


class _FakeAsyncCursor:
    def __init__(self, row: tuple[Any, ...] | None) -> None:
        self.row = row
        self.executed: list[str] = []
        self.closed = False

    async def execute(self, sql: str) -> None:
        self.executed.append(sql)

    async def fetchone(self) -> tuple[Any, ...] | None:
        return self.row

    def close(self) -> None:
        self.closed = True


class _FakeAsyncConnection:
    version = "23.5.0.24.7"

    def __init__(self, row: tuple[Any, ...] | None = (1,)) -> None:
        self.cursor_obj = _FakeAsyncCursor(row)
        self.closed = False

    def cursor(self) -> _FakeAsyncCursor:
        return self.cursor_obj

    async def close(self) -> None:
        self.closed = True


def test_backends_satisfy_protocol() -> None:
    assert isinstance(OracledbConnectionBackend(), ConnectionBackend)
    assert isinstance(DemoConnectionBackend(), ConnectionBackend)


def test_sync_probe_runs_select_one(monkeypatch: pytest.MonkeyPatch, profile: ConnectionProfile) -> None:
    connection = _FakeConnection()
    seen: dict[str, Any] = {}

    def _connect(**kwargs: Any) -> _FakeConnection:
        seen.update(kwargs)
        return connection

    monkeypatch.setattr("oraconnect.connections.oracledb.connect", _connect)
    backend = OracledbConnectionBackend(connect_timeout=2.0)
    events: list[str] = []
    backend.subscribe(lambda _profile, result: events.append(result.status))

    result = backend.probe(profile)

    assert result.row == (1,)
    assert result.dsn == "localhost:1521/FREEPDB1"
    assert result.server_version == "23.5.0.24.7"
    assert seen == {
        "user": "app_user",
        "password": "s3cret",
        "dsn": "localhost:1521/FREEPDB1",
        "tcp_connect_timeout": 2.0,
    }
    assert connection.cursor_obj.executed == [PROBE_QUERY]
    assert connection.cursor_obj.closed is True
    assert connection.closed is True
    assert events == ["Connected"]


def test_sync_probe_classifies_auth_failure(monkeypatch: pytest.MonkeyPatch, profile: ConnectionProfile) -> None:
    def _connect(**kwargs: Any) -> None:
        raise oracledb.DatabaseError(_FakeOracleError("ORA-01017", "ORA-01017: invalid credential"))

    monkeypatch.setattr("oraconnect.connections.oracledb.connect", _connect)

    with pytest.raises(ConnectionBackendError) as excinfo:
        OracledbConnectionBackend().probe(profile)

    assert excinfo.value.diagnosis.category is ErrorCategory.INVALID_CREDENTIALS
    assert excinfo.value.diagnosis.is_authentication
    assert "s3cret" not in str(excinfo.value)


def test_sync_probe_classifies_network_failure(monkeypatch: pytest.MonkeyPatch, profile: ConnectionProfile) -> None:
    def _connect(**kwargs: Any) -> None:
        raise oracledb.OperationalError(
            _FakeOracleError("DPY-6005", "DPY-6005: cannot connect to database. [Errno 111] Connection refused")
        )

    monkeypatch.setattr("oraconnect.connections.oracledb.connect", _connect)

    with pytest.raises(ConnectionBackendError) as excinfo:
        OracledbConnectionBackend().probe(profile)

    assert excinfo.value.diagnosis.category is ErrorCategory.LISTENER_UNAVAILABLE
    assert excinfo.value.diagnosis.is_network


def test_sync_probe_rejects_unexpected_row(monkeypatch: pytest.MonkeyPatch, profile: ConnectionProfile) -> None:
    connection = _FakeConnection(row=None)
    monkeypatch.setattr("oraconnect.connections.oracledb.connect", lambda **kwargs: connection)

    with pytest.raises(ConnectionBackendError) as excinfo:
        OracledbConnectionBackend().probe(profile)

    assert excinfo.value.diagnosis.category is ErrorCategory.UNKNOWN
    assert connection.closed is True


def test_sync_probe_closes_connection_when_query_fails(
    monkeypatch: pytest.MonkeyPatch, profile: ConnectionProfile
) -> None:
    connection = _FakeConnection()

    def _boom(sql: str) -> None:
        raise oracledb.DatabaseError(_FakeOracleError("ORA-00942", "ORA-00942: table or view does not exist"))

    connection.cursor_obj.execute = _boom  # type: ignore[method-assign]
    monkeypatch.setattr("oraconnect.connections.oracledb.connect", lambda **kwargs: connection)

    with pytest.raises(ConnectionBackendError) as excinfo:
        OracledbConnectionBackend().probe(profile)

    assert excinfo.value.diagnosis.code == "ORA-00942"
    assert connection.cursor_obj.closed is True
    assert connection.closed is True


def test_async_backend_probes_on_its_own_loop(monkeypatch: pytest.MonkeyPatch, profile: ConnectionProfile) -> None:
    connection = _FakeAsyncConnection()

    async def _connect_async(**kwargs: Any) -> _FakeAsyncConnection:
        return connection

    monkeypatch.setattr("oraconnect.connections.oracledb.connect_async", _connect_async)
    backend = AsyncOracledbConnectionBackend()
    events: list[tuple[Any, ...]] = []
    backend.subscribe(lambda _profile, result: events.append(result.row))

    try:
        result = backend.probe(profile)
    finally:
        backend.shutdown()

    assert result.row == (1,)
    assert connection.cursor_obj.executed == [PROBE_QUERY]
    assert connection.cursor_obj.closed is True
    assert connection.closed is True
    assert events == [(1,)]


@pytest.mark.anyio
async def test_single_await_closes_cursor_and_notifies(monkeypatch: pytest.MonkeyPatch, profile: ConnectionProfile) -> None:
    connection = _FakeAsyncConnection()

    async def _connect_async(**kwargs: Any) -> _FakeAsyncConnection:
        return connection

    monkeypatch.setattr("oraconnect.connections.oracledb.connect_async", _connect_async)
    backend = AsyncOracledbConnectionBackend()
    events: list[str] = []
    backend.subscribe(lambda _profile, result: events.append(result.status))

    try:
        result = await backend.probe_async(profile)
    finally:
        backend.shutdown()

    assert result.status == "Connected"
    assert connection.cursor_obj.closed is True
    assert connection.closed is True
    assert events == ["Connected"]


def test_async_backend_surfaces_connection_errors(monkeypatch: pytest.MonkeyPatch, profile: ConnectionProfile) -> None:
    async def _broken(**kwargs: Any) -> None:
        raise oracledb.DatabaseError(_FakeOracleError("ORA-12170", "ORA-12170: TNS:Connect timeout occurred"))

    monkeypatch.setattr("oraconnect.connections.oracledb.connect_async", _broken)
    backend = AsyncOracledbConnectionBackend()

    try:
        with pytest.raises(ConnectionBackendError) as excinfo:
            backend.probe(profile)
    finally:
        backend.shutdown()

    assert excinfo.value.diagnosis.category is ErrorCategory.NETWORK_TIMEOUT


def test_demo_backend_returns_canned_results(profile: ConnectionProfile) -> None:
    backend = DemoConnectionBackend(
        {"Broken": oracledb.DatabaseError(_FakeOracleError("ORA-12541", "ORA-12541: TNS:no listener"))}
    )
    broken = ConnectionProfile(name="Broken", descriptor=ConnectionDescriptor(port=1599), user="u", password="p")

    result = backend.probe(profile)

    assert result.row == (1,)
    with pytest.raises(ConnectionBackendError) as excinfo:
        backend.probe(broken)
    assert excinfo.value.diagnosis.category is ErrorCategory.LISTENER_UNAVAILABLE
    assert backend.calls == ["Local", "Broken"]
