"""Connection backends that prove a profile can reach the database."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import threading
import time
from typing import Any, Callable, Coroutine, Mapping, Protocol, runtime_checkable

import oracledb

from .diagnostics import Diagnosis, ErrorCategory, diagnose
from .models import ConnectionProfile

LOG = logging.getLogger(__name__)

PROBE_QUERY = "SELECT 1 FROM DUAL"


class ConnectionBackendError(RuntimeError):
    """Raised when a backend cannot connect or the probe query fails."""

    def __init__(self, message: str, diagnosis: Diagnosis) -> None:
        super().__init__(message)
        self.diagnosis = diagnosis


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of one successful connect + ``SELECT 1`` round trip."""

    profile_name: str
    dsn: str
    row: tuple[Any, ...]
    status: str
    latency_ms: int
    server_version: str | None
    connected_at: datetime


ProbeListener = Callable[[ConnectionProfile, ProbeResult], None]


@runtime_checkable
class ConnectionBackend(Protocol):
    """Protocol implemented by connection backends."""

    def probe(self, profile: ConnectionProfile) -> ProbeResult:
        """Connect, run the probe query, and disconnect."""

    def subscribe(self, listener: ProbeListener) -> Callable[[], None]:
        """Subscribe to probe results; returns an unsubscribe handle."""


class _ListenerMixin:
    def __init__(self) -> None:
        self._listeners: set[ProbeListener] = set()

    def subscribe(self, listener: ProbeListener) -> Callable[[], None]:
        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def _emit(self, profile: ConnectionProfile, result: ProbeResult) -> None:
        for listener in tuple(self._listeners):
            listener(profile, result)


class OracledbConnectionBackend(_ListenerMixin):
    """Blocking thin-mode probe via ``oracledb.connect``."""

    def __init__(self, *, connect_timeout: float = 5.0, query: str = PROBE_QUERY) -> None:
        super().__init__()
        self._connect_timeout = connect_timeout
        self._query = query

    def probe(self, profile: ConnectionProfile) -> ProbeResult:
        LOG.info("Probing profile", extra={"profile": profile.name, "dsn": profile.dsn, "user": profile.user})
        started = time.perf_counter()
        try:
            connection = oracledb.connect(**_connect_kwargs(profile, self._connect_timeout))
        except Exception as exc:
            raise _backend_error(profile, "connect to", exc) from exc
        try:
            cursor = connection.cursor()
            try:
                cursor.execute(self._query)
                row = cursor.fetchone()
            finally:
                cursor.close()
            version = getattr(connection, "version", None)
        except Exception as exc:
            raise _backend_error(profile, "query", exc) from exc
        finally:
            try:
                connection.close()
            except Exception:  # pragma: no cover - best effort
                LOG.debug("Ignoring close failure", exc_info=True)
        result = _build_result(profile, row, version, started)
        self._emit(profile, result)
        return result


class AsyncOracledbConnectionBackend(_ListenerMixin):
    """Probe via ``oracledb.connect_async`` on a private event loop thread."""

    def __init__(self, *, connect_timeout: float = 5.0, query: str = PROBE_QUERY) -> None:
        super().__init__()
        self._connect_timeout = connect_timeout
        self._query = query
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name="oraconnect-async-backend",
            daemon=True,
        )
        self._loop_thread.start()

    def probe(self, profile: ConnectionProfile) -> ProbeResult:
        return self._run(self.probe_async(profile))

    async def probe_async(self, profile: ConnectionProfile) -> ProbeResult:
        """Single-await probe usable from any running event loop; notifies subscribers."""

        LOG.info("Probing profile (async)", extra={"profile": profile.name, "dsn": profile.dsn, "user": profile.user})
        started = time.perf_counter()
        try:
            connection = await oracledb.connect_async(**_connect_kwargs(profile, self._connect_timeout))
        except Exception as exc:
            raise _backend_error(profile, "connect to", exc) from exc
        try:
            cursor = connection.cursor()
            try:
                await cursor.execute(self._query)
                row = await cursor.fetchone()
            finally:
                cursor.close()
            version = getattr(connection, "version", None)
        except Exception as exc:
            raise _backend_error(profile, "query", exc) from exc
        finally:
            try:
                await connection.close()
            except Exception:  # pragma: no cover - best effort
                LOG.debug("Ignoring close failure", exc_info=True)
        result = _build_result(profile, row, version, started)
        self._emit(profile, result)
        return result

    def shutdown(self) -> None:
        """Stop the background event loop."""

        if not self._loop.is_running():  # pragma: no cover - already stopped
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=1)

    def _run(self, coro: Coroutine[Any, Any, ProbeResult]) -> ProbeResult:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()


class DemoConnectionBackend(_ListenerMixin):
    """Offline backend returning canned outcomes keyed by profile name."""

    def __init__(
        self,
        failures: Mapping[str, BaseException] | None = None,
        *,
        latency_ms: int = 12,
        server_version: str = "23.5.0.24.7",
    ) -> None:
        super().__init__()
        self._failures = dict(failures or {})
        self._latency_ms = latency_ms
        self._server_version = server_version
        self.calls: list[str] = []

    def probe(self, profile: ConnectionProfile) -> ProbeResult:
        """Simulate a probe; raise the configured failure for this profile."""

        self.calls.append(profile.name)
        failure = self._failures.get(profile.name)
        if failure is not None:
            raise _backend_error(profile, "connect to", failure) from failure
        result = ProbeResult(
            profile_name=profile.name,
            dsn=profile.dsn,
            row=(1,),
            status="Connected (demo)",
            latency_ms=self._latency_ms,
            server_version=self._server_version,
            connected_at=datetime.now(tz=timezone.utc),
        )
        self._emit(profile, result)
        return result


def _connect_kwargs(profile: ConnectionProfile, timeout: float) -> dict[str, object]:
    return {
        "user": profile.user,
        "password": profile.password,
        "dsn": profile.dsn,
        "tcp_connect_timeout": timeout,
    }


def _backend_error(profile: ConnectionProfile, action: str, exc: BaseException) -> ConnectionBackendError:
    diagnosis = diagnose(exc)
    LOG.debug(
        "Probe failed",
        extra={"profile": profile.name, "category": diagnosis.category.value, "code": diagnosis.code},
    )
    return ConnectionBackendError(
        f"Failed to {action} '{profile.name}' ({profile.dsn}): {diagnosis.message}",
        diagnosis,
    )


def _build_result(
    profile: ConnectionProfile,
    row: Any,
    version: str | None,
    started: float,
) -> ProbeResult:
    latency_ms = int((time.perf_counter() - started) * 1000)
    values = tuple(row) if row is not None else ()
    if values != (1,):
        diagnosis = Diagnosis(
            category=ErrorCategory.UNKNOWN,
            code=None,
            message=f"Probe query returned {values!r}, expected (1,).",
            remedy="Check that the probe query ran against the intended database.",
        )
        raise ConnectionBackendError(f"Unexpected probe result for '{profile.name}'", diagnosis)
    return ProbeResult(
        profile_name=profile.name,
        dsn=profile.dsn,
        row=values,
        status="Connected",
        latency_ms=latency_ms,
        server_version=version,
        connected_at=datetime.now(tz=timezone.utc),
    )


__all__ = [
    "AsyncOracledbConnectionBackend",
    "ConnectionBackend",
    "ConnectionBackendError",
    "DemoConnectionBackend",
    "OracledbConnectionBackend",
    "PROBE_QUERY",
    "ProbeListener",
    "ProbeResult",
]
