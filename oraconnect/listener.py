"""TCP reachability check for the database listener."""

from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass

from .diagnostics import Diagnosis, diagnose

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ListenerStatus:
    """Outcome of a single TCP connect to the listener port."""

    host: str
    port: int
    reachable: bool
    latency_ms: int
    error: str | None = None
    diagnosis: Diagnosis | None = None


def check_listener(host: str, port: int, *, timeout: float = 3.0) -> ListenerStatus:
    """Open and close a TCP connection to ``host:port``; never authenticates."""

    started = time.perf_counter()
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except (OSError, UnicodeError) as exc:
        latency_ms = int((time.perf_counter() - started) * 1000)
        diagnosis = diagnose(exc)
        LOG.debug(
            "Listener unreachable",
            extra={"host": host, "port": port, "category": diagnosis.category.value},
        )
        return ListenerStatus(
            host=host,
            port=port,
            reachable=False,
            latency_ms=latency_ms,
            error=str(exc) or type(exc).__name__,
            diagnosis=diagnosis,
        )
    sock.close()
    latency_ms = int((time.perf_counter() - started) * 1000)
    LOG.debug("Listener reachable", extra={"host": host, "port": port, "latency_ms": latency_ms})
    return ListenerStatus(host=host, port=port, reachable=True, latency_ms=latency_ms)


__all__ = ["ListenerStatus", "check_listener"]
