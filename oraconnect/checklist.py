"""Run the connection checklist: config, listener, connect."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from .config import AppConfig, ConfigError, resolve_profile
from .connections import ConnectionBackend, ConnectionBackendError
from .diagnostics import Diagnosis, ErrorCategory
from .listener import ListenerStatus, check_listener
from .models import ConnectionProfile

LOG = logging.getLogger(__name__)

STEPS = ("config", "listener", "connect")

StepListener = Callable[["StepResult"], None]
ListenerCheck = Callable[..., ListenerStatus]


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of one checklist step."""

    name: str
    ok: bool
    detail: str
    diagnosis: Diagnosis | None = None
    skipped: bool = False


@dataclass(frozen=True, slots=True)
class ChecklistReport:
    """All step outcomes in order; ``ok`` only when every step passed."""

    steps: tuple[StepResult, ...]
    profile: ConnectionProfile | None = None

    @property
    def ok(self) -> bool:
        return bool(self.steps) and all(step.ok for step in self.steps)

    @property
    def failed_step(self) -> StepResult | None:
        for step in self.steps:
            if not step.ok and not step.skipped:
                return step
        return None


@dataclass
class Checklist:
    """Runs the steps in order and stops at the first failure."""

    backend: ConnectionBackend
    listener_timeout: float = 3.0
    listener_check: ListenerCheck = check_listener
    _listeners: set[StepListener] = field(default_factory=set, init=False, repr=False)

    def subscribe(self, listener: StepListener) -> Callable[[], None]:
        """Receive each step result as soon as it completes."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def run(
        self,
        config: AppConfig,
        *,
        profile_name: str | None = None,
        environ: dict[str, str] | None = None,
    ) -> ChecklistReport:
        steps: list[StepResult] = []
        try:
            profile = resolve_profile(config, profile_name, environ)
        except ConfigError as exc:
            diagnosis = Diagnosis(
                category=ErrorCategory.CONFIGURATION,
                code=None,
                message=str(exc),
                remedy="Set the ORACLE_* environment variables or add them to a .env file (see `oraconnect env`).",
            )
            steps.append(self._record(StepResult("config", False, str(exc), diagnosis)))
            return ChecklistReport(steps=self._with_skipped(steps))
        steps.append(self._record(StepResult("config", True, f"{profile.user}@{profile.dsn}")))

        descriptor = profile.descriptor
        status = self.listener_check(descriptor.host, descriptor.port, timeout=self.listener_timeout)
        if not status.reachable:
            detail = f"{descriptor.host}:{descriptor.port} unreachable: {status.error}"
            steps.append(self._record(StepResult("listener", False, detail, status.diagnosis)))
            return ChecklistReport(steps=self._with_skipped(steps), profile=profile)
        steps.append(
            self._record(
                StepResult("listener", True, f"{descriptor.host}:{descriptor.port} reachable in {status.latency_ms} ms")
            )
        )

        try:
            result = self.backend.probe(profile)
        except ConnectionBackendError as exc:
            steps.append(self._record(StepResult("connect", False, str(exc), exc.diagnosis)))
            return ChecklistReport(steps=tuple(steps), profile=profile)
        version = f", server {result.server_version}" if result.server_version else ""
        steps.append(
            self._record(StepResult("connect", True, f"SELECT 1 returned {result.row} in {result.latency_ms} ms{version}"))
        )
        return ChecklistReport(steps=tuple(steps), profile=profile)

    def _record(self, step: StepResult) -> StepResult:
        LOG.debug("Checklist step finished", extra={"step": step.name, "ok": step.ok})
        for listener in tuple(self._listeners):
            listener(step)
        return step

    def _with_skipped(self, steps: list[StepResult]) -> tuple[StepResult, ...]:
        done = {step.name for step in steps}
        remaining = [
            StepResult(name, False, "skipped", skipped=True)
            for name in STEPS
            if name not in done
        ]
        return tuple(steps) + tuple(remaining)


__all__ = [
    "ChecklistReport",
    "Checklist",
    "STEPS",
    "StepResult",
]
