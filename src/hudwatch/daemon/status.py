"""Daemon status reporting and recovery pacing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from .probe import DaemonHealth, ProbeConnectionError, ProbeError, ProbeTimeoutError


@dataclass(frozen=True, slots=True)
class DaemonStatus:
    """Point-in-time view of the agent, produced fresh on every supervision cycle."""

    enabled: bool
    healthy: bool
    message: str
    pid: int | None = None
    version: str | None = None

    @classmethod
    def disabled(cls) -> "DaemonStatus":
        return cls(enabled=False, healthy=False, message="Daemon disabled")

    @classmethod
    def unavailable(cls) -> "DaemonStatus":
        return cls(enabled=True, healthy=False, message="Daemon unavailable")

    @classmethod
    def from_health(cls, health: DaemonHealth) -> "DaemonStatus":
        return cls(
            enabled=True,
            healthy=health.ok,
            message=health.status,
            pid=health.pid,
            version=health.version,
        )


class DaemonStatusEvaluator:
    """Turns raw probe outcomes into user-facing status without flapping.

    Failures inside the startup grace window, and isolated failures after it,
    produce ``None`` so the caller keeps showing the previous status.
    """

    def __init__(
        self,
        *,
        startup_grace: timedelta = timedelta(seconds=20),
        failures_before_offline: int = 2,
    ) -> None:
        self._startup_grace = startup_grace
        self._failures_before_offline = failures_before_offline
        self.startup_deadline: datetime | None = None
        self.consecutive_failures = 0

    def note_startup(self, now: datetime) -> None:
        self.startup_deadline = now + self._startup_grace
        self.consecutive_failures = 0

    def begin_startup(self, current: DaemonStatus | None, now: datetime) -> DaemonStatus | None:
        self.note_startup(now)
        if current is None:
            return None
        if current.enabled and not current.healthy:
            return None
        return current

    def evaluate(
        self,
        *,
        enabled: bool,
        health: DaemonHealth | None,
        now: datetime,
    ) -> DaemonStatus | None:
        """Return the status to show, or ``None`` to keep the current one."""

        if not enabled:
            self.consecutive_failures = 0
            return DaemonStatus.disabled()

        if health is not None:
            self.consecutive_failures = 0
            return DaemonStatus.from_health(health)

        if self.startup_deadline is not None and now < self.startup_deadline:
            return None
        self.consecutive_failures += 1
        if self.consecutive_failures < self._failures_before_offline:
            return None
        return DaemonStatus.unavailable()


class DaemonRecoveryDecider:
    """Decides when an IPC failure should trigger another ``ensure_running``."""

    def __init__(self, cooldown: timedelta = timedelta(seconds=20)) -> None:
        self._cooldown = cooldown
        self.last_attempt_at: datetime | None = None

    def should_attempt_recovery(self, error: BaseException, now: datetime) -> bool:
        if not is_recoverable(error):
            return False
        if self.last_attempt_at is not None and now - self.last_attempt_at < self._cooldown:
            return False
        self.last_attempt_at = now
        return True


def is_recoverable(error: BaseException) -> bool:
    """Failures that a (re)started agent is expected to fix."""

    if isinstance(error, ProbeTimeoutError):
        return True
    if isinstance(error, ProbeConnectionError):
        cause = error.__cause__
        return cause is None or isinstance(
            cause, (ConnectionRefusedError, FileNotFoundError, ConnectionResetError)
        )
    if isinstance(error, ProbeError):
        return False
    return isinstance(
        error, (TimeoutError, ConnectionRefusedError, FileNotFoundError, ConnectionResetError)
    )


__all__ = ["DaemonRecoveryDecider", "DaemonStatus", "DaemonStatusEvaluator", "is_recoverable"]
