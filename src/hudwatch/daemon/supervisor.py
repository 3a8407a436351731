"""Install, register and health-gate the hudwatch agent."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sys
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Protocol

from ..config import DAEMON_ENABLED_ENV, HudSettings, daemon_enabled
from ..telemetry import NullTelemetry, TelemetrySink, emit
from .descriptor import DescriptorWriteError, ServiceDescriptorWriter
from .launchctl import CommandResult, LaunchctlRunner
from .probe import DaemonHealth, HealthProbe, ProbeError
from .registration import (
    Failed,
    NativeRegistrar,
    RequiresApproval,
    Success,
    Unavailable,
    UnavailableRegistrar,
)
from .status import DaemonStatus

logger = logging.getLogger(__name__)

AGENT_BINARY_NAME = "hudwatch-agent"
NOT_INSTALLED_MESSAGE = (
    "hudwatch agent binary not found. Build hudwatch-agent or reinstall the application."
)


class AgentNotInstalledError(RuntimeError):
    """Raised when no candidate location holds the agent binary."""


class HealthCheck(Protocol):
    async def check(self) -> bool:
        ...

    async def fetch_health(self) -> DaemonHealth:
        ...


def default_binary_candidates(settings: HudSettings) -> list[Path]:
    """Ordered locations searched for the agent binary."""

    candidates: list[Path] = []
    if settings.agent_binary is not None:
        candidates.append(Path(settings.agent_binary))
    candidates.append(Path(sys.executable).resolve().parent / AGENT_BINARY_NAME)
    on_path = shutil.which(AGENT_BINARY_NAME)
    if on_path:
        candidates.append(Path(on_path))
    candidates.append(settings.state_dir / "bin" / AGENT_BINARY_NAME)
    return candidates


def resolve_binary(candidates: Iterable[Path]) -> Path:
    for candidate in candidates:
        candidate = Path(candidate)
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return candidate
    raise AgentNotInstalledError(NOT_INSTALLED_MESSAGE)


class DaemonSupervisor:
    """Keeps exactly one healthy agent registered with launchd.

    Every public coroutine returns ``None`` on success or a user-facing error
    string; nothing raises across this boundary.
    """

    def __init__(
        self,
        settings: HudSettings,
        *,
        runner: LaunchctlRunner | None = None,
        registrar: NativeRegistrar | None = None,
        probe: HealthCheck | None = None,
        writer: ServiceDescriptorWriter | None = None,
        telemetry: TelemetrySink | None = None,
        binary_candidates: Iterable[Path] | None = None,
        uid: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._runner = runner or LaunchctlRunner(settings.launchctl_path)
        self._registrar = registrar or UnavailableRegistrar()
        self._probe = probe or HealthProbe(settings.socket_path, timeout=settings.probe_timeout)
        self._writer = writer or ServiceDescriptorWriter(
            label=settings.service_label,
            install_dir=settings.launch_agents_dir,
            working_dir=settings.state_dir,
            log_dir=settings.log_dir,
            throttle_interval=settings.throttle_interval,
            associated_bundle_ids=settings.associated_bundle_ids,
            extra_environment=settings.descriptor_environment(),
        )
        self._telemetry = telemetry or NullTelemetry()
        self._binary_candidates = (
            list(binary_candidates) if binary_candidates is not None else None
        )
        self._uid = os.getuid() if uid is None else uid
        self._sleep = sleep
        self._executor: ThreadPoolExecutor | None = None

    @property
    def domain(self) -> str:
        return f"gui/{self._uid}"

    @property
    def service_target(self) -> str:
        return f"{self.domain}/{self._settings.service_label}"

    @property
    def writer(self) -> ServiceDescriptorWriter:
        return self._writer

    @staticmethod
    def enable_for_current_process() -> None:
        os.environ[DAEMON_ENABLED_ENV] = "1"

    @staticmethod
    def disable_for_current_process() -> None:
        os.environ.pop(DAEMON_ENABLED_ENV, None)

    def resolve_binary(self) -> Path:
        candidates = self._binary_candidates
        if candidates is None:
            candidates = default_binary_candidates(self._settings)
        return resolve_binary(candidates)

    async def ensure_running(self) -> str | None:
        """Make sure the agent is installed, registered and started."""

        self.enable_for_current_process()
        logger.debug("ensure_running start", extra={"label": self._settings.service_label})

        try:
            binary_path = self.resolve_binary()
        except AgentNotInstalledError as exc:
            message = str(exc)
            logger.warning("Agent binary could not be resolved", extra={"error": message})
            emit(self._telemetry, "daemon_install_error", "Failed to resolve agent binary", error=message)
            return message

        logger.debug("Resolved agent binary", extra={"binary": str(binary_path)})
        return await self.install_and_kickstart(binary_path)

    def ensure_running_in_background(self) -> Future:
        """Run :meth:`ensure_running` on a dedicated worker thread."""

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hudwatch-supervisor")
        return self._executor.submit(asyncio.run, self.ensure_running())

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    async def install_and_kickstart(self, binary_path: Path) -> str | None:
        result = self._registrar.register()

        if isinstance(result, Success):
            logger.debug("Native registration succeeded")
            if await self._wait_until_healthy():
                return await self._cleanup_legacy()
            attempts = self._settings.health_attempts
            logger.warning(
                "Agent registered natively but never answered health checks; falling back to launchctl",
                extra={"attempts": attempts},
            )
            emit(
                self._telemetry,
                "daemon_health_error",
                "Agent unhealthy after native registration; falling back to launchctl",
                attempts=attempts,
            )
        elif isinstance(result, RequiresApproval):
            logger.info("Native registration requires user approval")
            emit(
                self._telemetry,
                "daemon_registration_error",
                "Native registration requires user approval",
                error=result.message,
            )
            return result.message
        elif isinstance(result, Failed):
            logger.warning("Native registration failed; falling back to launchctl", extra={"error": result.message})
            emit(
                self._telemetry,
                "daemon_registration_error",
                "Native registration failed; falling back to launchctl",
                error=result.message,
            )
        elif isinstance(result, Unavailable):
            logger.debug("Native registration unavailable; using launchctl")

        return await self._install_legacy(binary_path)

    async def disable(self) -> str | None:
        """Unregister the agent and remove any legacy launchd job."""

        self.disable_for_current_process()
        result = self._registrar.unregister()
        if isinstance(result, Failed):
            logger.warning("Native unregistration failed", extra={"error": result.message})

        # The legacy job keeps the agent alive whatever the native outcome was.
        cleanup_error = await self._cleanup_legacy()
        if cleanup_error:
            return cleanup_error
        if isinstance(result, RequiresApproval):
            logger.info("Native unregistration requires user approval")
            return result.message
        return None

    async def check_status(self) -> DaemonStatus:
        """Return a fresh status for the current process."""

        if not daemon_enabled():
            return DaemonStatus.disabled()
        try:
            health = await self._probe.fetch_health()
        except ProbeError as exc:
            logger.debug("Status probe failed", extra={"error": str(exc)})
            return DaemonStatus.unavailable()
        return DaemonStatus.from_health(health)

    async def _wait_until_healthy(self) -> bool:
        attempts = self._settings.health_attempts
        for attempt in range(1, attempts + 1):
            if await self._probe.check():
                logger.debug("Agent healthy", extra={"attempt": attempt})
                return True
            if attempt < attempts:
                await self._sleep(self._settings.health_retry_delay)
        return False

    async def _cleanup_legacy(self) -> str | None:
        descriptor = self._writer.descriptor_path
        if not descriptor.exists():
            return None

        bootout = await self._runner.bootout(self.domain, descriptor)
        if not bootout.ok and not bootout.target_absent:
            return f"Failed to unload legacy agent job: {bootout.trimmed_output}"

        try:
            self._writer.remove()
        except DescriptorWriteError as exc:
            return f"Failed to remove legacy service descriptor: {exc}"
        logger.info("Removed legacy service descriptor", extra={"path": str(descriptor)})
        return None

    async def _install_legacy(self, binary_path: Path) -> str | None:
        try:
            descriptor, did_change = self._writer.write(binary_path)
        except DescriptorWriteError as exc:
            logger.warning("Service descriptor write failed", extra={"error": str(exc)})
            return f"Failed to write service descriptor: {exc}"

        # bootout stops a running job and kickstart -k restarts it; both drop the
        # agent socket, so neither runs for a loaded, unchanged job.
        printed = await self._runner.print_job(self.service_target)
        job_loaded = printed.ok
        job_running = job_loaded and "state = running" in printed.output

        if not job_loaded:
            bootstrap = await self._runner.bootstrap(self.domain, descriptor)
            if not bootstrap.ok:
                return self._command_failure("bootstrap", bootstrap, "Failed to load agent job")
        elif did_change:
            bootout = await self._runner.bootout(self.domain, descriptor)
            if not bootout.ok and not bootout.target_absent:
                return self._command_failure("bootout", bootout, "Failed to reload agent job (bootout)")
            bootstrap = await self._runner.bootstrap(self.domain, descriptor)
            if not bootstrap.ok:
                return self._command_failure("bootstrap", bootstrap, "Failed to reload agent job (bootstrap)")
            job_running = False

        if job_running:
            logger.debug("Agent job already running and unchanged")
            return None

        kickstart = await self._runner.kickstart(self.service_target)
        if kickstart.ok:
            logger.debug("kickstart ok")
            return None

        logger.warning("kickstart failed; retrying with restart", extra={"output": kickstart.trimmed_output})
        emit(self._telemetry, "daemon_kickstart_error", "launchctl kickstart failed", output=kickstart.output)

        restart = await self._runner.kickstart(self.service_target, restart=True)
        if not restart.ok:
            emit(self._telemetry, "daemon_kickstart_error", "launchctl kickstart -k failed", output=restart.output)
            return f"Failed to start agent: {restart.trimmed_output}"
        logger.info("Agent restarted with kickstart -k")
        return None

    def _command_failure(self, verb: str, result: CommandResult, prefix: str) -> str:
        logger.warning("launchctl command failed", extra={"verb": verb, "output": result.trimmed_output})
        emit(self._telemetry, "daemon_launchctl_error", f"launchctl {verb} failed", output=result.output)
        return f"{prefix}: {result.trimmed_output}"


__all__ = [
    "AGENT_BINARY_NAME",
    "AgentNotInstalledError",
    "DaemonSupervisor",
    "HealthCheck",
    "NOT_INSTALLED_MESSAGE",
    "default_binary_candidates",
    "resolve_binary",
]
