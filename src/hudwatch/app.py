"""Application bootstrap: wires supervision and the session monitor together."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from . import __version__
from .config import HudSettings, daemon_enabled, get_settings
from .daemon import (
    DaemonRecoveryDecider,
    DaemonStatus,
    DaemonStatusEvaluator,
    DaemonSupervisor,
    HealthProbe,
    ProbeError,
)
from .monitor import MonitorSnapshot, SessionMonitor
from .sessions import Project, ProjectLoadError, ProjectLoader, ProjectOrderStore, SessionRecord
from .telemetry import LoggingTelemetry

STATUS_REFRESH_TICKS = 10


def configure_logging(level: str) -> None:
    """Configure root logging for hudwatch."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


class HudApp:
    """Holds the long-lived collaborators of one dashboard process."""

    def __init__(
        self,
        settings: HudSettings,
        *,
        supervisor: DaemonSupervisor | None = None,
        monitor: SessionMonitor | None = None,
        probe: HealthProbe | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.probe = probe or HealthProbe(settings.socket_path, timeout=settings.probe_timeout)
        self.supervisor = supervisor or DaemonSupervisor(
            settings, probe=self.probe, telemetry=LoggingTelemetry()
        )
        self.project_loader = ProjectLoader(settings.resolved_projects_file)
        self.order_store = ProjectOrderStore(settings.order_file)
        self.monitor = monitor or SessionMonitor.from_settings(settings, clock=self._clock)
        self.evaluator = DaemonStatusEvaluator()
        self.recovery = DaemonRecoveryDecider()
        self.status: DaemonStatus | None = None
        self.projects: list[Project] = []
        self._status_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hudwatch-status")
        self._records_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hudwatch-records")
        self._records: Mapping[str, SessionRecord] | None = None
        self._records_future: Future | None = None
        self._status_future: Future | None = None
        self._ensure_future: Future | None = None

    def start(self) -> None:
        """Load projects and order, then install the agent off the tick thread."""

        self.reload_projects()
        self.monitor.set_order(self.order_store.migrate_if_needed())
        self.refresh_records_in_background()
        self.status = self.evaluator.begin_startup(self.status, self._clock())
        self._ensure_future = self.supervisor.ensure_running_in_background()
        self._ensure_future.add_done_callback(self._log_ensure_result)

    def reload_projects(self) -> list[Project]:
        try:
            self.projects = self.project_loader.load_all()
        except ProjectLoadError as exc:
            logging.getLogger(__name__).warning("Project list invalid; keeping previous list", extra={"error": str(exc)})
        return self.projects

    def tick(self) -> MonitorSnapshot:
        """Tick on the most recently fetched records; the next fetch runs off-thread."""

        future = self._records_future
        if future is not None and future.done():
            self._records_future = None
            exc = future.exception()
            if exc is not None:
                logging.getLogger(__name__).error("Session record fetch crashed", exc_info=exc)
                self._records = None
            else:
                self._records = future.result()
        self.refresh_records_in_background()
        return self.monitor.tick(self._records, self.projects)

    def refresh_records_in_background(self) -> Future:
        if self._records_future is None:
            self._records_future = self._records_executor.submit(self.monitor.fetch)
        return self._records_future

    async def refresh_status(self) -> DaemonStatus | None:
        """Probe the agent, update the displayed status and recover if warranted."""

        logger = logging.getLogger(__name__)
        now = self._clock()
        enabled = daemon_enabled()
        health = None
        error: ProbeError | None = None
        if enabled:
            try:
                health = await self.probe.fetch_health()
            except ProbeError as exc:
                error = exc

        status = self.evaluator.evaluate(enabled=enabled, health=health, now=now)
        if status is not None:
            self.status = status

        supervising = self._ensure_future is not None and not self._ensure_future.done()
        if error is not None and supervising:
            logger.debug("Agent unreachable while supervision is still running", extra={"error": str(error)})
        elif error is not None and self.recovery.should_attempt_recovery(error, now):
            logger.info("Agent unreachable; re-running supervision", extra={"error": str(error)})
            self.evaluator.note_startup(now)
            message = await self.supervisor.ensure_running()
            if message:
                logger.warning("Agent recovery failed", extra={"error": message})
        return self.status

    def refresh_status_in_background(self) -> Future | None:
        if self._status_future is not None and not self._status_future.done():
            return None
        self._status_future = self._status_executor.submit(asyncio.run, self.refresh_status())
        return self._status_future

    def run(self, stop: threading.Event | None = None, *, max_ticks: int | None = None) -> None:
        stop = stop or threading.Event()
        logger = logging.getLogger(__name__)
        ticks = 0
        while not stop.is_set():
            snapshot = self.tick()
            for event in snapshot.flashes:
                logger.info("Project changed state", extra={"project": event.path, "state": event.state.value})
            if ticks % STATUS_REFRESH_TICKS == 0:
                self.refresh_status_in_background()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            stop.wait(self.settings.tick_interval)

    def close(self) -> None:
        self._status_executor.shutdown(wait=True)
        self._records_executor.shutdown(wait=True)
        self.supervisor.shutdown()

    def _log_ensure_result(self, future: Future) -> None:
        logger = logging.getLogger(__name__)
        exc = future.exception()
        if exc is not None:
            logger.error("Agent supervision crashed", exc_info=exc)
            return
        message = future.result()
        if message:
            logger.warning("Agent supervision reported a problem", extra={"error": message})
        else:
            logger.info("Agent supervision complete")


def create_app(settings: Optional[HudSettings] = None) -> HudApp:
    """Instantiate the application with production collaborators."""

    return HudApp(settings or get_settings())


def main() -> None:
    """Entry point for running the hudwatch monitor loop."""

    settings = get_settings()
    configure_logging(settings.log_level)

    app = create_app(settings)
    logging.getLogger(__name__).info(
        "Launching hudwatch",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "socket": str(settings.socket_path),
            "label": settings.service_label,
        },
    )
    app.start()
    try:
        app.run()
    except KeyboardInterrupt:
        pass
    finally:
        app.close()


if __name__ == "__main__":
    main()
