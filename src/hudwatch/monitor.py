"""Periodic reconciliation tick: records in, ordered and banded projects out."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Mapping, Sequence

from .config import HudSettings, daemon_enabled
from .sessions.activity import classify, grouped_projects
from .sessions.models import ActivityBand, CanonicalState, Project, SessionRecord
from .sessions.notifier import FlashEvent, TransitionNotifier
from .sessions.reconciler import SessionStateReconciler
from .sessions.store import RecordStoreError, SessionRecordStore

logger = logging.getLogger(__name__)

EMPTY_SNAPSHOT_COMMIT_THRESHOLD = 2


@dataclass(slots=True)
class MonitorSnapshot:
    taken_at: datetime
    states: dict[str, CanonicalState]
    bands: dict[str, ActivityBand]
    active: list[Project]
    idle: list[Project]
    flashes: list[FlashEvent] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "taken_at": self.taken_at.isoformat(),
            "active": [project.path for project in self.active],
            "idle": [project.path for project in self.idle],
            "bands": {path: band.value for path, band in self.bands.items()},
            "states": {
                path: {
                    **state.record.model_dump(mode="json"),
                    "source_path": state.source_path,
                    "lock_inherited": state.lock_inherited,
                    "thinking_suppressed": state.thinking_suppressed,
                    "rule": state.rule,
                }
                for path, state in self.states.items()
            },
            "flashes": [
                {"path": event.path, "state": event.state.value, "expires_at": event.expires_at.isoformat()}
                for event in self.flashes
            ],
        }


class SessionMonitor:
    """Owns the per-tick state: last committed states and the transition notifier.

    :meth:`tick` is synchronous in-memory work and never touches the disk.
    :meth:`fetch` does the record-store I/O and can run on another thread;
    :meth:`poll` does both in sequence for one-shot callers.
    """

    def __init__(
        self,
        *,
        reconciler: SessionStateReconciler | None = None,
        notifier: TransitionNotifier | None = None,
        store: SessionRecordStore | None = None,
        order: Sequence[str] = (),
        cooling_grace: float = 8.0,
        clock: Callable[[], datetime] | None = None,
        is_enabled: Callable[[], bool] = daemon_enabled,
    ) -> None:
        self._reconciler = reconciler or SessionStateReconciler()
        self._notifier = notifier or TransitionNotifier()
        self._store = store
        self._order = list(order)
        self._cooling_grace = cooling_grace
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._is_enabled = is_enabled
        self._states: dict[str, CanonicalState] = {}
        self._empty_count = 0

    @classmethod
    def from_settings(
        cls,
        settings: HudSettings,
        *,
        order: Sequence[str] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> "SessionMonitor":
        return cls(
            reconciler=SessionStateReconciler(
                thinking_stale_after=settings.thinking_stale_after,
                ready_stale_after=settings.ready_stale_after,
            ),
            notifier=TransitionNotifier(settings.flash_duration),
            store=SessionRecordStore(settings.sessions_file, settings.lock_dir),
            order=order,
            cooling_grace=settings.cooling_grace,
            clock=clock,
        )

    @property
    def states(self) -> dict[str, CanonicalState]:
        return dict(self._states)

    @property
    def notifier(self) -> TransitionNotifier:
        return self._notifier

    def set_order(self, order: Sequence[str]) -> None:
        self._order = list(order)

    def fetch(self) -> dict[str, SessionRecord] | None:
        """Read the record store. ``None`` means nothing usable was read."""

        if self._store is None or not self._is_enabled():
            return None
        try:
            return self._store.load()
        except RecordStoreError as exc:
            logger.warning("Session records unavailable; keeping previous states", extra={"error": str(exc)})
            return None

    def poll(self, projects: Sequence[Project]) -> MonitorSnapshot:
        return self.tick(self.fetch(), projects)

    def tick(
        self,
        records: Mapping[str, SessionRecord] | None,
        projects: Sequence[Project],
    ) -> MonitorSnapshot:
        """Reconcile, classify and detect transitions for one cycle.

        ``records=None`` means the fetch failed; the previous states are kept.
        """

        now = self._clock()
        if not self._is_enabled():
            self._empty_count = 0
            self._states = {}
        elif records is not None:
            merged = self._reconciler.reconcile(records, projects, now)
            self._states = self._stabilize(merged)

        tracked = {project.path for project in projects}
        states = {path: state for path, state in self._states.items() if path in tracked}
        flashes = self._notifier.observe({path: state.state for path, state in states.items()}, now)

        active, idle = grouped_projects(projects, self._order, states, now, grace=self._cooling_grace)
        bands = {
            project.path: classify(states.get(project.path), now, grace=self._cooling_grace)
            for project in projects
        }
        for event in flashes:
            logger.debug("State transition", extra={"project": event.path, "state": event.state.value})
        return MonitorSnapshot(
            taken_at=now,
            states=states,
            bands=bands,
            active=active,
            idle=idle,
            flashes=flashes,
        )

    def _stabilize(self, merged: dict[str, CanonicalState]) -> dict[str, CanonicalState]:
        # One empty result between non-empty ones is treated as a glitch in the agent's publish.
        if merged:
            self._empty_count = 0
            return merged
        if not self._states:
            self._empty_count = 0
            return merged
        self._empty_count += 1
        if self._empty_count < EMPTY_SNAPSHOT_COMMIT_THRESHOLD:
            logger.debug("Holding previous states over empty snapshot")
            return self._states
        self._empty_count = 0
        return merged


__all__ = ["EMPTY_SNAPSHOT_COMMIT_THRESHOLD", "MonitorSnapshot", "SessionMonitor"]
