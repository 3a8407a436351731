"""Edge detection for session-state transitions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping

from .models import SessionState

FLASH_DURATION = 1.4

FLASH_STATES = frozenset({SessionState.READY, SessionState.WAITING, SessionState.COMPACTING})


@dataclass(frozen=True, slots=True)
class FlashEvent:
    path: str
    previous: SessionState
    state: SessionState
    expires_at: datetime


class TransitionNotifier:
    """Emits a time-boxed flash when a project moves into ready, waiting or compacting.

    The only state kept is the previous cycle's snapshot and the currently
    flashing projects. A project absent from a cycle drops out of both, so its
    next state is never compared against an older cycle.
    """

    def __init__(self, flash_duration: float = FLASH_DURATION) -> None:
        self._flash_duration = timedelta(seconds=flash_duration)
        self._previous: dict[str, SessionState] = {}
        self._flashing: dict[str, FlashEvent] = {}

    def observe(self, states: Mapping[str, SessionState], now: datetime) -> list[FlashEvent]:
        self.prune(now)
        events: list[FlashEvent] = []
        for path, current in states.items():
            previous = self._previous.get(path)
            if previous is not None and previous != current and current in FLASH_STATES:
                event = FlashEvent(
                    path=path,
                    previous=previous,
                    state=current,
                    expires_at=now + self._flash_duration,
                )
                self._flashing[path] = event
                events.append(event)
        for path in [path for path in self._flashing if path not in states]:
            del self._flashing[path]
        self._previous = dict(states)
        return events

    def flashing(self, path: str, now: datetime) -> SessionState | None:
        event = self._flashing.get(path)
        if event is None or now >= event.expires_at:
            return None
        return event.state

    def prune(self, now: datetime) -> None:
        expired = [path for path, event in self._flashing.items() if now >= event.expires_at]
        for path in expired:
            del self._flashing[path]

    @property
    def previous(self) -> dict[str, SessionState]:
        return dict(self._previous)


__all__ = ["FLASH_DURATION", "FLASH_STATES", "FlashEvent", "TransitionNotifier"]
