"""Best-effort telemetry sinks for non-fatal supervision failures."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    """Minimal reporting interface used by the daemon supervisor."""

    def report(self, event: str, message: str, fields: Mapping[str, Any] | None = None) -> None:
        ...


class NullTelemetry:
    """Sink that drops every event."""

    def report(self, event: str, message: str, fields: Mapping[str, Any] | None = None) -> None:
        return None


class LoggingTelemetry:
    """Sink that forwards events to the standard logging system."""

    def __init__(self, name: str = "hudwatch.telemetry", level: int = logging.WARNING) -> None:
        self._logger = logging.getLogger(name)
        self._level = level

    def report(self, event: str, message: str, fields: Mapping[str, Any] | None = None) -> None:
        self._logger.log(
            self._level,
            message,
            extra={"telemetry_event": event, "telemetry_fields": dict(fields or {})},
        )


class RecordingTelemetry:
    """Test double that keeps every reported event in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def report(self, event: str, message: str, fields: Mapping[str, Any] | None = None) -> None:
        self.events.append((event, message, dict(fields or {})))

    @property
    def names(self) -> list[str]:
        return [event for event, _, _ in self.events]


def emit(sink: TelemetrySink, event: str, message: str, **fields: Any) -> None:
    """Report an event without letting sink failures reach the caller."""

    try:
        sink.report(event, message, fields)
    except Exception:  # pragma: no cover - sink failures must not alter control flow
        logger.debug("Telemetry sink raised", exc_info=True, extra={"event": event})


__all__ = ["LoggingTelemetry", "NullTelemetry", "RecordingTelemetry", "TelemetrySink", "emit"]
