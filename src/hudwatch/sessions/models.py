"""Session record and project models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SessionState(str, Enum):
    WORKING = "working"
    READY = "ready"
    WAITING = "waiting"
    COMPACTING = "compacting"
    IDLE = "idle"

    @classmethod
    def parse(cls, value: Any) -> "SessionState":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.IDLE


class ActivityBand(str, Enum):
    ACTIVE = "active"
    COOLING = "cooling"
    IDLE = "idle"


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ContextInfo(BaseModel):
    """Context-window snapshot the agent attaches to a record."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    updated_at: datetime | None = None
    percent_used: float | None = None
    tokens_used: int | None = None
    context_size: int | None = None

    @field_validator("updated_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class SessionRecord(BaseModel):
    """Raw per-path session record as published by the agent."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    state: SessionState = SessionState.IDLE
    state_changed_at: datetime | None = None
    session_id: str | None = None
    working_on: str | None = None
    context: ContextInfo | None = None
    thinking: bool | None = None
    is_locked: bool = False

    @field_validator("state", mode="before")
    @classmethod
    def _parse_state(cls, value: Any) -> SessionState:
        return SessionState.parse(value)

    @field_validator("state_changed_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @property
    def freshness(self) -> datetime | None:
        """Most trustworthy timestamp: context update first, then state change."""

        if self.context is not None and self.context.updated_at is not None:
            return self.context.updated_at
        return self.state_changed_at


class Project(BaseModel):
    """A pinned project directory."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Absolute project directory.")
    name: str = Field(default="", description="Display name; defaults to the directory name.")

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Project path must not be empty")
        return normalized

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if not isinstance(data, dict) or str(data.get("name") or "").strip():
            return data
        path = str(data.get("path") or "").strip()
        if path:
            data = {**data, "name": Path(path.rstrip("/") or path).name or path}
        return data


class CanonicalState(BaseModel):
    """Reconciled state for one project plus how it was derived."""

    model_config = ConfigDict(frozen=True)

    project_path: str
    record: SessionRecord
    source_path: str
    lock_inherited: bool = False
    thinking_suppressed: bool = False
    rule: str = "unchanged"

    @property
    def state(self) -> SessionState:
        return self.record.state


__all__ = [
    "ActivityBand",
    "CanonicalState",
    "ContextInfo",
    "Project",
    "SessionRecord",
    "SessionState",
]
