"""File-backed sources for session records, projects and the saved project order."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Iterable

import yaml
from pydantic import ValidationError

from .activity import unique_paths
from .models import Project, SessionRecord
from .paths import normalize_path

logger = logging.getLogger(__name__)


class RecordStoreError(RuntimeError):
    """Raised when the agent's session file exists but cannot be read."""


class ProjectLoadError(RuntimeError):
    """Raised when one or more project entries cannot be parsed."""


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class SessionRecordStore:
    """Reads the records the agent publishes, plus its presence locks.

    ``sessions.json`` holds ``{"records": {path: record}}``. Each
    ``<lock_dir>/*.lock`` file holds ``{"path": ..., "pid": ...}``; a lock whose
    pid is alive marks its path as locked.
    """

    def __init__(
        self,
        sessions_file: Path,
        lock_dir: Path | None = None,
        *,
        is_alive: Callable[[int], bool] = pid_alive,
    ) -> None:
        self._sessions_file = Path(sessions_file)
        self._lock_dir = Path(lock_dir) if lock_dir is not None else None
        self._is_alive = is_alive

    @property
    def sessions_file(self) -> Path:
        return self._sessions_file

    def load(self) -> dict[str, SessionRecord]:
        raw = self._read_records()
        locked = self.locked_paths()
        records: dict[str, SessionRecord] = {}
        for path, payload in raw.items():
            try:
                record = SessionRecord.model_validate(payload)
            except ValidationError as exc:
                logger.warning("Skipping invalid session record", extra={"path": path, "error": str(exc)})
                continue
            if not record.is_locked and normalize_path(path) in locked:
                record = record.model_copy(update={"is_locked": True})
            records[path] = record
        return records

    def locked_paths(self) -> set[str]:
        if self._lock_dir is None or not self._lock_dir.is_dir():
            return set()
        paths: set[str] = set()
        for lock_file in sorted(self._lock_dir.glob("*.lock")):
            try:
                document = json.loads(lock_file.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.debug("Ignoring unreadable lock", extra={"lock": str(lock_file), "error": str(exc)})
                continue
            if not isinstance(document, dict):
                continue
            path = document.get("path")
            pid = document.get("pid")
            if isinstance(path, str) and isinstance(pid, int) and self._is_alive(pid):
                paths.add(normalize_path(path))
        return paths

    def _read_records(self) -> dict[str, Any]:
        try:
            text = self._sessions_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise RecordStoreError(f"Cannot read {self._sessions_file}: {exc}") from exc

        if not text.strip():
            return {}
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RecordStoreError(f"Malformed JSON in {self._sessions_file}: {exc}") from exc
        if not isinstance(document, dict):
            raise RecordStoreError(f"{self._sessions_file} must contain a JSON object")

        records = document.get("records", document.get("projects", {}))
        if not isinstance(records, dict):
            raise RecordStoreError(f"{self._sessions_file}: 'records' must be an object")
        return records


class ProjectLoader:
    """Loads pinned projects from a YAML file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load_all(self) -> list[Project]:
        if not self._path.exists():
            return []

        try:
            document = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - library type
            raise ProjectLoadError(f"Failed to parse YAML in {self._path}: {exc}") from exc

        if document is None:
            return []
        entries = document.get("projects", []) if isinstance(document, dict) else document
        if not isinstance(entries, list):
            raise ProjectLoadError(f"{self._path}: 'projects' must be a list")

        projects: list[Project] = []
        seen: set[str] = set()
        errors: list[str] = []
        for index, entry in enumerate(entries):
            if isinstance(entry, str):
                entry = {"path": entry}
            try:
                project = Project.model_validate(entry)
            except ValidationError as exc:
                errors.append(f"Project validation error in {self._path} entry {index}: {exc}")
                continue
            key = normalize_path(project.path)
            if key in seen:
                continue
            seen.add(key)
            projects.append(project)

        if errors:
            raise ProjectLoadError("; ".join(errors))
        return projects


class ProjectOrderStore:
    """Persists one global project order as JSON.

    Older files kept separate ``active`` and ``idle`` lists (or a flat
    ``custom`` list); they are merged into ``global`` on first load.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    def load(self) -> list[str]:
        document = self._read()
        if isinstance(document.get("global"), list):
            return unique_paths(str(item) for item in document["global"])
        legacy = list(document.get("active") or []) + list(document.get("idle") or [])
        if legacy:
            return unique_paths(str(item) for item in legacy)
        return unique_paths(str(item) for item in document.get("custom") or [])

    def save(self, order: Iterable[str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"global": unique_paths(order)}, indent=2)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, self._path)

    def migrate_if_needed(self) -> list[str]:
        document = self._read()
        order = self.load()
        if "global" not in document and order:
            self.save(order)
        return order

    def _read(self) -> dict[str, Any]:
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable project order", extra={"path": str(self._path), "error": str(exc)})
            return {}
        return document if isinstance(document, dict) else {}


__all__ = [
    "ProjectLoadError",
    "ProjectLoader",
    "ProjectOrderStore",
    "RecordStoreError",
    "SessionRecordStore",
    "pid_alive",
]
