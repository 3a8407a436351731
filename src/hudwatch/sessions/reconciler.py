"""Merge raw session records into one canonical state per project."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Mapping

from .models import CanonicalState, Project, SessionRecord, SessionState
from .paths import is_same_or_subpath, normalize_path
from .staleness import is_stale

logger = logging.getLogger(__name__)

THINKING_STALE_AFTER = 30.0
READY_STALE_AFTER = 120.0

_ACTIVE_STATES = {SessionState.WORKING, SessionState.COMPACTING}


class SessionStateReconciler:
    """Pure function object: raw records + projects + clock -> canonical states.

    Rules, first match wins:

    * fresh ``thinking`` forces ``working``;
    * an unlocked ``working`` or ``compacting`` record is demoted to ``ready``
      because the process that set it is gone;
    * a locked ``working``/``compacting`` record is trusted as-is;
    * an unlocked ``ready`` record older than the staleness threshold ages out
      to ``idle``;
    * a locked ``idle`` record is raised to ``ready``;
    * anything else passes through unchanged.
    """

    def __init__(
        self,
        *,
        thinking_stale_after: float = THINKING_STALE_AFTER,
        ready_stale_after: float = READY_STALE_AFTER,
    ) -> None:
        self.thinking_stale_after = thinking_stale_after
        self.ready_stale_after = ready_stale_after

    def reconcile(
        self,
        records: Mapping[str, SessionRecord],
        projects: Iterable[Project],
        now: datetime,
    ) -> dict[str, CanonicalState]:
        # Lexicographic order makes ties deterministic and puts a parent before its children.
        indexed = sorted(
            ((normalize_path(path), path, record) for path, record in records.items()),
            key=lambda item: (item[0], item[1]),
        )
        results: dict[str, CanonicalState] = {}
        for project in projects:
            canonical = self._reconcile_project(project, indexed, now)
            if canonical is not None:
                results[project.path] = canonical
        return results

    def _reconcile_project(
        self,
        project: Project,
        indexed: list[tuple[str, str, SessionRecord]],
        now: datetime,
    ) -> CanonicalState | None:
        project_key = normalize_path(project.path)
        candidates = [item for item in indexed if is_same_or_subpath(item[0], project_key)]
        if not candidates:
            return None

        selected_path, selected = _select_freshest(candidates)
        exact = next((record for key, _, record in candidates if key == project_key), None)

        locked = selected.is_locked
        lock_inherited = False
        if not locked and exact is not None and exact.is_locked:
            locked = True
            lock_inherited = True

        thinking = selected.thinking is True
        thinking_suppressed = False
        if thinking and (
            selected.freshness is None
            or is_stale(selected.freshness, self.thinking_stale_after, now)
        ):
            thinking = False
            thinking_suppressed = True

        state, rule = self._derive(selected, locked=locked, thinking=thinking, now=now)
        record = selected.model_copy(
            update={
                "state": state,
                "thinking": thinking if selected.thinking is not None else None,
                "is_locked": locked,
            }
        )
        if rule != "unchanged":
            logger.debug(
                "Derived session state",
                extra={"project": project.path, "raw": selected.state.value, "state": state.value, "rule": rule},
            )
        return CanonicalState(
            project_path=project.path,
            record=record,
            source_path=selected_path,
            lock_inherited=lock_inherited,
            thinking_suppressed=thinking_suppressed,
            rule=rule,
        )

    def _derive(
        self,
        record: SessionRecord,
        *,
        locked: bool,
        thinking: bool,
        now: datetime,
    ) -> tuple[SessionState, str]:
        state = record.state
        if thinking:
            return SessionState.WORKING, "thinking"
        if not locked and state in _ACTIVE_STATES:
            return SessionState.READY, "unlocked_active"
        if locked and state in _ACTIVE_STATES:
            return state, "locked_active"
        if (
            not locked
            and state is SessionState.READY
            and is_stale(record.state_changed_at, self.ready_stale_after, now)
        ):
            return SessionState.IDLE, "ready_stale"
        if locked and state is SessionState.IDLE:
            return SessionState.READY, "locked_idle"
        return state, "unchanged"


def _select_freshest(candidates: list[tuple[str, str, SessionRecord]]) -> tuple[str, SessionRecord]:
    _, best_path, best = candidates[0]
    best_ts = best.freshness
    for _, path, record in candidates[1:]:
        ts = record.freshness
        if ts is not None and (best_ts is None or ts > best_ts):
            best_path, best, best_ts = path, record, ts
    return best_path, best


def reconcile(
    records: Mapping[str, SessionRecord],
    projects: Iterable[Project],
    now: datetime,
    *,
    thinking_stale_after: float = THINKING_STALE_AFTER,
    ready_stale_after: float = READY_STALE_AFTER,
) -> dict[str, CanonicalState]:
    """Convenience wrapper around :class:`SessionStateReconciler`."""

    reconciler = SessionStateReconciler(
        thinking_stale_after=thinking_stale_after,
        ready_stale_after=ready_stale_after,
    )
    return reconciler.reconcile(records, projects, now)


__all__ = ["READY_STALE_AFTER", "THINKING_STALE_AFTER", "SessionStateReconciler", "reconcile"]
