"""Activity banding and project list ordering."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping, Sequence

from .models import ActivityBand, CanonicalState, Project, SessionRecord, SessionState
from .paths import normalize_path
from .staleness import is_within

COOLING_GRACE = 8.0

_ACTIVE_STATES = {
    SessionState.WORKING,
    SessionState.WAITING,
    SessionState.COMPACTING,
    SessionState.READY,
}


def classify(
    record: SessionRecord | CanonicalState | None,
    now: datetime,
    *,
    grace: float = COOLING_GRACE,
) -> ActivityBand:
    """Band a record for ordering.

    A record that just went idle stays ``cooling`` for ``grace`` seconds so a
    session that flaps idle and back does not jump around the list.
    """

    if isinstance(record, CanonicalState):
        record = record.record
    if record is None:
        return ActivityBand.IDLE
    if record.state in _ACTIVE_STATES:
        return ActivityBand.ACTIVE
    if is_within(record.state_changed_at, grace, now):
        return ActivityBand.COOLING
    return ActivityBand.IDLE


def lookup_state(path: str, states: Mapping[str, CanonicalState]) -> CanonicalState | None:
    """Find a project's state by exact key, then by normalized path."""

    if path in states:
        return states[path]
    normalized = normalize_path(path)
    for key, value in states.items():
        if normalize_path(key) == normalized:
            return value
    return None


def band_for(
    path: str,
    states: Mapping[str, CanonicalState],
    now: datetime,
    *,
    grace: float = COOLING_GRACE,
) -> ActivityBand:
    return classify(lookup_state(path, states), now, grace=grace)


def ordered_projects(projects: Sequence[Project], custom_order: Sequence[str]) -> list[Project]:
    """Apply the persisted order; unlisted projects keep their relative order at the end."""

    if not custom_order:
        return list(projects)
    remaining = list(projects)
    result: list[Project] = []
    for path in custom_order:
        for index, project in enumerate(remaining):
            if project.path == path:
                result.append(remaining.pop(index))
                break
    result.extend(remaining)
    return result


def grouped_projects(
    projects: Sequence[Project],
    order: Sequence[str],
    states: Mapping[str, CanonicalState],
    now: datetime,
    *,
    grace: float = COOLING_GRACE,
) -> tuple[list[Project], list[Project]]:
    """Split into (active or cooling, idle), preserving the global order inside each."""

    active: list[Project] = []
    idle: list[Project] = []
    for project in ordered_projects(projects, order):
        if band_for(project.path, states, now, grace=grace) is ActivityBand.IDLE:
            idle.append(project)
        else:
            active.append(project)
    return active, idle


def unique_paths(paths: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for path in paths:
        if path not in seen:
            seen.add(path)
            result.append(path)
    return result


def moved_global_order(
    source: Sequence[int],
    destination: int,
    group: Sequence[Project],
    global_order: Sequence[str],
    all_projects: Sequence[Project],
) -> list[str]:
    """Reorder one visible group and write it back into the global order.

    ``source`` and ``destination`` use list-move semantics: ``destination`` is
    the insertion index in the group before the moved items are removed.
    Slots owned by projects outside the group are left untouched.
    """

    if not group:
        return unique_paths(global_order)

    group_paths = [project.path for project in group]
    moving = [group_paths[index] for index in sorted(set(source))]
    offset = sum(1 for index in set(source) if index < destination)
    kept = [path for index, path in enumerate(group_paths) if index not in set(source)]
    insert_at = max(0, min(destination - offset, len(kept)))
    moved = kept[:insert_at] + moving + kept[insert_at:]

    group_set = set(group_paths)
    result = unique_paths(global_order)
    for project in all_projects:
        if project.path not in result:
            result.append(project.path)

    replacement = iter(moved)
    for index, path in enumerate(result):
        if path in group_set:
            try:
                result[index] = next(replacement)
            except StopIteration:
                break
    return result


def content_fingerprint(state: CanonicalState | None) -> str:
    """Session-sensitive key for refreshing a project card in place."""

    if state is None:
        return "none"
    record = state.record
    changed = record.state_changed_at.isoformat() if record.state_changed_at else "-"
    return f"{record.state.value}#{record.session_id or '-'}#1#{changed}"


__all__ = [
    "COOLING_GRACE",
    "band_for",
    "classify",
    "content_fingerprint",
    "grouped_projects",
    "lookup_state",
    "moved_global_order",
    "ordered_projects",
    "unique_paths",
]
