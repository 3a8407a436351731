"""Session records, reconciliation, activity banding and transition detection."""

from .activity import classify, grouped_projects, moved_global_order, ordered_projects
from .models import ActivityBand, CanonicalState, ContextInfo, Project, SessionRecord, SessionState
from .notifier import FlashEvent, TransitionNotifier
from .reconciler import SessionStateReconciler, reconcile
from .store import (
    ProjectLoadError,
    ProjectLoader,
    ProjectOrderStore,
    RecordStoreError,
    SessionRecordStore,
)

__all__ = [
    "ActivityBand",
    "CanonicalState",
    "ContextInfo",
    "FlashEvent",
    "Project",
    "ProjectLoadError",
    "ProjectLoader",
    "ProjectOrderStore",
    "RecordStoreError",
    "SessionRecord",
    "SessionRecordStore",
    "SessionState",
    "SessionStateReconciler",
    "TransitionNotifier",
    "classify",
    "grouped_projects",
    "moved_global_order",
    "ordered_projects",
    "reconcile",
]
