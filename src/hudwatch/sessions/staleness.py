"""Timestamp helpers shared by the reconciler and classifier."""

from __future__ import annotations

from datetime import datetime, timezone


def age_seconds(timestamp: datetime, now: datetime) -> float:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - timestamp).total_seconds()


def is_stale(timestamp: datetime | None, threshold: float, now: datetime) -> bool:
    """True when ``timestamp`` is strictly older than ``threshold`` seconds.

    A missing timestamp is never stale; callers decide separately how to treat
    records without one.
    """

    if timestamp is None:
        return False
    return age_seconds(timestamp, now) > threshold


def is_within(timestamp: datetime | None, window: float, now: datetime) -> bool:
    """True when ``timestamp`` lies less than ``window`` seconds before ``now``."""

    if timestamp is None:
        return False
    return age_seconds(timestamp, now) < window


__all__ = ["age_seconds", "is_stale", "is_within"]
