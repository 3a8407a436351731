"""Project path normalization and prefix matching."""

from __future__ import annotations

import os
import sys


def normalize_path(path: str) -> str:
    trimmed = path.strip()
    if not trimmed:
        return trimmed

    normalized = os.path.normpath(os.path.expanduser(trimmed))
    if os.path.exists(normalized):
        normalized = os.path.realpath(normalized)
    if sys.platform == "darwin":
        # APFS is case-insensitive by default.
        normalized = normalized.lower()
    return normalized


def is_same_or_subpath(candidate: str, parent: str) -> bool:
    """True when ``candidate`` equals ``parent`` or lies strictly beneath it."""

    if candidate == parent:
        return True
    prefix = parent if parent.endswith(os.sep) else parent + os.sep
    return candidate.startswith(prefix)


__all__ = ["is_same_or_subpath", "normalize_path"]
