"""Shared utility functions for board storage.

This module contains common helpers used by the model and the backends.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Any


def get_millis() -> int:
    """Current time as integer milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def millis_from_time(moment: datetime) -> int:
    """Convert an aware or naive datetime to epoch milliseconds."""
    return int(moment.timestamp() * 1000)


def millis_after(delta: timedelta) -> int:
    """Epoch milliseconds ``delta`` from now."""
    return get_millis() + int(delta.total_seconds() * 1000)


def merge_patch(
    current: dict[str, Any],
    updated: dict[str, Any] | None,
    deleted: list[str] | None,
) -> dict[str, Any]:
    """Apply an update/delete key patch to a copy of ``current``.

    Deletions run after updates, so a key named in both ends up removed.
    """
    merged = dict(current)
    if updated:
        merged.update(updated)
    for key in deleted or []:
        merged.pop(key, None)
    return merged
