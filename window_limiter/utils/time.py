"""Time helpers."""
from __future__ import annotations

import time
from datetime import timedelta


def wall_clock_ms() -> float:
    """Return the current wall-clock instant in milliseconds since the epoch."""

    return time.time() * 1000.0


def to_milliseconds(value: float | timedelta) -> float:
    """Convert a duration to milliseconds, passing plain numbers through."""

    if isinstance(value, timedelta):
        return value.total_seconds() * 1000.0
    return value
