"""Utility helpers."""
from .time import to_milliseconds, wall_clock_ms  # noqa: F401
