"""Limiter settings and environment loading utilities."""
from __future__ import annotations

import math
import os
import threading
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from numbers import Real
from typing import Union

from window_limiter.utils.time import to_milliseconds

DEFAULT_CLEANUP_INTERVAL_SECONDS = 60.0
DEFAULT_SHARD_COUNT = 16


class RateLimiterError(Exception):
    """Base class for limiter errors."""


class InvalidConfiguration(RateLimiterError, ValueError):
    """Raised when the limiter is constructed with unusable settings."""


def _is_number(value: object) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _is_finite(value: Real) -> bool:
    return isinstance(value, int) or math.isfinite(value)


def _validate_positive(value: object, name: str) -> float:
    if not _is_number(value) or not _is_finite(value) or value <= 0:
        raise InvalidConfiguration(f"{name} must be a positive number, got {value!r}")
    try:
        return float(value)
    except OverflowError as exc:
        raise InvalidConfiguration(f"{name} is too large, got {value!r}") from exc


def _validate_positive_int(value: object, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidConfiguration(f"{name} must be a positive integer, got {value!r}")
    return value


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise InvalidConfiguration(f"Missing required environment variable: {name}")
    return value


def _parse_env(name: str, raw: str, kind: type) -> Union[int, float]:
    try:
        return kind(raw.strip())
    except ValueError as exc:
        raise InvalidConfiguration(f"{name} is not a valid {kind.__name__}: {raw!r}") from exc


@dataclass(frozen=True)
class RateLimiterConfig:
    """Immutable sliding-window settings.

    ``window_size`` is expressed in the same unit as the timestamps handed to
    :meth:`RateLimiter.accept_request` (milliseconds by convention); a
    :class:`datetime.timedelta` is converted to milliseconds.
    ``cleanup_interval`` is the reaper period in seconds.
    """

    window_size: float
    max_requests: int
    cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS
    shard_count: int = DEFAULT_SHARD_COUNT

    def __post_init__(self) -> None:
        window = self.window_size
        if isinstance(window, timedelta):
            window = to_milliseconds(window)
        # frozen dataclass: normalised values are written through object.__setattr__
        object.__setattr__(self, "window_size", _validate_positive(window, "window_size"))
        _validate_positive_int(self.max_requests, "max_requests")
        object.__setattr__(
            self,
            "cleanup_interval",
            _validate_positive(self.cleanup_interval, "cleanup_interval"),
        )
        if self.cleanup_interval > threading.TIMEOUT_MAX:
            raise InvalidConfiguration(
                f"cleanup_interval must not exceed {threading.TIMEOUT_MAX} seconds, "
                f"got {self.cleanup_interval!r}"
            )
        _validate_positive_int(self.shard_count, "shard_count")

    @classmethod
    def from_env(cls) -> "RateLimiterConfig":
        window = _parse_env(
            "RATE_LIMIT_WINDOW_MS", _require_env("RATE_LIMIT_WINDOW_MS"), float
        )
        max_requests = _parse_env(
            "RATE_LIMIT_MAX_REQUESTS", _require_env("RATE_LIMIT_MAX_REQUESTS"), int
        )
        cleanup_interval = _parse_env(
            "RATE_LIMIT_CLEANUP_INTERVAL_SECONDS",
            os.getenv("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", str(DEFAULT_CLEANUP_INTERVAL_SECONDS)),
            float,
        )
        shard_count = _parse_env(
            "RATE_LIMIT_SHARDS", os.getenv("RATE_LIMIT_SHARDS", str(DEFAULT_SHARD_COUNT)), int
        )

        return cls(
            window_size=window,
            max_requests=max_requests,
            cleanup_interval=cleanup_interval,
            shard_count=shard_count,
        )


@lru_cache()
def get_config() -> RateLimiterConfig:
    """Return cached limiter settings read from the environment."""

    return RateLimiterConfig.from_env()

