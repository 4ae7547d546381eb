"""In-memory sliding window rate limiter keyed by client id."""
from __future__ import annotations

import logging
import math
import weakref
from datetime import timedelta
from numbers import Real
from typing import Any, Callable, Optional, Union

from window_limiter.config import (
    DEFAULT_CLEANUP_INTERVAL_SECONDS,
    DEFAULT_SHARD_COUNT,
    RateLimiterConfig,
    RateLimiterError,
    get_config,
)
from window_limiter.reaper import Reaper
from window_limiter.store import ClientStore, prune_stale, record

LOGGER = logging.getLogger(__name__)


class MalformedInput(RateLimiterError, ValueError):
    """Raised when a request carries a timestamp that cannot be evaluated."""


def _validate_timestamp(timestamp: Any) -> float:
    if not isinstance(timestamp, Real) or isinstance(timestamp, bool):
        raise MalformedInput(f"Timestamp must be numeric, got {timestamp!r}")
    if not isinstance(timestamp, int) and not math.isfinite(timestamp):
        raise MalformedInput(f"Timestamp must be finite, got {timestamp!r}")
    if timestamp < 0:
        raise MalformedInput(f"Timestamp cannot be negative, got {timestamp!r}")
    return timestamp


class RateLimiter:
    """Admits at most ``max_requests`` per client within a trailing ``window_size``.

    Timestamps are caller-supplied numbers sharing one unit with
    ``window_size`` (milliseconds by convention). A background reaper sweeps
    idle clients every ``cleanup_interval`` seconds using ``clock`` as its
    reference instant.
    """

    def __init__(
        self,
        window_size: Union[float, timedelta],
        max_requests: int,
        *,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        shard_count: int = DEFAULT_SHARD_COUNT,
        clock: Optional[Callable[[], float]] = None,
        start_cleanup: bool = True,
    ) -> None:
        self._config = RateLimiterConfig(
            window_size=window_size,
            max_requests=max_requests,
            cleanup_interval=cleanup_interval,
            shard_count=shard_count,
        )
        self._store = ClientStore(self._config.shard_count)
        self._reaper = Reaper(
            self._store,
            window=self._config.window_size,
            interval=self._config.cleanup_interval,
            clock=clock,
        )
        # The reaper only references the store, so an abandoned limiter can
        # still be collected and its sweep thread released.
        self._finalizer = weakref.finalize(self, self._reaper.stop)
        if start_cleanup:
            self.start_cleanup_task()

    @classmethod
    def from_config(cls, config: RateLimiterConfig, **kwargs: Any) -> "RateLimiter":
        return cls(
            config.window_size,
            config.max_requests,
            cleanup_interval=config.cleanup_interval,
            shard_count=config.shard_count,
            **kwargs,
        )

    @classmethod
    def from_env(cls, **kwargs: Any) -> "RateLimiter":
        return cls.from_config(get_config(), **kwargs)

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    @property
    def cleanup_running(self) -> bool:
        return self._reaper.running

    def accept_request(self, client_id: str, timestamp: float) -> bool:
        """Return ``True`` when the request fits the client's quota and record it."""

        try:
            timestamp = _validate_timestamp(timestamp)
        except MalformedInput as exc:
            LOGGER.warning("Request rejected: %s", exc, extra={"client_id": client_id})
            return False

        window = self._config.window_size
        shard = self._store.shard_for(client_id)
        with shard.lock:
            log = shard.logs.get(client_id)
            if log is None:
                shard.logs[client_id] = self._store.new_log(timestamp)
                return True
            prune_stale(log, timestamp, window)
            if len(log) >= self._config.max_requests:
                return False
            in_order = record(log, timestamp)

        if not in_order:
            LOGGER.debug(
                "out-of-order timestamp recorded in sorted position",
                extra={"client_id": client_id, "timestamp": timestamp},
            )
        return True

    def start_cleanup_task(self) -> None:
        """Start the background sweep, replacing one that is already running."""

        self._reaper.start()

    def stop_cleanup_task(self) -> None:
        """Stop the background sweep. Safe to call more than once."""

        self._reaper.stop()

    def cleanup_stale_requests(self, now: Optional[float] = None) -> int:
        """Sweep all clients immediately; ``now`` defaults to the reaper clock."""

        return self._reaper.sweep(now)

    def get_current_request_count(self, client_id: str) -> int:
        """Stored log length for ``client_id``, including entries not yet pruned."""

        return self._store.request_count(client_id)

    def get_tracked_client_count(self) -> int:
        return self._store.client_count()

    def __enter__(self) -> "RateLimiter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop_cleanup_task()
