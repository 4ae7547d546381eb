"""Background sweep that reclaims memory held for idle clients."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from window_limiter.store import ClientStore, prune_stale
from window_limiter.utils.time import wall_clock_ms

LOGGER = logging.getLogger(__name__)


class Reaper:
    """Periodically prunes stale entries and drops clients whose log is empty.

    The sweep runs on a daemon thread so it never holds the process open. The
    staleness reference comes from ``clock`` (wall-clock milliseconds unless
    overridden), not from the timestamps callers pass to the limiter.
    """

    def __init__(
        self,
        store: ClientStore,
        *,
        window: float,
        interval: float,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._store = store
        self._window = window
        self._interval = interval
        self._clock = clock or wall_clock_ms
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._lifecycle_lock = threading.Lock()

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        """Start sweeping, replacing any sweep thread already running."""

        with self._lifecycle_lock:
            self._stop_locked()
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(stop_event,),
                name="window-limiter-reaper",
                daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()

    def stop(self) -> None:
        """Stop sweeping. Calling this when already stopped does nothing."""

        with self._lifecycle_lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        if self._stop_event is None:
            return
        self._stop_event.set()
        thread = self._thread
        self._stop_event = None
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._interval):
            try:
                self.sweep()
            except Exception:  # noqa: BLE001
                LOGGER.exception("rate limiter cleanup failed")

    def sweep(self, now: Optional[float] = None) -> int:
        """Run one cleanup pass and return the number of clients removed."""

        reference = self._clock() if now is None else now
        removed = 0
        for shard in self._store.shards():
            with shard.lock:
                for client_id in list(shard.logs):
                    try:
                        log = shard.logs[client_id]
                        prune_stale(log, reference, self._window)
                        if not log:
                            del shard.logs[client_id]
                            removed += 1
                    except Exception:  # noqa: BLE001
                        LOGGER.exception(
                            "cleanup skipped client", extra={"client_id": client_id}
                        )

        LOGGER.info(
            "rate limiter cleanup performed",
            extra={"removed_clients": removed, "tracked_clients": self._store.client_count()},
        )
        return removed
