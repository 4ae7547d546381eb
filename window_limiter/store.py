"""Sharded in-memory store of per-client request logs."""
from __future__ import annotations

import bisect
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Deque, Dict, Iterator

ClientLog = Deque[float]


def prune_stale(log: ClientLog, now: float, window: float) -> int:
    """Drop entries at least ``window`` older than ``now`` from the front of ``log``.

    The window is half-open: an entry exactly ``window`` old is stale. The log
    must be ordered oldest first. Returns the number of entries removed.
    """

    removed = 0
    while log and now - log[0] >= window:
        log.popleft()
        removed += 1
    return removed


def record(log: ClientLog, timestamp: float) -> bool:
    """Insert ``timestamp`` keeping ``log`` sorted; return ``False`` if it arrived out of order."""

    if not log or log[-1] <= timestamp:
        log.append(timestamp)
        return True
    bisect.insort(log, timestamp)
    return False


@dataclass
class Shard:
    """A slice of the client map guarded by its own lock."""

    lock: Lock = field(default_factory=Lock)
    logs: Dict[str, ClientLog] = field(default_factory=dict)


class ClientStore:
    """Maps client ids to request logs, split across independently locked shards."""

    def __init__(self, shard_count: int) -> None:
        self._shards = [Shard() for _ in range(shard_count)]

    def shard_for(self, client_id: str) -> Shard:
        return self._shards[hash(client_id) % len(self._shards)]

    def shards(self) -> Iterator[Shard]:
        return iter(self._shards)

    @staticmethod
    def new_log(timestamp: float) -> ClientLog:
        return deque([timestamp])

    def request_count(self, client_id: str) -> int:
        shard = self.shard_for(client_id)
        with shard.lock:
            log = shard.logs.get(client_id)
            return len(log) if log is not None else 0

    def client_count(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.logs)
        return total

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.logs.clear()
