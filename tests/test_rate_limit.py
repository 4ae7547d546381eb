from __future__ import annotations

import logging
import math
import random
import threading
from datetime import timedelta

import pytest

from window_limiter import InvalidConfiguration, RateLimiter


@pytest.fixture()
def limiter():
    limiter = RateLimiter(5000, 2, start_cleanup=False)
    try:
        yield limiter
    finally:
        limiter.stop_cleanup_task()


def test_accept_request_follows_sliding_window(limiter):
    assert limiter.accept_request("userA", 1000) is True
    assert limiter.accept_request("userA", 2000) is True
    assert limiter.accept_request("userA", 3000) is False
    assert limiter.accept_request("userB", 3000) is True
    assert limiter.accept_request("userA", 6000) is True
    assert limiter.accept_request("userA", 7000) is True
    assert limiter.accept_request("userA", 8000) is False


def test_entry_exactly_window_old_is_stale():
    limiter = RateLimiter(1000, 1, start_cleanup=False)
    assert limiter.accept_request("a", 0)
    assert not limiter.accept_request("a", 999)
    assert limiter.accept_request("a", 1000)
    assert limiter.get_current_request_count("a") == 1


def test_first_request_is_always_admitted():
    limiter = RateLimiter(10, 1, start_cleanup=False)
    for index in range(20):
        assert limiter.accept_request(f"client-{index}", 0)
    assert limiter.get_tracked_client_count() == 20


def test_clients_do_not_affect_each_other(limiter):
    assert limiter.accept_request("a", 100)
    assert limiter.accept_request("a", 200)
    assert not limiter.accept_request("a", 300)

    assert limiter.accept_request("b", 300)
    assert limiter.get_current_request_count("a") == 2
    assert limiter.get_current_request_count("b") == 1


def test_denied_request_is_not_recorded(limiter):
    limiter.accept_request("a", 1)
    limiter.accept_request("a", 2)
    for timestamp in range(3, 50):
        assert not limiter.accept_request("a", timestamp)
    assert limiter.get_current_request_count("a") == 2


@pytest.mark.parametrize(
    "timestamp", [-5, -0.001, math.nan, math.inf, -math.inf, "1000", None, True]
)
def test_malformed_timestamp_is_denied_without_tracking(limiter, caplog, timestamp):
    with caplog.at_level(logging.WARNING, logger="window_limiter"):
        assert limiter.accept_request("X", timestamp) is False

    assert limiter.get_tracked_client_count() == 0
    assert limiter.get_current_request_count("X") == 0
    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert warnings
    assert warnings[0].client_id == "X"


def test_infinite_timestamp_does_not_block_client_or_cleanup():
    limiter = RateLimiter(1000, 1, start_cleanup=False)
    assert limiter.accept_request("a", math.inf) is False
    assert limiter.accept_request("a", 10_000_000) is True
    assert limiter.cleanup_stale_requests(now=10**15) == 1
    assert limiter.get_tracked_client_count() == 0


def test_large_integer_timestamp_is_accepted(limiter):
    assert limiter.accept_request("a", 10**400)


def test_negative_timestamp_leaves_existing_log_untouched(limiter):
    assert limiter.accept_request("X", 10)
    assert not limiter.accept_request("X", -5)
    assert limiter.get_current_request_count("X") == 1


def test_zero_timestamp_is_valid(limiter):
    assert limiter.accept_request("X", 0)


def test_out_of_order_timestamp_is_inserted_in_order(caplog):
    limiter = RateLimiter(1000, 3, start_cleanup=False)
    assert limiter.accept_request("a", 500)
    assert limiter.accept_request("a", 800)
    with caplog.at_level(logging.DEBUG, logger="window_limiter"):
        assert limiter.accept_request("a", 600)
    assert any("out-of-order" in record.getMessage() for record in caplog.records)

    # 500 is stale relative to 1550; 600 and 800 are still inside the window.
    assert limiter.accept_request("a", 1550)
    assert limiter.accept_request("a", 1600) is True
    log = limiter._store.shard_for("a").logs["a"]
    assert list(log) == [800, 1550, 1600]


def test_request_count_is_not_pruned_by_inspection(limiter):
    limiter.accept_request("a", 0)
    limiter.accept_request("a", 1)
    assert limiter.get_current_request_count("a") == 2
    assert limiter.get_current_request_count("missing") == 0
    assert limiter.get_tracked_client_count() == 1


def test_admitted_requests_never_exceed_quota_in_window():
    window, quota = 100, 3
    limiter = RateLimiter(window, quota, start_cleanup=False)
    rng = random.Random(7)
    admitted: dict[str, list[int]] = {"a": [], "b": [], "c": []}
    now = 0
    for _ in range(2000):
        now += rng.randint(0, 25)
        client = rng.choice(list(admitted))
        if limiter.accept_request(client, now):
            admitted[client].append(now)
        in_window = [t for t in admitted[client] if now - t < window]
        assert len(in_window) <= quota

    for history in admitted.values():
        assert history


@pytest.mark.parametrize(
    "window_size,max_requests",
    [
        (0, 5),
        (1000, 0),
        (-1, 5),
        (1000, -3),
        (1000, 2.5),
        (math.nan, 1),
        (math.inf, 1),
        (10**400, 1),
        ("1000", 1),
        (1000, True),
    ],
)
def test_invalid_configuration_is_rejected(window_size, max_requests):
    with pytest.raises(InvalidConfiguration):
        RateLimiter(window_size, max_requests, start_cleanup=False)


def test_invalid_configuration_is_a_value_error():
    with pytest.raises(ValueError):
        RateLimiter(1000, 5, cleanup_interval=0, start_cleanup=False)


def test_timedelta_window_is_converted_to_milliseconds():
    limiter = RateLimiter(timedelta(seconds=5), 1, start_cleanup=False)
    assert limiter.config.window_size == 5000.0
    assert limiter.accept_request("a", 0)
    assert not limiter.accept_request("a", 4999)
    assert limiter.accept_request("a", 5000)


def test_context_manager_stops_cleanup_task():
    with RateLimiter(1000, 1, cleanup_interval=30) as limiter:
        assert limiter.cleanup_running
    assert not limiter.cleanup_running


def test_concurrent_requests_respect_quota():
    limiter = RateLimiter(60_000, 50, start_cleanup=False)
    results: list[bool] = []
    results_lock = threading.Lock()

    def hammer() -> None:
        local = [limiter.accept_request("shared", 1000) for _ in range(100)]
        with results_lock:
            results.extend(local)

    threads = [threading.Thread(target=hammer) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(results) == 50
    assert limiter.get_current_request_count("shared") == 50


def test_sweeps_interleaved_with_requests_keep_quota():
    window, quota = 100, 3
    limiter = RateLimiter(window, quota, shard_count=1, start_cleanup=False)
    clients = [f"client-{index}" for index in range(6)]
    progress = {client: 0 for client in clients}
    admitted: dict[str, list[int]] = {client: [] for client in clients}
    errors: list[BaseException] = []
    finished = threading.Event()

    def submit(client: str) -> None:
        try:
            for step in range(1, 2001):
                now = step * 7
                if limiter.accept_request(client, now):
                    admitted[client].append(now)
                progress[client] = now
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    def sweep() -> None:
        # Sweeping at the slowest client's clock only drops entries every
        # client would prune on its next request anyway.
        try:
            while not finished.is_set():
                limiter.cleanup_stale_requests(now=min(progress.values()))
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    sweeper = threading.Thread(target=sweep)
    workers = [threading.Thread(target=submit, args=(client,)) for client in clients]
    sweeper.start()
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()
    finished.set()
    sweeper.join()

    assert errors == []
    for history in admitted.values():
        assert history
        for t in history:
            assert len([other for other in history if t - window < other <= t]) <= quota

    assert limiter.cleanup_stale_requests(now=10**9) == len(clients)
    assert limiter.get_tracked_client_count() == 0
