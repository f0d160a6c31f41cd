"""Tests for the reconcile work queue."""

from __future__ import annotations

import threading
import time

from myresource_controller.workqueue import WorkQueue, backoff_delay


class TestWorkQueue:
    """Tests for dedup, per-key exclusivity and backoff."""

    def test_fifo(self):
        q = WorkQueue()
        q.add("a")
        q.add("b")
        assert q.get(timeout=0) == "a"
        assert q.get(timeout=0) == "b"

    def test_dedup_while_waiting(self):
        q = WorkQueue()
        q.add("a")
        q.add("a")
        assert len(q) == 1

    def test_key_not_handed_out_twice(self):
        q = WorkQueue()
        q.add("a")
        assert q.get(timeout=0) == "a"
        q.add("a")
        # Still being processed: a second worker must not get it.
        assert q.get(timeout=0.05) is None
        q.done("a")
        assert q.get(timeout=0) == "a"

    def test_done_without_readd(self):
        q = WorkQueue()
        q.add("a")
        q.get(timeout=0)
        q.done("a")
        assert q.get(timeout=0.01) is None

    def test_get_timeout(self):
        q = WorkQueue()
        start = time.monotonic()
        assert q.get(timeout=0.05) is None
        assert time.monotonic() - start >= 0.04

    def test_add_after(self):
        q = WorkQueue()
        q.add_after("a", 0.05)
        assert q.get(timeout=0) is None
        assert q.get(timeout=2) == "a"

    def test_rate_limited_backoff_doubles_and_caps(self):
        q = WorkQueue(base_backoff=5, max_backoff=30)
        delays = [q.add_rate_limited("a") for _ in range(5)]
        assert delays == [5, 10, 20, 30, 30]
        assert q.num_requeues("a") == 5
        q.forget("a")
        assert q.num_requeues("a") == 0
        assert q.add_rate_limited("a") == 5

    def test_shut_down_wakes_getters(self):
        q = WorkQueue()
        results = []
        t = threading.Thread(target=lambda: results.append(q.get()))
        t.start()
        time.sleep(0.05)
        q.shut_down()
        t.join(timeout=2)
        assert results == [None]
        q.add("a")
        assert len(q) == 0

    def test_concurrent_workers_never_share_a_key(self):
        q = WorkQueue()
        active = set()
        lock = threading.Lock()
        overlaps = []
        processed = []

        def worker():
            while True:
                key = q.get(timeout=0.2)
                if key is None:
                    return
                with lock:
                    if key in active:
                        overlaps.append(key)
                    active.add(key)
                time.sleep(0.001)
                with lock:
                    active.discard(key)
                    processed.append(key)
                q.done(key)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for i in range(200):
            q.add(f"k{i % 5}")
        for t in threads:
            t.join(timeout=10)

        assert overlaps == []
        assert processed


class TestBackoffDelay:
    def test_doubles_then_caps(self):
        assert [backoff_delay(n, 5, 60) for n in range(1, 6)] == [5, 10, 20, 40, 60]

    def test_first_attempt_floor(self):
        assert backoff_delay(0, 5, 60) == 5
