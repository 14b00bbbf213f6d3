"""Tests for the admission queue, cancellation and multi-queue transactions."""

from __future__ import annotations

import threading
import time

import pytest

from ocilayout.core.errors import CancelledError, TransactionError
from ocilayout.core.pqueue import CancelToken, Queue, acquire_multi


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.001)


class TestQueueAdmission:
    def test_capacity(self):
        q: Queue[str] = Queue(2)
        r1 = q.try_acquire("a")
        r2 = q.try_acquire("b")
        assert r1 is not None and r2 is not None
        assert q.try_acquire("c") is None
        r1()
        r3 = q.try_acquire("c")
        assert r3 is not None
        assert q.active_count == 2

    def test_release_is_idempotent(self):
        q: Queue[str] = Queue(1)
        release = q.acquire("a")
        release()
        release()
        assert q.active_count == 0

    def test_minimum_capacity_is_one(self):
        assert Queue(0).max_active == 1

    def test_waiter_promoted_on_release(self):
        q: Queue[str] = Queue(1)
        release = q.acquire("first")
        admitted = threading.Event()

        def worker():
            r = q.acquire("second")
            admitted.set()
            r()

        t = threading.Thread(target=worker, daemon=True)
        t.start()
        _wait_for(lambda: q.queued_count == 1)
        assert not admitted.is_set()
        release()
        t.join(timeout=5)
        assert admitted.is_set()
        assert q.active_count == 0

    def test_next_fn_selects_promotion(self):
        # promote the newest waiter first
        q: Queue[int] = Queue(1, next_fn=lambda queued, active: len(queued) - 1)
        release = q.acquire(0)
        order: list[int] = []
        threads = []

        def worker(n: int):
            r = q.acquire(n)
            order.append(n)
            r()

        for n in (1, 2, 3):
            t = threading.Thread(target=worker, args=(n,), daemon=True)
            t.start()
            threads.append(t)
            _wait_for(lambda n=n: q.queued_count == n)
        release()
        for t in threads:
            t.join(timeout=5)
        assert order == [3, 2, 1]

    def test_next_fn_result_clamped(self):
        q: Queue[int] = Queue(1, next_fn=lambda queued, active: 99)
        release = q.acquire(0)
        done = threading.Event()

        def worker(n: int):
            q.acquire(n)()
            if n == 2:
                done.set()

        threads = [threading.Thread(target=worker, args=(n,), daemon=True) for n in (1, 2)]
        threads[0].start()
        _wait_for(lambda: q.queued_count == 1)
        threads[1].start()
        _wait_for(lambda: q.queued_count == 2)
        release()
        for t in threads:
            t.join(timeout=5)
        assert done.is_set()


class TestCancellation:
    def test_already_cancelled(self):
        q: Queue[str] = Queue(1)
        token = CancelToken()
        token.cancel()
        with pytest.raises(CancelledError):
            q.acquire("a", cancel=token)
        assert q.active_count == 0

    def test_cancel_while_queued(self):
        q: Queue[str] = Queue(1)
        release = q.acquire("holder")
        token = CancelToken()
        errors: list[Exception] = []

        def worker():
            try:
                q.acquire("waiter", cancel=token)
            except CancelledError as err:
                errors.append(err)

        t = threading.Thread(target=worker, daemon=True)
        t.start()
        _wait_for(lambda: q.queued_count == 1)
        token.cancel()
        t.join(timeout=5)
        assert len(errors) == 1
        assert q.queued_count == 0
        release()
        assert q.active_count == 0

    def test_cancel_racing_promotion_passes_slot_on(self):
        token = CancelToken()

        def next_fn(queued: list[str], active: list[str]) -> int:
            # cancel the waiter while it is being promoted
            token.cancel()
            return queued.index("cancelled")

        q: Queue[str] = Queue(1, next_fn=next_fn)
        release = q.acquire("holder")
        errors: list[Exception] = []
        admitted = threading.Event()

        def cancelled_worker():
            try:
                q.acquire("cancelled", cancel=token)
            except CancelledError as err:
                errors.append(err)

        def patient_worker():
            r = q.acquire("patient")
            admitted.set()
            r()

        first = threading.Thread(target=cancelled_worker, daemon=True)
        first.start()
        _wait_for(lambda: q.queued_count == 1)
        second = threading.Thread(target=patient_worker, daemon=True)
        second.start()
        _wait_for(lambda: q.queued_count == 2)
        release()
        first.join(timeout=5)
        second.join(timeout=5)
        assert len(errors) == 1
        assert admitted.is_set()
        assert q.active_count == 0
        assert q.queued_count == 0

    def test_deadline(self):
        q: Queue[str] = Queue(1)
        release = q.acquire("holder")
        with pytest.raises(CancelledError):
            q.acquire("waiter", cancel=CancelToken(timeout=0.05))
        assert q.queued_count == 0
        release()

    def test_callback_runs_once(self):
        token = CancelToken()
        calls: list[int] = []
        token.add_callback(lambda: calls.append(1))
        remove = token.add_callback(lambda: calls.append(2))
        remove()
        token.cancel()
        token.cancel()
        assert calls == [1]
        token.add_callback(lambda: calls.append(3))
        assert calls == [1, 3]


class TestTransactions:
    def test_acquire_multi_holds_all(self):
        q1: Queue[str] = Queue(1)
        q2: Queue[str] = Queue(1)
        with acquire_multi("entry", q1, q2) as txn:
            assert txn.active
            assert q1.active_count == 1
            assert q2.active_count == 1
        assert q1.active_count == 0
        assert q2.active_count == 0
        assert not txn.active

    def test_nested_acquire_on_held_queue_is_noop(self):
        q1: Queue[str] = Queue(1)
        q2: Queue[str] = Queue(1)
        txn = acquire_multi("entry", q1, q2)
        release = q1.acquire("entry", txn=txn)
        assert q1.active_count == 1
        release()
        assert q1.active_count == 1
        assert q2.try_acquire("entry", txn=txn) is not None
        txn.release()
        assert q1.active_count == 0

    def test_untracked_queue_rejected(self):
        q1: Queue[str] = Queue(1)
        other: Queue[str] = Queue(1)
        with acquire_multi("entry", q1) as txn:
            with pytest.raises(TransactionError):
                other.acquire("entry", txn=txn)
            with pytest.raises(TransactionError):
                acquire_multi("entry", other, txn=txn)

    def test_skips_none_and_duplicates(self):
        q: Queue[str] = Queue(2)
        with acquire_multi("entry", q, None, q):
            assert q.active_count == 1
        with acquire_multi("entry") as txn:
            assert txn.active

    def test_released_txn_no_longer_exempts(self):
        q: Queue[str] = Queue(1)
        txn = acquire_multi("entry", q)
        txn.release()
        release = q.acquire("entry", txn=txn)
        assert q.active_count == 1
        release()

    def test_overlapping_sets_do_not_deadlock(self):
        q1: Queue[int] = Queue(1)
        q2: Queue[int] = Queue(1)
        q3: Queue[int] = Queue(1)
        counter = {"n": 0}

        def worker(queues):
            for i in range(50):
                with acquire_multi(i, *queues):
                    counter["n"] += 1

        threads = [
            threading.Thread(target=worker, args=([q1, q2],), daemon=True),
            threading.Thread(target=worker, args=([q2, q3],), daemon=True),
            threading.Thread(target=worker, args=([q3, q1],), daemon=True),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        assert not any(t.is_alive() for t in threads)
        assert counter["n"] == 150
