"""Bounded admission queue with optional priority ordering.

A :class:`Queue` admits at most ``max_active`` entries at a time.  Further
requests wait in a queue and are promoted one at a time as active entries
release, either oldest first or by a caller supplied ``next_fn``.

:func:`acquire_multi` takes a slot in several queues as one unit and returns
a :class:`Transaction`.  Passing that transaction as ``txn=`` to a nested
:meth:`Queue.acquire` turns the call into a no-op for queues it already
holds, and rejects queues it does not.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Generic, TypeVar

from ocilayout.core.errors import CancelledError, TransactionError
from ocilayout.core.muset import backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")

Release = Callable[[], None]


def _noop() -> None:
    return None


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancelToken:
    """Thread safe cancellation signal with an optional deadline.

    Parameters
    ----------
    timeout:
        Seconds from now after which the token counts as cancelled.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._mu = threading.Lock()
        self._event = threading.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds until the deadline, ``None`` without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self) -> None:
        with self._mu:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            fn()

    def add_callback(self, fn: Callable[[], None]) -> Callable[[], None]:
        """Run *fn* on cancellation and return a function that unregisters it.

        *fn* runs immediately when the token is already cancelled.
        """
        with self._mu:
            if not self._event.is_set():
                self._callbacks.append(fn)

                def remove() -> None:
                    with self._mu:
                        if fn in self._callbacks:
                            self._callbacks.remove(fn)

                return remove
        fn()
        return _noop

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


class _Slot:
    """One request; compared by identity so equal entries stay distinct."""

    __slots__ = ("entry", "ready", "admitted", "released")

    def __init__(self, entry: object) -> None:
        self.entry = entry
        self.ready = threading.Event()
        self.admitted = False
        self.released = False


class Queue(Generic[T]):
    """Admission queue capping concurrent holders of a resource.

    Parameters
    ----------
    max_active:
        Maximum concurrent active entries; values below 1 become 1.
    next_fn:
        ``next_fn(queued, active) -> index`` selects which queued entry to
        promote.  The result is clamped to the queued range.  Oldest first
        when omitted.
    """

    def __init__(self, max_active: int = 1, next_fn: Callable[[list[T], list[T]], int] | None = None) -> None:
        self.max_active = max(1, max_active)
        self._next = next_fn
        self._mu = threading.Lock()
        self._active: list[_Slot] = []
        self._queued: list[_Slot] = []

    @property
    def active_count(self) -> int:
        with self._mu:
            return len(self._active)

    @property
    def queued_count(self) -> int:
        with self._mu:
            return len(self._queued)

    def _in_txn(self, txn: Transaction | None) -> bool:
        if txn is None or not txn.active:
            return False
        if txn.holds(self):
            return True
        raise TransactionError("cannot acquire new queues during a transaction")

    def acquire(self, entry: T, *, cancel: CancelToken | None = None, txn: Transaction | None = None) -> Release:
        """Block until *entry* is admitted and return its release function.

        Raises CancelledError when *cancel* fires first.  A promotion that
        races with cancellation is passed on to the next waiter.
        """
        if self._in_txn(txn):
            return _noop
        if cancel is not None and cancel.cancelled:
            raise CancelledError("acquire cancelled")
        slot = _Slot(entry)
        with self._mu:
            if len(self._active) + len(self._queued) < self.max_active:
                slot.admitted = True
                self._active.append(slot)
                return self._release_fn(slot)
            self._queued.append(slot)

        if cancel is None:
            slot.ready.wait()
            return self._release_fn(slot)

        remove_cb = cancel.add_callback(slot.ready.set)
        try:
            while True:
                slot.ready.wait(cancel.remaining())
                if cancel.cancelled:
                    with self._mu:
                        admitted = slot.admitted
                        if not admitted:
                            self._queued.remove(slot)
                    if admitted:
                        logger.debug("acquire cancelled after promotion, passing slot on")
                        self._release(slot)
                    raise CancelledError("acquire cancelled")
                if slot.admitted:
                    return self._release_fn(slot)
        finally:
            remove_cb()

    def try_acquire(self, entry: T, *, txn: Transaction | None = None) -> Release | None:
        """Admit *entry* if capacity is available, else return ``None``."""
        if self._in_txn(txn):
            return _noop
        with self._mu:
            if len(self._active) + len(self._queued) < self.max_active:
                slot = _Slot(entry)
                slot.admitted = True
                self._active.append(slot)
                return self._release_fn(slot)
        return None

    def _release(self, slot: _Slot) -> None:
        with self._mu:
            if slot.released:
                return
            slot.released = True
            if slot in self._active:
                self._active.remove(slot)
            if not self._queued or len(self._active) >= self.max_active:
                return
            i = 0
            if self._next is not None and len(self._queued) > 1:
                i = self._next([s.entry for s in self._queued], [s.entry for s in self._active])
                i = max(min(i, len(self._queued) - 1), 0)
            promoted = self._queued.pop(i)
            promoted.admitted = True
            self._active.append(promoted)
            promoted.ready.set()

    def _release_fn(self, slot: _Slot) -> Release:
        def release() -> None:
            self._release(slot)

        return release


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class Transaction:
    """Slots held in several queues, released together."""

    def __init__(self, queues: list[Queue], releases: list[Release]) -> None:
        self._queues = queues
        self._releases = releases
        self.active = True

    def holds(self, queue: Queue) -> bool:
        return any(q is queue for q in self._queues)

    def release(self) -> None:
        """Release every slot in reverse acquisition order.

        Not thread safe: finish nested calls using this transaction first.
        """
        if not self.active:
            return
        self.active = False
        for release in reversed(self._releases):
            release()

    def __enter__(self) -> Transaction:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def acquire_multi(
    entry: T,
    *queues: Queue[T] | None,
    cancel: CancelToken | None = None,
    txn: Transaction | None = None,
) -> Transaction:
    """Acquire *entry* in every queue without risking deadlock.

    Blocks on one queue and tries the rest.  When a try fails, all held slots
    are released and the next attempt blocks on the queue that failed.
    ``None`` queues are skipped and duplicates acquired once.
    """
    if txn is not None and txn.active:
        raise TransactionError("transaction already holds queues, nested acquire_multi is not allowed")
    q_list: list[Queue[T]] = []
    for q in queues:
        if q is not None and not any(q is held for held in q_list):
            q_list.append(q)
    if not q_list:
        return Transaction([], [])

    blocking_i = 0
    while True:
        releases: list[Release] = [_noop] * len(q_list)
        releases[blocking_i] = q_list[blocking_i].acquire(entry, cancel=cancel)
        failed_i = -1
        for i, q in enumerate(q_list):
            if i == blocking_i:
                continue
            release = q.try_acquire(entry)
            if release is None:
                failed_i = i
                break
            releases[i] = release
        if failed_i < 0:
            return Transaction(q_list, releases)
        for release in reversed(releases):
            release()
        logger.debug("queue set contended, retrying on queue %d of %d", failed_i, len(q_list))
        blocking_i = failed_i
        backoff()
