"""Acquire a group of locks without deadlocking.

Callers may request overlapping lock sets in any order.  ``lock()`` blocks on
one lock at a time and only try-locks the rest, so a caller never waits while
holding a partial set.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from typing import Protocol

logger = logging.getLogger(__name__)

# Upper bound of the randomized pause between attempts, in seconds.
MAX_BACKOFF = 0.001


class Lockable(Protocol):
    def acquire(self, blocking: bool = ..., timeout: float = ...) -> bool: ...

    def release(self) -> None: ...


def _dedupe(locks: tuple[Lockable, ...]) -> list[Lockable]:
    seen: set[int] = set()
    result: list[Lockable] = []
    for mu in locks:
        if id(mu) not in seen:
            seen.add(id(mu))
            result.append(mu)
    return result


def backoff() -> None:
    """Sleep a short random interval after a failed attempt."""
    time.sleep(random.uniform(0, MAX_BACKOFF))


def lock(*locks: Lockable) -> None:
    """Acquire every lock in *locks*.

    Blocks on a designated lock (initially the first), then try-locks the
    others.  If any try-lock fails, everything held is released and the
    next attempt blocks on the lock that failed.
    """
    mu_list = _dedupe(locks)
    if not mu_list:
        return
    blocking_i = 0
    while True:
        mu_list[blocking_i].acquire()
        held = [blocking_i]
        failed_i = -1
        for i, mu in enumerate(mu_list):
            if i == blocking_i:
                continue
            if not mu.acquire(blocking=False):
                failed_i = i
                break
            held.append(i)
        if failed_i < 0:
            return
        for i in reversed(held):
            mu_list[i].release()
        logger.debug("lock set contended, retrying on lock %d of %d", failed_i, len(mu_list))
        blocking_i = failed_i
        backoff()


def unlock(*locks: Lockable) -> None:
    """Release every lock in *locks* (duplicates are released once)."""
    for mu in reversed(_dedupe(locks)):
        mu.release()


@contextmanager
def locked(*locks: Lockable) -> Iterator[None]:
    lock(*locks)
    try:
        yield
    finally:
        unlock(*locks)


class KeyedLocks:
    """A lock per hashable key, created on demand and dropped when idle.

    ``hold()`` acquires the locks of several keys at once through
    :func:`lock`, so overlapping key sets never deadlock.
    """

    def __init__(self) -> None:
        self._mu = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def _checkout(self, keys: list[Hashable]) -> list[threading.Lock]:
        with self._mu:
            result = []
            for key in keys:
                if key not in self._locks:
                    self._locks[key] = threading.Lock()
                    self._users[key] = 0
                self._users[key] += 1
                result.append(self._locks[key])
            return result

    def _checkin(self, keys: list[Hashable]) -> None:
        with self._mu:
            for key in keys:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        unique = list(dict.fromkeys(keys))
        mu_list = self._checkout(unique)
        try:
            lock(*mu_list)
        except BaseException:
            self._checkin(unique)
            raise
        try:
            yield
        finally:
            unlock(*mu_list)
            self._checkin(unique)

    def __len__(self) -> int:
        with self._mu:
            return len(self._locks)
