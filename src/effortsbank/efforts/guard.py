"""Per-effort locks with same-thread reentrancy detection.

Every read-modify-write on an effort runs while holding that effort's
lock, so two callers on different threads are serialised per effort
while different efforts proceed in parallel.

A plain Lock would deadlock if the thread that holds it calls back in
(a payout recipient re-entering the ledger). An RLock would let the
nested call through. The table remembers which effort ids the current
thread holds and refuses nested entry.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ReentrantCallError(RuntimeError):
    """Raised when a thread re-enters an effort it is already transitioning."""

    def __init__(self, effort_id: int) -> None:
        super().__init__(f"Reentrant call on effort {effort_id} rejected")
        self.effort_id = effort_id


class EffortLockTable:
    """Lazily created lock per effort id."""

    def __init__(self) -> None:
        self._table_lock = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}
        self._held = threading.local()

    def _lock_for(self, effort_id: int) -> threading.Lock:
        with self._table_lock:
            lock = self._locks.get(effort_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[effort_id] = lock
            return lock

    def _held_ids(self) -> set[int]:
        held = getattr(self._held, "ids", None)
        if held is None:
            held = set()
            self._held.ids = held
        return held

    @contextmanager
    def hold(self, effort_id: int) -> Iterator[None]:
        """Exclusive access to one effort for the current thread.

        Raises ReentrantCallError if this thread already holds it.
        """
        held = self._held_ids()
        if effort_id in held:
            raise ReentrantCallError(effort_id)
        lock = self._lock_for(effort_id)
        with lock:
            held.add(effort_id)
            try:
                yield
            finally:
                held.discard(effort_id)
