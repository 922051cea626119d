"""Per-file mutual exclusion for overlapping executions."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class FileLockRegistry:
    """Hands out one lock per path.

    Locks are always acquired in sorted path order, so two executions that
    share files cannot deadlock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, path: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = self._locks[path] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, paths: list[str]) -> Iterator[None]:
        acquired: list[threading.Lock] = []
        try:
            for path in sorted(set(paths)):
                lock = self._lock_for(path)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def is_locked(self, path: str) -> bool:
        with self._guard:
            lock = self._locks.get(path)
        return lock is not None and lock.locked()
