"""Background timers for the evolution loop.

Components never start threads themselves; they receive a
:class:`Scheduler` and register work on it. :class:`ThreadScheduler` backs
production use with ``threading.Timer``; tests pass a scheduler that runs
callbacks on demand.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], object], name: str = "") -> Handle: ...

    def every(self, interval: float, callback: Callable[[], object], name: str = "") -> Handle: ...


class _Repeating:
    """Re-arms a ``threading.Timer`` after each run until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], object], name: str):
        self._interval = interval
        self._callback = callback
        self._name = name
        self._lock = threading.Lock()
        self._cancelled = False
        self._timer: threading.Timer | None = None

    def start(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._timer = threading.Timer(self._interval, self._run)
            self._timer.daemon = True
            self._timer.name = f"codevolve-{self._name or 'timer'}"
            self._timer.start()

    def _run(self) -> None:
        try:
            self._callback()
        except Exception:
            logger.exception("Scheduled task %s failed", self._name or self._callback)
        self.start()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()


class ThreadScheduler:
    """Scheduler backed by daemon ``threading.Timer`` objects."""

    def __init__(self) -> None:
        self._handles: list[Handle] = []
        self._lock = threading.Lock()

    def call_later(self, delay: float, callback: Callable[[], object], name: str = "") -> Handle:
        def run() -> None:
            try:
                callback()
            except Exception:
                logger.exception("Deferred task %s failed", name or callback)

        timer = threading.Timer(delay, run)
        timer.daemon = True
        timer.name = f"codevolve-{name or 'deferred'}"
        timer.start()
        with self._lock:
            self._prune()
            self._handles.append(timer)
        return timer

    def every(self, interval: float, callback: Callable[[], object], name: str = "") -> Handle:
        repeating = _Repeating(interval, callback, name)
        repeating.start()
        with self._lock:
            self._prune()
            self._handles.append(repeating)
        return repeating

    def pending_count(self) -> int:
        """Timers that may still fire."""
        with self._lock:
            self._prune()
            return len(self._handles)

    def _prune(self) -> None:
        # Called with the lock held. A Timer sets ``finished`` once it has run or been cancelled.
        self._handles = [
            h for h in self._handles
            if not (isinstance(h, threading.Timer) and h.finished.is_set())
            and not (isinstance(h, _Repeating) and h.cancelled)
        ]

    def cancel_all(self) -> None:
        with self._lock:
            handles, self._handles = self._handles, []
        for handle in handles:
            handle.cancel()
