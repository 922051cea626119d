"""Tests for the thread-backed scheduler."""

from __future__ import annotations

import threading

from codevolve.core.scheduler import ThreadScheduler


class TestThreadScheduler:
    def test_fired_timers_are_released(self):
        """A long-running process does not keep every one-shot timer it ever created."""
        scheduler = ThreadScheduler()
        fired = threading.Event()

        handle = scheduler.call_later(0, fired.set, name="once")
        assert fired.wait(5)
        handle.join(5)

        assert scheduler.pending_count() == 0

    def test_cancelled_timers_are_released(self):
        scheduler = ThreadScheduler()
        scheduler.call_later(60, lambda: None).cancel()
        scheduler.every(60, lambda: None).cancel()

        assert scheduler.pending_count() == 0

    def test_pending_timers_are_kept_until_cancel_all(self):
        scheduler = ThreadScheduler()
        ran = []
        scheduler.call_later(60, lambda: ran.append("once"))
        scheduler.every(60, lambda: ran.append("tick"))

        assert scheduler.pending_count() == 2
        scheduler.cancel_all()
        assert scheduler.pending_count() == 0
        assert ran == []

    def test_failing_callback_is_logged(self, caplog):
        scheduler = ThreadScheduler()

        def boom():
            raise RuntimeError("boom")

        handle = scheduler.call_later(0, boom, name="boom")
        handle.join(5)

        assert "Deferred task boom failed" in caplog.text
        assert scheduler.pending_count() == 0
