"""Tests for the background Watcher."""

import time
from queue import Empty, Queue

from pywitr.errors import NotFoundError
from pywitr.models import Result, Source, SourceType, Target, TargetKind
from pywitr.watch import Watcher

RESULT = Result(Target(TargetKind.PID, "1"), 1, (), Source(SourceType.UNKNOWN))


class TestWatcher:
    """Tests for Watcher."""

    def test_creation(self):
        watcher = Watcher(lambda: RESULT, Queue())
        assert watcher.poll_rate == 2.0
        assert not watcher.is_running

    def test_poll_rate_minimum(self):
        watcher = Watcher(lambda: RESULT, Queue(), poll_rate=0.01)
        assert watcher.poll_rate == 0.1
        watcher.poll_rate = 0.0
        assert watcher.poll_rate == 0.1

    def test_run_once_returns_error(self):
        def failing():
            raise NotFoundError("gone")

        outcome = Watcher(failing, Queue()).run_once()
        assert isinstance(outcome, NotFoundError)

    def test_start_stop(self):
        queue: Queue = Queue()
        watcher = Watcher(lambda: RESULT, queue, poll_rate=0.1)
        watcher.start()
        assert watcher.is_running
        first = queue.get(timeout=2.0)
        watcher.stop()
        assert first is RESULT
        assert not watcher.is_running

    def test_start_twice_is_noop(self):
        watcher = Watcher(lambda: RESULT, Queue(), poll_rate=0.1)
        watcher.start()
        thread = watcher._thread
        watcher.start()
        assert watcher._thread is thread
        watcher.stop()

    def test_trigger_runs_early(self):
        calls = []

        def inspect_fn():
            calls.append(time.monotonic())
            return RESULT

        queue: Queue = Queue()
        watcher = Watcher(inspect_fn, queue, poll_rate=60.0)
        watcher.start()
        queue.get(timeout=2.0)
        watcher.trigger()
        queue.get(timeout=2.0)
        watcher.stop()
        assert len(calls) >= 2

    def test_survives_unexpected_errors(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("transient")
            return RESULT

        queue: Queue = Queue()
        watcher = Watcher(flaky, queue, poll_rate=0.1)
        watcher.start()
        try:
            assert queue.get(timeout=2.0) is RESULT
        finally:
            watcher.stop()

    def test_stopped_watcher_is_quiet(self):
        queue: Queue = Queue()
        watcher = Watcher(lambda: RESULT, queue, poll_rate=0.1)
        watcher.start()
        watcher.stop()
        while True:
            try:
                queue.get_nowait()
            except Empty:
                break
        time.sleep(0.3)
        assert queue.empty()
