"""Tests for background periodic tasks."""

import threading

from p2p_settlement.runner import PeriodicTask


class TestPeriodicTask:
    def test_run_once(self):
        calls = []
        task = PeriodicTask("test", 60, lambda: calls.append(1))

        assert task.run_once() is True
        assert calls == [1]
        assert not task.is_running

    def test_exceptions_are_contained(self):
        """A failing run is logged and the task stays usable."""

        def boom():
            raise RuntimeError("boom")

        task = PeriodicTask("test", 60, boom)

        assert task.run_once() is True
        assert not task.is_running

    def test_overlapping_run_dropped(self):
        nested = []
        task = PeriodicTask("test", 60, lambda: nested.append(task.run_once()))

        task.run_once()

        assert nested == [False]

    def test_start_runs_immediately_and_stops(self):
        ran = threading.Event()
        task = PeriodicTask("test", 60, ran.set)

        task.start()
        try:
            assert ran.wait(5)
            assert task.is_alive
        finally:
            task.stop()

        assert not task.is_alive

    def test_start_twice_keeps_one_thread(self):
        task = PeriodicTask("test", 60, lambda: None)
        task.start()
        try:
            thread = task._thread
            task.start()
            assert task._thread is thread
        finally:
            task.stop()
