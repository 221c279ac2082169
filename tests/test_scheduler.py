"""Tests for the scheduler, debouncer and change emitter."""

import threading

import pytest

from termactivity.scheduler import ChangeEmitter, Debouncer, Scheduler


class ManualClock:
    """Monotonic seconds the test advances by hand."""

    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def mono():
    return ManualClock()


@pytest.fixture
def scheduler(mono):
    return Scheduler(clock=mono)


class TestScheduler:
    """Tests for Scheduler driven by hand."""

    def test_call_soon_runs_in_order(self, scheduler):
        """Test queued calls run first in, first out."""
        calls = []
        scheduler.call_soon(calls.append, 1)
        scheduler.call_soon(calls.append, 2)

        assert scheduler.run_pending() == 2
        assert calls == [1, 2]

    def test_call_later_waits_for_due_time(self, scheduler, mono):
        """Test a delayed call runs only once it is due."""
        calls = []
        scheduler.call_later(0.5, calls.append, "x")

        mono.now += 0.25
        scheduler.run_pending()
        assert calls == []

        mono.now += 0.25
        scheduler.run_pending()
        assert calls == ["x"]

        mono.now += 1
        scheduler.run_pending()
        assert calls == ["x"]

    def test_every_first_runs_one_interval_out(self, scheduler, mono):
        """Test a periodic task first runs after one interval."""
        ticks = []
        scheduler.every(2.0, lambda: ticks.append(mono.now))

        scheduler.run_pending()
        assert ticks == []

        for _ in range(6):
            mono.now += 1.0
            scheduler.run_pending()

        assert ticks == [102.0, 104.0, 106.0]

    def test_timers_run_in_due_order(self, scheduler, mono):
        """Test timers run by due time, not creation order."""
        calls = []
        scheduler.call_later(0.5, calls.append, "late")
        scheduler.call_later(0.1, calls.append, "early")
        scheduler.call_later(0.1, calls.append, "early-second")

        mono.now += 1
        scheduler.run_pending()
        assert calls == ["early", "early-second", "late"]

    def test_cancel(self, scheduler, mono):
        """Test a cancelled timer never runs."""
        calls = []
        handle = scheduler.every(1.0, calls.append, "tick")
        mono.now += 1
        scheduler.run_pending()
        handle.cancel()

        mono.now += 5
        scheduler.run_pending()
        assert calls == ["tick"]

    def test_failing_task_does_not_stop_others(self, scheduler, mono):
        """Test a raising task is logged and the rest still run."""
        calls = []

        def boom():
            raise RuntimeError("task failed")

        scheduler.every(1.0, boom)
        scheduler.every(1.0, calls.append, "ok")
        scheduler.call_soon(boom)
        scheduler.call_soon(calls.append, "soon")

        mono.now += 1
        scheduler.run_pending()
        mono.now += 1
        scheduler.run_pending()

        assert calls == ["soon", "ok", "ok"]

    def test_callbacks_may_schedule_more_work(self, scheduler):
        """Test a callback can queue more calls."""
        calls = []
        scheduler.call_soon(lambda: scheduler.call_soon(calls.append, "nested"))

        scheduler.run_pending()
        scheduler.run_pending()
        assert calls == ["nested"]


class TestSchedulerThread:
    """Tests for Scheduler on its own thread."""

    def test_start_and_stop(self):
        """Test the thread starts and stops."""
        scheduler = Scheduler()
        done = threading.Event()
        names = []

        def record():
            names.append(threading.current_thread().name)
            done.set()

        scheduler.start()
        try:
            assert scheduler.is_running
            scheduler.call_soon(record)
            assert done.wait(timeout=5)
        finally:
            scheduler.stop()

        assert not scheduler.is_running
        assert names == ["termactivity-scheduler"]

    def test_thread_is_daemon(self):
        """Test the thread is a daemon."""
        scheduler = Scheduler(name="test-scheduler")
        scheduler.start()
        try:
            threads = [t for t in threading.enumerate() if t.name == "test-scheduler"]
            assert len(threads) == 1
            assert threads[0].daemon
        finally:
            scheduler.stop()

    def test_start_is_idempotent(self):
        """Test starting twice keeps one thread."""
        scheduler = Scheduler(name="idempotent-scheduler")
        scheduler.start()
        scheduler.start()
        try:
            threads = [t for t in threading.enumerate() if t.name == "idempotent-scheduler"]
            assert len(threads) == 1
        finally:
            scheduler.stop()

    def test_timer_fires_on_real_clock(self):
        """Test a timer fires against the real clock."""
        scheduler = Scheduler()
        fired = threading.Event()
        scheduler.start()
        try:
            scheduler.call_later(0.05, fired.set)
            assert fired.wait(timeout=5)
        finally:
            scheduler.stop()

    def test_stop_without_start(self):
        """Test stop before start is safe."""
        Scheduler().stop()


class TestDebouncer:
    """Tests for Debouncer."""

    def test_coalesces_bursts(self, scheduler, mono):
        """Test a burst of calls runs once after the delay."""
        calls = []
        debouncer = Debouncer(scheduler, 0.3)
        for i in range(5):
            debouncer.schedule(calls.append, i)
            mono.now += 0.1
            scheduler.run_pending()

        assert calls == []
        assert debouncer.pending

        mono.now += 0.3
        scheduler.run_pending()
        assert calls == [4]
        assert not debouncer.pending

    def test_cancel(self, scheduler, mono):
        """Test cancel drops the pending call."""
        calls = []
        debouncer = Debouncer(scheduler, 0.15)
        debouncer.schedule(calls.append, "focus")
        debouncer.cancel()

        mono.now += 1
        scheduler.run_pending()
        assert calls == []
        assert not debouncer.pending

    def test_cancel_after_fire_is_harmless(self, scheduler, mono):
        """Test cancel after the call ran is a no-op."""
        calls = []
        debouncer = Debouncer(scheduler, 0.15)
        debouncer.schedule(calls.append, "focus")
        mono.now += 1
        scheduler.run_pending()

        debouncer.cancel()
        assert calls == ["focus"]


class TestChangeEmitter:
    """Tests for ChangeEmitter."""

    def test_fire_and_unsubscribe(self):
        """Test listeners run until unsubscribed."""
        emitter = ChangeEmitter()
        calls = []
        unsubscribe = emitter.subscribe(lambda: calls.append("a"))
        emitter.subscribe(lambda: calls.append("b"))

        emitter.fire()
        unsubscribe()
        unsubscribe()
        emitter.fire()

        assert calls == ["a", "b", "b"]

    def test_clear(self):
        """Test clear removes every listener."""
        emitter = ChangeEmitter()
        calls = []
        emitter.subscribe(lambda: calls.append(1))
        emitter.clear()
        emitter.fire()
        assert calls == []

    def test_listener_may_unsubscribe_itself(self):
        """Test a listener can unsubscribe while firing."""
        emitter = ChangeEmitter()
        calls = []

        def once():
            calls.append(1)
            unsubscribe()

        unsubscribe = emitter.subscribe(once)
        emitter.fire()
        emitter.fire()
        assert calls == [1]
