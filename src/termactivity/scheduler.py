"""Single-threaded task scheduling, debouncing and change notification."""

import heapq
import itertools
import threading
import time
from collections.abc import Callable
from queue import Empty, Queue
from typing import Any

from termactivity.logs import get_logger

logger = get_logger(__name__)

_WAKE = object()


class TimerHandle:
    """A scheduled call. Cancelling a handle that already ran is a no-op."""

    __slots__ = ("due", "interval", "callback", "args", "cancelled", "_seq")

    def __init__(
        self,
        due: float,
        seq: int,
        callback: Callable[..., Any],
        args: tuple,
        interval: float | None = None,
    ) -> None:
        self.due = due
        self.interval = interval
        self.callback = callback
        self.args = args
        self.cancelled = False
        self._seq = seq

    def cancel(self) -> None:
        """Stop this call from running."""
        self.cancelled = True

    def __lt__(self, other: "TimerHandle") -> bool:
        return (self.due, self._seq) < (other.due, other._seq)


class Scheduler:
    """
    Runs every callback on one daemon thread.

    Other threads hand work over with call_soon(); timers and periodic tasks
    are kept in a heap ordered by due time. Nothing scheduled here ever runs
    concurrently with anything else scheduled here.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        name: str = "termactivity-scheduler",
    ) -> None:
        self._clock = clock
        self._name = name
        self._ready: Queue[Any] = Queue()
        self._timers: list[TimerHandle] = []
        self._lock = threading.Lock()
        self._counter = itertools.count()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        """Check if the scheduler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue a callback for the scheduler thread. Safe from any thread."""
        self._ready.put((callback, args))

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run callback once, delay seconds from now."""
        return self._push(self._clock() + max(0.0, delay), callback, args, None)

    def every(self, interval: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run callback every interval seconds, first run one interval from now."""
        return self._push(self._clock() + interval, callback, args, interval)

    def _push(
        self,
        due: float,
        callback: Callable[..., Any],
        args: tuple,
        interval: float | None,
    ) -> TimerHandle:
        handle = TimerHandle(due, next(self._counter), callback, args, interval)
        with self._lock:
            heapq.heappush(self._timers, handle)
        self._ready.put(_WAKE)
        return handle

    def start(self) -> None:
        """Start the scheduler thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name=self._name,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the scheduler thread.

        Pending timers are dropped, not run.
        """
        self._stop_event.set()
        self._ready.put(_WAKE)
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        with self._lock:
            self._timers.clear()

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_pending(max_wait=0.5)

    def run_pending(self, max_wait: float = 0.0) -> int:
        """
        Run queued callbacks and due timers.

        Waits up to max_wait seconds (or until the next timer is due) for
        work to arrive. Returns the number of callbacks run.
        """
        ran = 0
        wait = min(max_wait, self._time_until_next_timer())
        try:
            item = self._ready.get(timeout=wait) if wait > 0 else self._ready.get_nowait()
        except Empty:
            item = None
        while item is not None:
            if item is not _WAKE and not self._stop_event.is_set():
                callback, args = item
                self._invoke(callback, args)
                ran += 1
            try:
                item = self._ready.get_nowait()
            except Empty:
                item = None

        for handle in self._pop_due():
            if self._stop_event.is_set():
                break
            self._invoke(handle.callback, handle.args)
            ran += 1
        return ran

    def _time_until_next_timer(self) -> float:
        with self._lock:
            while self._timers and self._timers[0].cancelled:
                heapq.heappop(self._timers)
            if not self._timers:
                return float("inf")
            return max(0.0, self._timers[0].due - self._clock())

    def _pop_due(self) -> list[TimerHandle]:
        now = self._clock()
        due: list[TimerHandle] = []
        with self._lock:
            while self._timers and self._timers[0].due <= now:
                handle = heapq.heappop(self._timers)
                if handle.cancelled:
                    continue
                due.append(handle)
                if handle.interval is not None:
                    handle.due = now + handle.interval
                    heapq.heappush(self._timers, handle)
        return due

    def _invoke(self, callback: Callable[..., Any], args: tuple) -> None:
        try:
            callback(*args)
        except Exception:
            # One failing task must not stop the others
            logger.exception("scheduled_task_failed", task=getattr(callback, "__qualname__", repr(callback)))


class Debouncer:
    """
    Delays a call until no new request has arrived for `delay` seconds.

    The instance itself is the cancellation handle: pass it to whoever needs
    to call cancel().
    """

    def __init__(self, scheduler: Scheduler, delay: float) -> None:
        self._scheduler = scheduler
        self._delay = delay
        self._handle: TimerHandle | None = None

    @property
    def pending(self) -> bool:
        """Whether a call is waiting to fire."""
        return self._handle is not None and not self._handle.cancelled

    def schedule(self, callback: Callable[..., Any], *args: Any) -> None:
        """Replace any pending call with this one and restart the delay."""
        self.cancel()
        self._handle = self._scheduler.call_later(self._delay, self._fire, callback, args)

    def cancel(self) -> None:
        """Drop the pending call, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, callback: Callable[..., Any], args: tuple) -> None:
        self._handle = None
        callback(*args)


class ChangeEmitter:
    """Minimal listener list for "something changed" notifications."""

    def __init__(self) -> None:
        self._listeners: list[Callable[[], None]] = []

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Add a listener; returns a function that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def fire(self) -> None:
        """Call every listener."""
        for listener in list(self._listeners):
            listener()

    def clear(self) -> None:
        """Remove every listener."""
        self._listeners.clear()
