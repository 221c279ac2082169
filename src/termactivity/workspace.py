"""
Wiring between a host editor window and the activity core.

The host calls the terminal_* / execution_* methods from whatever thread
it delivers events on; they are handed to the scheduler thread, where the
tracker and synchronizer do all their work. The UI side reads
all_records() and subscribes to on_change, which fires at most once per
refresh debounce window.
"""

import os
from collections.abc import Callable, Iterable
from pathlib import Path

from termactivity.config import TrackerConfig
from termactivity.cwd import CwdResolver
from termactivity.detector import ClaudeDetector, now_ms
from termactivity.history import PromptHistory
from termactivity.logs import get_logger
from termactivity.models import TerminalRecord
from termactivity.scheduler import ChangeEmitter, Debouncer, Scheduler, TimerHandle
from termactivity.snapshot import SnapshotCollector, default_collector
from termactivity.store import FileSharedStore, SharedStore
from termactivity.sync import WindowSync
from termactivity.tracker import ActivityTracker, Terminal

logger = get_logger(__name__)


def window_identity(folder: Path | None) -> tuple[str, str]:
    """Owner id and label for a window: its folder, or this process."""
    if folder is not None:
        return str(folder), folder.name or str(folder)
    return f"window-{os.getpid()}", "Window"


class Workspace:
    """One editor window's view of all terminals, local and remote."""

    def __init__(
        self,
        scheduler: Scheduler,
        config: TrackerConfig | None = None,
        folder: Path | None = None,
        store: SharedStore | None = None,
        collector: SnapshotCollector | None = None,
        cwd_resolver: CwdResolver | None = None,
        history: PromptHistory | None = None,
        focus_debouncer: Debouncer | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config or TrackerConfig()
        self.scheduler = scheduler
        self.on_change = ChangeEmitter()

        owner_id, owner_label = window_identity(folder)
        store = store if store is not None else FileSharedStore(self.config.state_dir)
        cwd_resolver = cwd_resolver or CwdResolver(timeout=self.config.command_timeout)
        detector = ClaudeDetector(
            collector or default_collector(self.config.command_timeout),
            generating_threshold=self.config.cpu_generating_threshold,
            approval_timeout_ms=self.config.approval_timeout_ms,
            clock=clock,
        )

        self.tracker = ActivityTracker(
            store,
            owner_id,
            owner_label,
            detector,
            cwd_resolver,
            history=history or PromptHistory(self.config.history_file),
            state_prefix=self.config.state_prefix,
            clock=clock,
            dispatch=scheduler.call_soon,
        )
        self.sync = WindowSync(
            store,
            self.tracker,
            stale_threshold_ms=self.config.stale_threshold_ms,
            state_prefix=self.config.state_prefix,
            clock=clock,
        )

        self._refresh = Debouncer(scheduler, self.config.refresh_debounce)
        # Shared with any command handler that must cancel a pending focus
        self.focus_debouncer = focus_debouncer or Debouncer(scheduler, self.config.focus_debounce)
        self._timers: list[TimerHandle] = []

        self.tracker.on_change.subscribe(self._schedule_refresh)
        self.sync.on_change.subscribe(self._schedule_refresh)

    # -- lifecycle -------------------------------------------------------

    def activate(self, terminals: Iterable[Terminal] = ()) -> None:
        """Register the terminals that already exist and start polling."""
        self.scheduler.call_soon(self._activate, list(terminals))

    def _activate(self, terminals: list[Terminal]) -> None:
        for terminal in terminals:
            self.tracker.register(terminal)

        every = self.scheduler.every
        self._timers = [
            every(self.config.name_check_interval, self.tracker.check_name_changes),
            every(self.config.claude_check_interval, self.tracker.run_classifier_tick),
            every(self.config.remote_poll_interval, self.sync.poll),
        ]
        self.sync.poll()
        logger.info(
            "workspace_activated",
            owner=self.tracker.owner_id,
            terminals=len(terminals),
        )

    def dispose(self) -> None:
        """Stop polling and publish a final snapshot. Call on the scheduler thread."""
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        self._refresh.cancel()
        self.focus_debouncer.cancel()
        self.sync.dispose()
        self.tracker.dispose()
        self.on_change.clear()

    # -- host events -----------------------------------------------------

    def terminal_opened(self, terminal: Terminal) -> None:
        """Host event: a terminal was created."""
        self.scheduler.call_soon(self.tracker.register, terminal)

    def terminal_closed(self, terminal: Terminal) -> None:
        """Host event: a terminal was closed."""
        self.scheduler.call_soon(self.tracker.unregister, terminal)

    def active_terminal_changed(self, terminal: Terminal | None) -> None:
        """Host event: focus moved to another terminal, or to none."""
        if terminal is not None:
            self.scheduler.call_soon(self.tracker.touch, terminal)

    def execution_started(self, terminal: Terminal) -> None:
        """Host event: a shell command started."""
        self.scheduler.call_soon(self.tracker.touch, terminal)

    def execution_ended(self, terminal: Terminal) -> None:
        """Host event: a shell command finished."""
        self.scheduler.call_soon(self.tracker.touch, terminal)

    # -- read side -------------------------------------------------------

    def all_records(self) -> list[TerminalRecord]:
        """Local records followed by every other window's."""
        return self.sync.all_records()

    def lookup(self, terminal: Terminal) -> TerminalRecord | None:
        """Record for a local terminal, or None."""
        return self.tracker.get_record(terminal)

    def set_display_name(self, record_id: str, display_name: str | None) -> None:
        """Rename a local terminal; an empty name clears it."""
        self.scheduler.call_soon(self.tracker.set_display_name, record_id, display_name)

    def request_focus(self, record_id: str, focus: Callable[[Terminal], None]) -> None:
        """Focus a terminal after the focus debounce delay, unless cancelled first."""
        self.scheduler.call_soon(self.focus_debouncer.schedule, self._focus, record_id, focus)

    def cancel_pending_focus(self) -> None:
        """Drop a focus request that has not fired yet."""
        self.scheduler.call_soon(self.focus_debouncer.cancel)

    def _focus(self, record_id: str, focus: Callable[[Terminal], None]) -> None:
        for terminal, record in self.tracker.terminal_map().items():
            if record.id == record_id:
                focus(terminal)
                return

    def _schedule_refresh(self) -> None:
        self._refresh.schedule(self.on_change.fire)
