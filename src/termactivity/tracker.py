"""Activity records for the terminals owned by this window."""

import itertools
import os
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, Protocol

from termactivity.cwd import CwdResolver
from termactivity.detector import ClaudeDetector, now_ms
from termactivity.history import PromptHistory
from termactivity.logs import get_logger
from termactivity.models import (
    ClaudeInfo,
    TerminalRecord,
    Unavailable,
    WindowState,
    parse_window_state,
)
from termactivity.scheduler import ChangeEmitter
from termactivity.store import SharedStore

logger = get_logger(__name__)


class Terminal(Protocol):
    """What the host editor gives us for each terminal."""

    @property
    def name(self) -> str: ...

    @property
    def process_id(self) -> "Future[int | None]": ...


def _call_now(callback: Callable[..., Any], *args: Any) -> None:
    callback(*args)


def _info_changed(prev: ClaudeInfo | None, info: ClaudeInfo) -> bool:
    """Only fields that show up in a tree or tooltip count; CPU/RSS jitter does not."""
    if prev is None:
        return True
    return (
        prev.pid != info.pid
        or prev.cwd != info.cwd
        or prev.child_process_count != info.child_process_count
        or prev.mcp_servers != info.mcp_servers
        or prev.last_prompt != info.last_prompt
        or prev.skip_permissions != info.skip_permissions
    )


class ActivityTracker:
    """
    Authoritative map of this window's terminals to their activity records.

    Record ids are "<owner_id>:<n>" with n counting up for the life of the
    tracker, so a reused OS pid never reuses an id. Every mutation publishes
    the window's state to the shared store and fires on_change.

    All methods must be called from the scheduler thread. Process id
    resolution callbacks are routed there through `dispatch`.
    """

    def __init__(
        self,
        store: SharedStore,
        owner_id: str,
        owner_label: str,
        detector: ClaudeDetector,
        cwd_resolver: CwdResolver,
        history: PromptHistory | None = None,
        state_prefix: str = "activity:",
        clock: Callable[[], int] = now_ms,
        dispatch: Callable[..., None] = _call_now,
    ) -> None:
        self.owner_id = owner_id
        self.owner_label = owner_label
        self.state_key = f"{state_prefix}{owner_id}"
        self.on_change = ChangeEmitter()

        self._store = store
        self._detector = detector
        self._cwd_resolver = cwd_resolver
        self._history = history
        self._clock = clock
        self._dispatch = dispatch

        self._counter = itertools.count()
        self._records: dict[int, TerminalRecord] = {}
        self._indices: dict[Terminal, int] = {}

        # Loaded before any terminal registers so names can be matched
        self._persisted: list[TerminalRecord] = self._load_persisted()

    # -- lookups ---------------------------------------------------------

    def get_record(self, terminal: Terminal) -> TerminalRecord | None:
        """Record for a terminal, or None if it is not tracked."""
        idx = self._indices.get(terminal)
        if idx is None:
            return None
        return self._records.get(idx)

    def find(self, record_id: str) -> TerminalRecord | None:
        """Local record by id; remote ids are never found here."""
        for record in self._records.values():
            if record.id == record_id:
                return record
        return None

    def local_records(self) -> list[TerminalRecord]:
        """This window's records in registration order."""
        return list(self._records.values())

    def terminal_map(self) -> dict[Terminal, TerminalRecord]:
        """Every live terminal with its record."""
        return {
            terminal: self._records[idx]
            for terminal, idx in self._indices.items()
            if idx in self._records
        }

    # -- host lifecycle --------------------------------------------------

    def register(self, terminal: Terminal) -> TerminalRecord:
        """Start tracking a newly opened terminal."""
        existing = self.get_record(terminal)
        if existing is not None:
            return existing

        idx = next(self._counter)
        now = self._clock()
        persisted = self._take_persisted(terminal.name)

        record = TerminalRecord(
            id=f"{self.owner_id}:{idx}",
            name=terminal.name,
            created_at=persisted.created_at if persisted else now,
            last_activity=persisted.last_activity if persisted else now,
            owner_id=self.owner_id,
            owner_label=self.owner_label,
            is_local=True,
            display_name=persisted.display_name if persisted else None,
            display_name_is_custom=persisted.display_name_is_custom if persisted else False,
        )
        self._records[idx] = record
        self._indices[terminal] = idx
        logger.debug("terminal_registered", id=record.id, name=record.name, restored=persisted is not None)

        terminal.process_id.add_done_callback(
            lambda future: self._dispatch(self._on_process_id, idx, future)
        )
        self._fire_change()
        return record

    def unregister(self, terminal: Terminal) -> None:
        """Forget a closed terminal immediately."""
        idx = self._indices.pop(terminal, None)
        if idx is None:
            return
        record = self._records.pop(idx, None)
        if record is not None:
            if record.process_id:
                # A reused shell pid must start with a clean automaton
                self._detector.forget(record.process_id)
            logger.debug("terminal_unregistered", id=record.id)
        self._fire_change()

    def touch(self, terminal: Terminal) -> None:
        """Record activity on a terminal and pick up its current name."""
        record = self.get_record(terminal)
        if record is None:
            return
        record.last_activity = max(record.last_activity, self._clock())
        record.name = terminal.name
        self._fire_change()

    def set_display_name(self, record_id: str, display_name: str | None) -> bool:
        """
        Set or clear a user-chosen display name.

        A non-empty name is marked custom and is never replaced by auto-naming;
        an empty one clears both. Returns False for unknown or remote ids.
        """
        record = self.find(record_id)
        if record is None:
            return False
        record.display_name = display_name or None
        record.display_name_is_custom = bool(display_name)
        self._fire_change()
        return True

    def check_name_changes(self) -> None:
        """Poll for renames; the host has no rename event."""
        changed = False
        for terminal, idx in self._indices.items():
            record = self._records.get(idx)
            if record is not None and record.name != terminal.name:
                record.name = terminal.name
                changed = True
        if changed:
            self._fire_change()

    def _on_process_id(self, idx: int, future: "Future[int | None]") -> None:
        record = self._records.get(idx)
        if record is None:
            return
        if future.cancelled() or future.exception() is not None:
            logger.debug("process_id_unavailable", id=record.id)
            return
        pid = future.result()
        if not pid:
            return
        record.process_id = pid

        if not record.display_name_is_custom:
            cwd = self._cwd_resolver.resolve(pid)
            if cwd:
                record.display_name = os.path.basename(cwd.rstrip(os.sep)) or cwd
        self._fire_change()

    # -- classifier ------------------------------------------------------

    def run_classifier_tick(self) -> None:
        """Classify every terminal with a known pid in one snapshot."""
        pid_to_idx = {
            record.process_id: idx
            for idx, record in self._records.items()
            if record.process_id
        }

        # With no pids this only prunes classifier memory, no snapshot is taken
        results = self._detector.detect(pid_to_idx)
        if isinstance(results, Unavailable):
            return

        claude_pids = [r.info.pid for r in results.values() if r.info is not None]
        cwds = self._cwd_resolver.resolve_batch(claude_pids) if claude_pids else {}

        changed = False
        for pid, result in results.items():
            record = self._records.get(pid_to_idx.get(pid, -1))
            if record is None:
                continue

            if record.claude_state is not result.state:
                logger.debug("claude_state_changed", id=record.id, old=record.claude_state.value, new=result.state.value)
                record.claude_state = result.state
                changed = True

            info = result.info
            if info is not None:
                info.cwd = cwds.get(info.pid)
                if info.cwd and self._history is not None:
                    info.last_prompt = self._history.last_prompt(info.cwd)
                if _info_changed(record.claude_info, info):
                    changed = True
                record.claude_info = info
            elif record.claude_info is not None:
                record.claude_info = None
                changed = True

        if changed:
            self._fire_change()

    # -- persistence -----------------------------------------------------

    def snapshot(self) -> WindowState:
        """The window state as it would be published now."""
        return WindowState(
            owner_id=self.owner_id,
            owner_label=self.owner_label,
            last_updated=self._clock(),
            terminals=self.local_records(),
        )

    def persist(self) -> None:
        """Publish this window's records under its own key."""
        try:
            self._store.put(self.state_key, self.snapshot().to_dict())
        except OSError as e:
            logger.warning("persist_failed", key=self.state_key, error=str(e))

    def _fire_change(self) -> None:
        self.persist()
        self.on_change.fire()

    def _load_persisted(self) -> list[TerminalRecord]:
        data = self._store.get(self.state_key)
        if data is None:
            return []
        state = parse_window_state(data)
        if isinstance(state, Unavailable):
            logger.debug("persisted_state_ignored", key=self.state_key, reason=state.reason)
            return []
        return state.terminals

    def _take_persisted(self, name: str) -> TerminalRecord | None:
        for i, persisted in enumerate(self._persisted):
            if persisted.name == name:
                return self._persisted.pop(i)
        return None

    def dispose(self) -> None:
        """Clear classifier memory and publish a final snapshot."""
        self._detector.reset()
        self.persist()
        self.on_change.clear()
