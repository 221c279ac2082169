"""Merging terminal records published by other windows."""

from collections.abc import Callable

from termactivity.detector import now_ms
from termactivity.logs import get_logger
from termactivity.models import TerminalRecord, Unavailable, WindowState, parse_window_state
from termactivity.scheduler import ChangeEmitter
from termactivity.store import SharedStore
from termactivity.tracker import ActivityTracker

logger = get_logger(__name__)


def read_window_states(
    store: SharedStore,
    prefix: str,
    now: int,
    stale_threshold_ms: int,
    skip_owner: str | None = None,
) -> list[WindowState]:
    """
    Read every live window state from the store, deleting stale ones.

    Entries that do not parse are skipped and left in place. Deleting a
    key some other reader already removed is harmless.
    """
    states: list[WindowState] = []
    for key in store.keys():
        if not key.startswith(prefix):
            continue
        data = store.get(key)
        if data is None:
            continue
        state = parse_window_state(data)
        if isinstance(state, Unavailable):
            logger.debug("window_state_skipped", key=key, reason=state.reason)
            continue
        if state.owner_id == skip_owner:
            continue
        if now - state.last_updated >= stale_threshold_ms:
            logger.info("stale_window_removed", key=key, owner=state.owner_id, age_ms=now - state.last_updated)
            store.delete(key)
            continue
        states.append(state)
    return states


def _same_view(old: list[TerminalRecord], new: list[TerminalRecord]) -> bool:
    if len(old) != len(new):
        return False
    return all(
        a.id == b.id and a.last_activity == b.last_activity
        for a, b in zip(old, new)
    )


class WindowSync:
    """
    Periodic publish/pull against the shared store.

    Each poll refreshes this window's own entry, drops other windows'
    entries that have gone stale and rebuilds the remote view. on_change
    fires only when the remote view differs by id or last activity.
    """

    def __init__(
        self,
        store: SharedStore,
        tracker: ActivityTracker,
        stale_threshold_ms: int = 60_000,
        state_prefix: str = "activity:",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.on_change = ChangeEmitter()
        self._store = store
        self._tracker = tracker
        self._stale_threshold_ms = stale_threshold_ms
        self._prefix = state_prefix
        self._clock = clock
        self._remote: list[TerminalRecord] = []

    def remote_records(self) -> list[TerminalRecord]:
        """Records published by other windows as of the last poll."""
        return list(self._remote)

    def all_records(self) -> list[TerminalRecord]:
        """Local terminals first, then every other window's."""
        return self._tracker.local_records() + self._remote

    def poll(self) -> None:
        """Republish this window, purge stale windows and rebuild the remote view."""
        self._tracker.persist()

        states = read_window_states(
            self._store,
            self._prefix,
            now=self._clock(),
            stale_threshold_ms=self._stale_threshold_ms,
            skip_owner=self._tracker.owner_id,
        )
        remote = [record for state in states for record in state.terminals]
        for record in remote:
            record.is_local = False

        changed = not _same_view(self._remote, remote)
        self._remote = remote
        if changed:
            self.on_change.fire()

    def dispose(self) -> None:
        """Drop all listeners."""
        self.on_change.clear()
