"""Data models for termactivity."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ClaudeState(str, Enum):
    """Discrete classifier state of the program running inside a terminal."""

    NONE = "none"
    IDLE = "idle"
    GENERATING = "generating"
    APPROVAL = "approval"


@dataclass(slots=True, frozen=True)
class Unavailable:
    """Outcome of an external query that produced no usable data."""

    reason: str


@dataclass(slots=True, frozen=True)
class ProcessSample:
    """Immutable snapshot of one row of the process table."""

    pid: int
    ppid: int
    cpu_percent: float
    rss_kb: int
    etime: str  # ps format: [[DD-]HH:]MM:SS
    command: str


@dataclass(slots=True, frozen=True)
class Uptime:
    days: int
    hours: int
    minutes: int


@dataclass(slots=True)
class ClaudeInfo:
    """Volatile diagnostics for a detected program. Never persisted."""

    pid: int
    etime: str
    skip_permissions: bool
    cpu_percent: float
    rss_kb: int
    child_process_count: int
    mcp_servers: list[str] = field(default_factory=list)
    uptime: Uptime | None = None
    cwd: str | None = None
    last_prompt: str | None = None


@dataclass(slots=True)
class TerminalRecord:
    """Activity record for one terminal, local or owned by another window."""

    id: str
    name: str
    created_at: int  # epoch ms
    last_activity: int  # epoch ms
    owner_id: str
    owner_label: str
    is_local: bool = True
    display_name: str | None = None
    display_name_is_custom: bool = False
    process_id: int | None = None
    claude_state: ClaudeState = ClaudeState.NONE
    claude_info: ClaudeInfo | None = None

    @property
    def label(self) -> str:
        """Name to show for this terminal."""
        return self.display_name or self.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize the non-volatile fields in the shared-store layout."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
        }
        if self.display_name is not None:
            data["displayName"] = self.display_name
        if self.display_name_is_custom:
            data["displayNameIsCustom"] = True
        if self.process_id is not None:
            data["processId"] = self.process_id
        data["lastActivity"] = self.last_activity
        data["createdAt"] = self.created_at
        data["ownerId"] = self.owner_id
        data["ownerLabel"] = self.owner_label
        return data


@dataclass(slots=True)
class WindowState:
    """Everything one window publishes to the shared store."""

    owner_id: str
    owner_label: str
    last_updated: int  # epoch ms
    terminals: list[TerminalRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the shared-store layout."""
        return {
            "ownerId": self.owner_id,
            "ownerLabel": self.owner_label,
            "lastUpdated": self.last_updated,
            "terminals": [t.to_dict() for t in self.terminals],
        }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_terminal(data: Any, is_local: bool = False) -> TerminalRecord | Unavailable:
    """Rebuild a TerminalRecord from its shared-store form."""
    if not isinstance(data, dict):
        return Unavailable("terminal entry is not an object")
    for key in ("id", "name", "ownerId", "ownerLabel"):
        if not isinstance(data.get(key), str):
            return Unavailable(f"terminal entry has no string {key!r}")
    for key in ("lastActivity", "createdAt"):
        if not _is_int(data.get(key)):
            return Unavailable(f"terminal entry has no integer {key!r}")

    display_name = data.get("displayName")
    process_id = data.get("processId")
    return TerminalRecord(
        id=data["id"],
        name=data["name"],
        created_at=data["createdAt"],
        last_activity=data["lastActivity"],
        owner_id=data["ownerId"],
        owner_label=data["ownerLabel"],
        is_local=is_local,
        display_name=display_name if isinstance(display_name, str) else None,
        display_name_is_custom=data.get("displayNameIsCustom") is True,
        process_id=process_id if _is_int(process_id) else None,
    )


def parse_window_state(data: Any) -> WindowState | Unavailable:
    """
    Rebuild a WindowState read from the shared store.

    Malformed terminal entries are dropped; a malformed envelope makes the
    whole entry unavailable.
    """
    if not isinstance(data, dict):
        return Unavailable("window state is not an object")
    owner_id = data.get("ownerId")
    owner_label = data.get("ownerLabel")
    last_updated = data.get("lastUpdated")
    terminals = data.get("terminals")
    if not isinstance(owner_id, str) or not isinstance(owner_label, str):
        return Unavailable("window state has no owner")
    if not _is_int(last_updated):
        return Unavailable("window state has no integer lastUpdated")
    if not isinstance(terminals, list):
        return Unavailable("window state has no terminal list")

    records = []
    for entry in terminals:
        record = parse_terminal(entry)
        if isinstance(record, TerminalRecord):
            records.append(record)
    return WindowState(
        owner_id=owner_id,
        owner_label=owner_label,
        last_updated=last_updated,
        terminals=records,
    )
