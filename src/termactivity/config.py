"""Configuration for termactivity."""

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path

from termactivity.logs import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "TERMACTIVITY_"

# Shortest allowed period for any polling loop (seconds)
MIN_INTERVAL = 0.1

_INTERVAL_FIELDS = (
    "name_check_interval",
    "claude_check_interval",
    "remote_poll_interval",
    "refresh_debounce",
    "focus_debounce",
)


@dataclass(slots=True, frozen=True)
class TrackerConfig:
    """All tunable values in one place."""

    # Timing (seconds)
    name_check_interval: float = 2.0
    claude_check_interval: float = 3.0
    remote_poll_interval: float = 7.0
    command_timeout: float = 3.0
    refresh_debounce: float = 0.3
    focus_debounce: float = 0.15

    # Timing (epoch milliseconds, compared against record timestamps)
    stale_threshold_ms: int = 60_000
    approval_timeout_ms: int = 30_000

    # CPU % above which the program is considered to be generating
    cpu_generating_threshold: float = 5.0

    state_prefix: str = "activity:"
    state_dir: Path = Path.home() / ".termactivity" / "state"
    history_file: Path = Path.home() / ".claude" / "history.jsonl"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        for name in _INTERVAL_FIELDS:
            value = getattr(self, name)
            if value < MIN_INTERVAL:
                object.__setattr__(self, name, MIN_INTERVAL)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "TrackerConfig":
        """
        Build a config, overriding defaults from TERMACTIVITY_* variables.

        A value that does not parse as the field's type keeps its default.
        """
        env = os.environ if environ is None else environ
        config = cls()
        overrides = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            default = getattr(config, f.name)
            try:
                overrides[f.name] = _coerce(raw, default)
            except ValueError:
                logger.warning("config_value_ignored", field=f.name, value=raw)
        return replace(config, **overrides)


def _coerce(raw: str, default: object) -> object:
    if isinstance(default, Path):
        return Path(raw).expanduser()
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, int):
        return int(raw)
    return raw
