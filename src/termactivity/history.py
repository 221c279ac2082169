"""Last user prompt per project, read from the Claude Code history file."""

import json
from pathlib import Path

from termactivity.logs import get_logger

logger = get_logger(__name__)

_PATH_KEYS = ("cwd", "projectPath", "directory")
_PROMPT_KEYS = ("prompt", "message", "query")


def _first_str(entry: dict, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = entry.get(key)
        if value:
            return value if isinstance(value, str) else None
    return None


class PromptHistory:
    """
    Cached view over history.jsonl.

    The file is only re-read when its mtime changes.
    """

    def __init__(self, history_file: Path) -> None:
        self._history_file = Path(history_file)
        self._mtime: float | None = None
        self._prompts: dict[str, str] = {}

    def last_prompt(self, project_path: str) -> str | None:
        """Latest prompt recorded for a project directory."""
        self._refresh()
        return self._prompts.get(project_path)

    def clear(self) -> None:
        """Drop the cached map so the next lookup re-reads the file."""
        self._mtime = None
        self._prompts = {}

    def _refresh(self) -> None:
        try:
            mtime = self._history_file.stat().st_mtime
        except OSError:
            return
        if mtime == self._mtime:
            return
        self._mtime = mtime

        prompts: dict[str, str] = {}
        try:
            with open(self._history_file, encoding="utf-8") as f:
                for line in f:
                    if not line.strip():
                        continue
                    try:
                        entry = json.loads(line)
                    except ValueError:
                        continue
                    if not isinstance(entry, dict):
                        continue
                    path = _first_str(entry, _PATH_KEYS)
                    prompt = _first_str(entry, _PROMPT_KEYS)
                    if path and prompt:
                        prompts[path] = prompt
        except OSError as e:
            logger.debug("history_unreadable", path=str(self._history_file), error=str(e))
        self._prompts = prompts
