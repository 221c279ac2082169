"""Tests for the prompt history cache."""

import json
import os

from termactivity.history import PromptHistory


def write_history(path, entries, mtime=None):
    lines = [e if isinstance(e, str) else json.dumps(e) for e in entries]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))


def test_missing_file_has_no_prompts(tmp_path):
    """Test a missing history file gives no prompt."""
    assert PromptHistory(tmp_path / "history.jsonl").last_prompt("/work/api") is None


def test_latest_prompt_per_project(tmp_path):
    """Test the newest prompt wins for each project."""
    path = tmp_path / "history.jsonl"
    write_history(
        path,
        [
            {"cwd": "/work/api", "prompt": "add tests"},
            {"projectPath": "/work/web", "message": "fix the navbar"},
            {"cwd": "/work/api", "prompt": "now refactor"},
        ],
    )
    history = PromptHistory(path)

    assert history.last_prompt("/work/api") == "now refactor"
    assert history.last_prompt("/work/web") == "fix the navbar"
    assert history.last_prompt("/work/other") is None


def test_skips_malformed_lines(tmp_path):
    """Test bad lines are skipped."""
    path = tmp_path / "history.jsonl"
    write_history(
        path,
        [
            "{broken",
            "[1, 2]",
            {"directory": "/work/api", "query": {"not": "a string"}},
            {"directory": "/work/api", "query": "list files"},
            {"cwd": "/work/api"},
            "",
        ],
    )
    assert PromptHistory(path).last_prompt("/work/api") == "list files"


def test_reloads_only_when_mtime_changes(tmp_path):
    """Test the file is re-read only after its mtime changes."""
    path = tmp_path / "history.jsonl"
    write_history(path, [{"cwd": "/w", "prompt": "one"}], mtime=1_000_000)
    history = PromptHistory(path)
    assert history.last_prompt("/w") == "one"

    # Same mtime: the cached map is used
    write_history(path, [{"cwd": "/w", "prompt": "two"}], mtime=1_000_000)
    assert history.last_prompt("/w") == "one"

    write_history(path, [{"cwd": "/w", "prompt": "three"}], mtime=1_000_100)
    assert history.last_prompt("/w") == "three"


def test_clear_forces_reload(tmp_path):
    """Test clear drops the cache."""
    path = tmp_path / "history.jsonl"
    write_history(path, [{"cwd": "/w", "prompt": "one"}], mtime=1_000_000)
    history = PromptHistory(path)
    history.last_prompt("/w")

    write_history(path, [{"cwd": "/w", "prompt": "two"}], mtime=1_000_000)
    history.clear()
    assert history.last_prompt("/w") == "two"
