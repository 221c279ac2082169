"""
Claude Code detection for terminal process trees.

A terminal's shell pid is the root. The detector walks the root's
descendants looking for the `claude` CLI, then reads a state out of the
program's CPU usage:

- above the generating threshold: GENERATING
- first quiet tick after GENERATING: APPROVAL (a tool call is probably
  waiting for the user)
- APPROVAL decays to IDLE once the approval timeout has passed
- anything else: IDLE

The APPROVAL reading is a guess. A burst of work that simply finished
looks exactly like one that stopped to ask for permission; only the
timeout heals the wrong guess.
"""

import re
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from termactivity.logs import get_logger
from termactivity.models import (
    ClaudeInfo,
    ClaudeState,
    ProcessSample,
    Unavailable,
    Uptime,
)
from termactivity.snapshot import SnapshotCollector

logger = get_logger(__name__)

SKIP_PERMISSIONS_FLAG = "--dangerously-skip-permissions"

# Paths under the config dir (shell snapshots, MCP servers, ...) are not the CLI
_CONFIG_DIR_REF = ".claude/"
_SEARCH_TOOL = re.compile(r"\b(grep|rg|ag|find|ls|cat|head|tail)\b")
# "claude" as the leading token or as the last path segment before arguments
_CLAUDE_BINARY = re.compile(r"(?:^|/)claude(?:\s|$)")
_MCP_SERVER = re.compile(r"\.claude/mcp-servers/([^/]+)/")
_ETIME = re.compile(r"^(?:(\d+)-)?(?:(\d+):)?(\d+):(\d+)$")


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def is_claude_command(command: str) -> bool:
    """Check whether a command line is the Claude Code CLI itself."""
    lower = command.lower()
    if _CONFIG_DIR_REF in lower:
        return False
    if _SEARCH_TOOL.search(lower):
        return False
    return _CLAUDE_BINARY.search(lower) is not None


def parse_etime(etime: str) -> Uptime | None:
    """Parse a ps elapsed time ("D-HH:MM:SS", "HH:MM:SS" or "MM:SS")."""
    match = _ETIME.match(etime.strip())
    if not match:
        return None
    days, hours, minutes, _seconds = match.groups()
    return Uptime(
        days=int(days) if days else 0,
        hours=int(hours) if hours else 0,
        minutes=int(minutes),
    )


@dataclass(slots=True)
class ProcessTree:
    """Parent -> children index over one snapshot."""

    processes: dict[int, ProcessSample]
    children: dict[int, list[int]]

    def walk(self, root: int) -> Iterable[ProcessSample]:
        """Yield every descendant of root, breadth first."""
        queue = deque(self.children.get(root, ()))
        seen = {root}
        while queue:
            pid = queue.popleft()
            if pid in seen:
                continue
            seen.add(pid)
            proc = self.processes.get(pid)
            if proc is not None:
                yield proc
            queue.extend(self.children.get(pid, ()))


def build_process_tree(samples: Iterable[ProcessSample]) -> ProcessTree:
    """Index one snapshot by parent pid."""
    processes: dict[int, ProcessSample] = {}
    children: dict[int, list[int]] = {}
    for sample in samples:
        processes[sample.pid] = sample
        if sample.ppid != sample.pid:
            children.setdefault(sample.ppid, []).append(sample.pid)
    return ProcessTree(processes=processes, children=children)


def find_claude_descendant(tree: ProcessTree, root: int) -> ProcessSample | None:
    """The shallowest descendant of root that is the Claude Code CLI."""
    for proc in tree.walk(root):
        if is_claude_command(proc.command):
            return proc
    return None


def count_descendants(tree: ProcessTree, root: int) -> tuple[int, list[str]]:
    """
    Count all descendants of root and collect MCP server names.

    Returns:
        (descendant count, server names in first-seen order)
    """
    count = 0
    servers: list[str] = []
    for proc in tree.walk(root):
        count += 1
        match = _MCP_SERVER.search(proc.command)
        if match and match[1] not in servers:
            servers.append(match[1])
    return count, servers


@dataclass(slots=True)
class StateMemory:
    state: ClaudeState
    since: int  # epoch ms


@dataclass(slots=True)
class DetectResult:
    state: ClaudeState
    info: ClaudeInfo | None = None


class ClaudeDetector:
    """
    Classifies the Claude Code process under each terminal root pid.

    Keeps one StateMemory per root between calls. Memory is dropped as soon
    as a root's program is no longer found, so a restarted CLI starts clean.
    """

    def __init__(
        self,
        collector: SnapshotCollector,
        generating_threshold: float = 5.0,
        approval_timeout_ms: int = 30_000,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._collector = collector
        self._generating_threshold = generating_threshold
        self._approval_timeout_ms = approval_timeout_ms
        self._clock = clock
        self._memory: dict[int, StateMemory] = {}

    def memory(self, root: int) -> StateMemory | None:
        """Current state history for a root, if it has any."""
        return self._memory.get(root)

    def reset(self) -> None:
        """Forget every root's state history."""
        self._memory.clear()

    def forget(self, root: int) -> None:
        """Drop one root's state history, e.g. when its terminal closes."""
        self._memory.pop(root, None)

    def detect(self, roots: Iterable[int]) -> dict[int, DetectResult] | Unavailable:
        """
        Take one process snapshot and classify every root in it.

        Memory of roots no longer requested is dropped first. If the snapshot
        cannot be taken nothing is classified and the remaining memory is left
        as it was.
        """
        roots = set(roots)
        for stale in self._memory.keys() - roots:
            del self._memory[stale]
        if not roots:
            return {}
        samples = self._collector.collect()
        if isinstance(samples, Unavailable):
            logger.debug("snapshot_unavailable", reason=samples.reason)
            return samples

        return self.classify(roots, samples)

    def classify(
        self, roots: Iterable[int], samples: Iterable[ProcessSample]
    ) -> dict[int, DetectResult]:
        """Classify every root against an already collected snapshot."""
        tree = build_process_tree(samples)
        now = self._clock()
        results: dict[int, DetectResult] = {}

        for root in roots:
            proc = find_claude_descendant(tree, root)
            if proc is None:
                self._memory.pop(root, None)
                results[root] = DetectResult(ClaudeState.NONE)
                continue

            state = self._advance(root, proc.cpu_percent, now)
            child_count, servers = count_descendants(tree, proc.pid)
            info = ClaudeInfo(
                pid=proc.pid,
                etime=proc.etime,
                uptime=parse_etime(proc.etime),
                skip_permissions=SKIP_PERMISSIONS_FLAG in proc.command,
                cpu_percent=proc.cpu_percent,
                rss_kb=proc.rss_kb,
                child_process_count=child_count,
                mcp_servers=servers,
            )
            results[root] = DetectResult(state, info)

        return results

    def _advance(self, root: int, cpu_percent: float, now: int) -> ClaudeState:
        prev = self._memory.get(root)

        if cpu_percent > self._generating_threshold:
            self._memory[root] = StateMemory(ClaudeState.GENERATING, now)
            return ClaudeState.GENERATING

        if prev is not None and prev.state is ClaudeState.GENERATING:
            self._memory[root] = StateMemory(ClaudeState.APPROVAL, now)
            return ClaudeState.APPROVAL

        if prev is not None and prev.state is ClaudeState.APPROVAL:
            if now - prev.since >= self._approval_timeout_ms:
                self._memory[root] = StateMemory(ClaudeState.IDLE, now)
                return ClaudeState.IDLE
            return ClaudeState.APPROVAL

        if prev is None or prev.state is not ClaudeState.IDLE:
            self._memory[root] = StateMemory(ClaudeState.IDLE, now)
        return ClaudeState.IDLE
