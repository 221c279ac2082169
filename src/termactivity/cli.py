"""termactivity - command-line entry point."""

import argparse
import os
import time
from collections.abc import Sequence
from pathlib import Path

import psutil
from rich.console import Console
from rich.table import Table

from termactivity.config import TrackerConfig
from termactivity.cwd import CwdResolver
from termactivity.detector import ClaudeDetector, DetectResult, now_ms
from termactivity.logs import get_logger, setup_logging
from termactivity.models import ClaudeState, Unavailable, WindowState
from termactivity.snapshot import default_collector
from termactivity.store import FileSharedStore
from termactivity.sync import read_window_states

logger = get_logger(__name__)

STATE_STYLES = {
    ClaudeState.NONE: "dim",
    ClaudeState.IDLE: "green",
    ClaudeState.GENERATING: "blue",
    ClaudeState.APPROVAL: "red",
}


def default_root() -> int:
    """The shell this command was started from."""
    try:
        return psutil.Process().ppid()
    except psutil.Error:
        return os.getppid()


def format_uptime(result: DetectResult) -> str:
    """Compact uptime for a table cell, empty when unknown."""
    if result.info is None or result.info.uptime is None:
        return ""
    uptime = result.info.uptime
    if uptime.days:
        return f"{uptime.days}d {uptime.hours}h"
    if uptime.hours:
        return f"{uptime.hours}h {uptime.minutes}m"
    return f"{uptime.minutes}m"


def detection_table(results: dict[int, DetectResult]) -> Table:
    """One row per root pid, in pid order."""
    table = Table(title="Claude Code sessions")
    table.add_column("Root PID", justify="right")
    table.add_column("State")
    table.add_column("PID", justify="right")
    table.add_column("Uptime")
    table.add_column("Children", justify="right")
    table.add_column("MCP servers")
    table.add_column("CWD")

    for root, result in sorted(results.items()):
        info = result.info
        state = f"[{STATE_STYLES[result.state]}]{result.state.value}[/]"
        if info is not None and info.skip_permissions:
            state += " [yellow](skip perms)[/]"
        table.add_row(
            str(root),
            state,
            str(info.pid) if info else "",
            format_uptime(result),
            str(info.child_process_count) if info else "",
            ", ".join(info.mcp_servers) if info else "",
            (info.cwd or "") if info else "",
        )
    return table


def inventory_table(states: list[WindowState]) -> Table:
    """One row per published terminal, grouped by window."""
    table = Table(title="Terminals by window")
    table.add_column("Window")
    table.add_column("Terminal")
    table.add_column("Display name")
    table.add_column("PID", justify="right")
    table.add_column("Last activity")

    for state in states:
        for record in state.terminals:
            table.add_row(
                state.owner_label,
                record.name,
                record.display_name or "",
                str(record.process_id or ""),
                time.strftime("%Y-%m-%d %H:%M", time.localtime(record.last_activity / 1000)),
            )
    return table


def run_watch(args: argparse.Namespace, config: TrackerConfig, console: Console) -> int:
    """Classify the given roots every interval and print the results."""
    roots = args.pid or [default_root()]
    detector = ClaudeDetector(
        default_collector(config.command_timeout),
        generating_threshold=config.cpu_generating_threshold,
        approval_timeout_ms=config.approval_timeout_ms,
    )
    resolver = CwdResolver(timeout=config.command_timeout)

    ticks = 0
    while args.count is None or ticks < args.count:
        if ticks:
            time.sleep(args.interval)
        ticks += 1

        results = detector.detect(roots)
        if isinstance(results, Unavailable):
            logger.warning("snapshot_unavailable", reason=results.reason)
            continue
        cwds = resolver.resolve_batch(r.info.pid for r in results.values() if r.info)
        for result in results.values():
            if result.info is not None:
                result.info.cwd = cwds.get(result.info.pid)
        console.print(detection_table(results))
    return 0


def run_inventory(args: argparse.Namespace, config: TrackerConfig, console: Console) -> int:
    """Print every live window state, purging stale ones on the way."""
    store = FileSharedStore(args.state_dir or config.state_dir)
    states = read_window_states(
        store,
        config.state_prefix,
        now=now_ms(),
        stale_threshold_ms=config.stale_threshold_ms,
    )
    if not states:
        console.print("No windows are publishing terminal state.")
        return 0
    console.print(inventory_table(states))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the termactivity command."""
    parser = argparse.ArgumentParser(prog="termactivity", description="Terminal activity tracking")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    commands = parser.add_subparsers(dest="command", required=True)

    watch = commands.add_parser("watch", help="Classify Claude Code under terminal pids")
    watch.add_argument("--pid", type=int, action="append", help="Root (shell) pid; repeatable")
    watch.add_argument("--interval", type=float, default=3.0, help="Seconds between ticks")
    watch.add_argument("--count", type=int, default=None, help="Stop after this many ticks")

    inventory = commands.add_parser("inventory", help="List terminals published by all windows")
    inventory.add_argument("--state-dir", type=Path, default=None)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the termactivity command."""
    args = build_parser().parse_args(argv)
    config = TrackerConfig.from_env()
    setup_logging(args.log_level or config.log_level, json=args.json_logs)
    console = Console()

    try:
        if args.command == "watch":
            return run_watch(args, config, console)
        return run_inventory(args, config, console)
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
