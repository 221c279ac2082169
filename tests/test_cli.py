"""Tests for the termactivity command line."""

import io

import pytest
from rich.console import Console

from termactivity import cli
from termactivity.detector import DetectResult, now_ms
from termactivity.models import ClaudeInfo, ClaudeState, TerminalRecord, Uptime, WindowState
from termactivity.store import FileSharedStore


def render(table) -> str:
    console = Console(file=io.StringIO(), width=200, color_system=None)
    console.print(table)
    return console.file.getvalue()


class TestParser:
    """Tests for the argument parser."""

    def test_watch_defaults(self):
        """Test watch runs forever at the default interval over the parent shell."""
        args = cli.build_parser().parse_args(["watch"])
        assert args.command == "watch"
        assert args.pid is None
        assert args.interval == 3.0
        assert args.count is None

    def test_watch_repeated_pids(self):
        """Test --pid can be given more than once."""
        args = cli.build_parser().parse_args(["watch", "--pid", "10", "--pid", "20", "--count", "1"])
        assert args.pid == [10, 20]
        assert args.count == 1

    def test_command_is_required(self):
        """Test a subcommand must be named."""
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_global_logging_flags(self):
        """Test logging flags are accepted before the subcommand."""
        args = cli.build_parser().parse_args(["--log-level", "DEBUG", "--json-logs", "inventory"])
        assert args.log_level == "DEBUG"
        assert args.json_logs is True


class TestFormatting:
    """Tests for the table builders."""

    def test_format_uptime(self):
        """Test uptime shows its two largest units."""
        def result(uptime):
            info = ClaudeInfo(pid=1, etime="", skip_permissions=False, cpu_percent=0.0,
                              rss_kb=0, child_process_count=0, uptime=uptime)
            return DetectResult(ClaudeState.IDLE, info)

        assert cli.format_uptime(result(Uptime(2, 3, 4))) == "2d 3h"
        assert cli.format_uptime(result(Uptime(0, 3, 4))) == "3h 4m"
        assert cli.format_uptime(result(Uptime(0, 0, 4))) == "4m"
        assert cli.format_uptime(result(None)) == ""
        assert cli.format_uptime(DetectResult(ClaudeState.NONE)) == ""

    def test_detection_table(self):
        """Test the watch table shows state, flags and MCP servers in pid order."""
        info = ClaudeInfo(
            pid=600,
            etime="05:00",
            skip_permissions=True,
            cpu_percent=40.0,
            rss_kb=2048,
            child_process_count=2,
            mcp_servers=["github", "slack"],
            uptime=Uptime(0, 0, 5),
            cwd="/work/api",
        )
        output = render(
            cli.detection_table(
                {
                    500: DetectResult(ClaudeState.GENERATING, info),
                    700: DetectResult(ClaudeState.NONE),
                }
            )
        )
        assert "generating" in output
        assert "skip perms" in output
        assert "github, slack" in output
        assert "/work/api" in output
        assert output.index("500") < output.index("700")

    def test_inventory_table(self):
        """Test the inventory table shows the window label and display name."""
        record = TerminalRecord(
            id="/work/api:0",
            name="zsh",
            created_at=0,
            last_activity=0,
            owner_id="/work/api",
            owner_label="api",
            display_name="server",
            process_id=4242,
        )
        output = render(cli.inventory_table([WindowState("/work/api", "api", 0, [record])]))
        assert "api" in output
        assert "server" in output
        assert "4242" in output


class TestMain:
    """Tests for main() end to end."""

    def test_inventory_lists_live_windows(self, tmp_path, capsys):
        """Test inventory prints terminals published by another window."""
        store = FileSharedStore(tmp_path)
        now = now_ms()
        store.put(
            "activity:/work/web",
            {
                "ownerId": "/work/web",
                "ownerLabel": "web",
                "lastUpdated": now,
                "terminals": [
                    {
                        "id": "/work/web:0",
                        "name": "npm run dev",
                        "lastActivity": now,
                        "createdAt": now,
                        "ownerId": "/work/web",
                        "ownerLabel": "web",
                    }
                ],
            },
        )

        assert cli.main(["inventory", "--state-dir", str(tmp_path)]) == 0
        assert "npm run dev" in capsys.readouterr().out

    def test_inventory_empty(self, tmp_path, capsys):
        """Test inventory on a missing state directory says there are no windows."""
        assert cli.main(["inventory", "--state-dir", str(tmp_path / "none")]) == 0
        assert "No windows" in capsys.readouterr().out

    def test_watch_single_tick(self, monkeypatch, capsys):
        """Test watch with --count 1 prints one table and exits."""
        class Collector:
            def collect(self):
                return []

        monkeypatch.setattr(cli, "default_collector", lambda timeout: Collector())
        assert cli.main(["watch", "--pid", "500", "--count", "1"]) == 0
        assert "none" in capsys.readouterr().out

    def test_interrupt_exits_130(self, monkeypatch):
        """Test Ctrl-C exits with status 130."""
        def interrupted(*args):
            raise KeyboardInterrupt

        monkeypatch.setattr(cli, "run_inventory", interrupted)
        assert cli.main(["inventory"]) == 130
