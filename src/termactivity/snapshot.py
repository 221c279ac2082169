"""Process table snapshots for termactivity."""

import re
import shutil
import subprocess
import sys
import threading
import time
from typing import Protocol

import psutil

from termactivity.logs import get_logger
from termactivity.models import ProcessSample, Unavailable

logger = get_logger(__name__)

PS_COMMAND = ["ps", "-e", "-o", "pid=,ppid=,pcpu=,rss=,etime=,command="]

# PID PPID %CPU RSS ELAPSED COMMAND...
_PS_LINE = re.compile(r"^(\d+)\s+(\d+)\s+([\d.]+)\s+(\d+)\s+(\S+)\s+(.+)$")


class SnapshotCollector(Protocol):
    def collect(self) -> list[ProcessSample] | Unavailable: ...


def parse_ps_output(output: str) -> list[ProcessSample]:
    """Parse `ps -o pid=,ppid=,pcpu=,rss=,etime=,command=` output."""
    samples: list[ProcessSample] = []
    for line in output.splitlines():
        match = _PS_LINE.match(line.strip())
        if not match:
            continue
        samples.append(
            ProcessSample(
                pid=int(match[1]),
                ppid=int(match[2]),
                cpu_percent=float(match[3]),
                rss_kb=int(match[4]),
                etime=match[5],
                command=match[6],
            )
        )
    return samples


def format_etime(seconds: float) -> str:
    """Render elapsed seconds the way ps prints etime: [[DD-]HH:]MM:SS."""
    total = max(0, int(seconds))
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days:
        return f"{days}-{hours:02d}:{minutes:02d}:{secs:02d}"
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class PsSnapshotCollector:
    """Collects the process table with a single time-bounded `ps` call."""

    def __init__(self, timeout: float = 3.0) -> None:
        self._timeout = timeout

    def collect(self) -> list[ProcessSample] | Unavailable:
        """Take one snapshot of the process table."""
        try:
            completed = subprocess.run(
                PS_COMMAND,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return Unavailable(f"ps timed out after {self._timeout}s")
        except OSError as e:
            return Unavailable(f"ps could not run: {e}")

        if completed.returncode != 0:
            return Unavailable(f"ps exited with {completed.returncode}")
        return parse_ps_output(completed.stdout)


class PsutilSnapshotCollector:
    """
    Collects the process table through psutil.

    The iteration runs on a daemon thread bounded by the timeout; a hung
    iteration is abandoned rather than waited for.
    """

    # Attributes to fetch in one pass
    ATTRS = ["pid", "ppid", "cpu_percent", "memory_info", "create_time", "cmdline", "name"]

    def __init__(self, timeout: float = 3.0) -> None:
        self._timeout = timeout

    def collect(self) -> list[ProcessSample] | Unavailable:
        """Take one snapshot of the process table."""
        result: list[list[ProcessSample]] = []
        errors: list[BaseException] = []

        def run() -> None:
            try:
                result.append(self._collect_processes())
            except Exception as e:
                errors.append(e)

        worker = threading.Thread(target=run, daemon=True, name="PsutilSnapshot")
        worker.start()
        worker.join(timeout=self._timeout)

        if worker.is_alive():
            return Unavailable(f"process scan timed out after {self._timeout}s")
        if errors:
            return Unavailable(f"process scan failed: {errors[0]}")
        return result[0]

    def _collect_processes(self) -> list[ProcessSample]:
        samples: list[ProcessSample] = []
        now = time.time()

        for proc in psutil.process_iter(attrs=self.ATTRS):
            try:
                info = proc.info

                cmdline = info.get("cmdline") or []
                command = " ".join(cmdline) if cmdline else info.get("name") or ""
                if not command:
                    continue

                mem_info = info.get("memory_info")
                create_time = info.get("create_time") or now

                samples.append(
                    ProcessSample(
                        pid=info.get("pid", proc.pid),
                        ppid=info.get("ppid") or 0,
                        cpu_percent=info.get("cpu_percent") or 0.0,
                        rss_kb=mem_info.rss // 1024 if mem_info else 0,
                        etime=format_etime(now - create_time),
                        command=command,
                    )
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                # Process died mid-scan or is not ours to read
                continue

        return samples


def default_collector(timeout: float = 3.0) -> SnapshotCollector:
    """Use `ps` where it exists, psutil elsewhere."""
    if sys.platform != "win32" and shutil.which("ps"):
        return PsSnapshotCollector(timeout)
    return PsutilSnapshotCollector(timeout)
