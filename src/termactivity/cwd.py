"""Working-directory resolution for running processes."""

import os
import subprocess
import sys
from collections.abc import Iterable

import psutil

from termactivity.logs import get_logger

logger = get_logger(__name__)


def parse_lsof_output(output: str) -> dict[int, str]:
    """
    Parse `lsof -F` output into a pid -> cwd map.

    Lines starting with 'p' open a process block, lines starting with 'n'
    carry the path. Only absolute paths are kept.
    """
    cwds: dict[int, str] = {}
    current: int | None = None
    for line in output.splitlines():
        if line.startswith("p") and line[1:].isdigit():
            current = int(line[1:])
        elif line.startswith("n") and len(line) > 1 and current is not None:
            path = line[1:]
            if os.path.isabs(path) and current not in cwds:
                cwds[current] = path
    return cwds


class CwdResolver:
    """
    Best-effort pid -> working directory lookup.

    macOS goes through lsof, which can answer for many pids in one call.
    Everywhere else psutil reads the cwd directly (/proc/<pid>/cwd on Linux).
    Failures of any kind yield no entry, never an exception.
    """

    def __init__(self, timeout: float = 3.0, platform: str | None = None) -> None:
        self._timeout = timeout
        self._platform = platform or sys.platform

    @property
    def uses_lsof(self) -> bool:
        """Whether lookups go through lsof instead of psutil."""
        return self._platform == "darwin"

    def resolve(self, pid: int) -> str | None:
        """Resolve the working directory of a single process."""
        if self.uses_lsof:
            return self._lsof([pid]).get(pid)
        return self._psutil_cwd(pid)

    def resolve_batch(self, pids: Iterable[int]) -> dict[int, str]:
        """Resolve many pids; pids that cannot be resolved are left out."""
        unique = list(dict.fromkeys(pids))
        if not unique:
            return {}
        if self.uses_lsof:
            return self._lsof(unique)

        cwds: dict[int, str] = {}
        for pid in unique:
            cwd = self._psutil_cwd(pid)
            if cwd is not None:
                cwds[pid] = cwd
        return cwds

    def _psutil_cwd(self, pid: int) -> str | None:
        try:
            cwd = psutil.Process(pid).cwd()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess, OSError):
            logger.debug("cwd_unavailable", pid=pid)
            return None
        return cwd if cwd and os.path.isabs(cwd) else None

    def _lsof(self, pids: list[int]) -> dict[int, str]:
        command = [
            "lsof",
            "-a",
            "-d",
            "cwd",
            "-Fpn",
            "-p",
            ",".join(str(pid) for pid in pids),
        ]
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug("lsof_failed", pids=pids, error=str(e))
            return {}
        # lsof exits 1 when any pid is gone but still prints the rest
        return parse_lsof_output(completed.stdout)
