"""Shared fakes for termactivity tests."""

from concurrent.futures import Future

import pytest

from termactivity.models import ProcessSample, Unavailable


class FakeClock:
    """Callable clock returning epoch ms the test controls."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeTerminal:
    """Stands in for a host editor terminal."""

    def __init__(self, name: str, pid: int | None = None, resolved: bool = True) -> None:
        self.name = name
        self.process_id: Future = Future()
        if resolved:
            self.process_id.set_result(pid)


class FakeCollector:
    """Returns canned samples and counts snapshots taken."""

    def __init__(self, samples: list[ProcessSample] | Unavailable | None = None) -> None:
        self.samples = samples if samples is not None else []
        self.calls = 0

    def collect(self) -> list[ProcessSample] | Unavailable:
        self.calls += 1
        return self.samples


class FakeResolver:
    """Looks cwds up in a dict and records each batch."""

    def __init__(self, cwds: dict[int, str] | None = None) -> None:
        self.cwds = cwds or {}
        self.batches: list[list[int]] = []

    def resolve(self, pid: int) -> str | None:
        return self.cwds.get(pid)

    def resolve_batch(self, pids) -> dict[int, str]:
        pids = list(pids)
        self.batches.append(pids)
        return {pid: self.cwds[pid] for pid in pids if pid in self.cwds}


def sample(
    pid: int,
    ppid: int,
    command: str,
    cpu: float = 0.0,
    rss: int = 1024,
    etime: str = "01:00",
) -> ProcessSample:
    return ProcessSample(
        pid=pid, ppid=ppid, cpu_percent=cpu, rss_kb=rss, etime=etime, command=command
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
