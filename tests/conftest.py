"""Shared fixtures for taskmon tests."""

import threading
from signal import Signals

import pytest

from taskmon.errors import EnumerationFailure
from taskmon.models import ProcessRecord, SkippedProcess, Snapshot
from taskmon.source import NOT_FOUND, PERMISSION_DENIED, ProcessListing, RawProcess, SignalResult


class FakeSource:
    """In-memory ProcessSource with scriptable failures."""

    def __init__(self, processes=(), cpus: int = 4) -> None:
        self._lock = threading.Lock()
        self.processes: dict[int, RawProcess] = {p.pid: p for p in processes}
        self.cpus = cpus
        self.fail = False
        self.denied: set[int] = set()
        self.unreadable: set[int] = set()
        self.signals: list[tuple[int, Signals]] = []
        self.list_calls = 0

    def set_cpu_time(self, pid: int, cpu_time_total: float) -> None:
        with self._lock:
            old = self.processes[pid]
            self.processes[pid] = RawProcess(pid, old.name, old.owner, cpu_time_total)

    def add(self, pid: int, name: str, owner: str = "alice", cpu_time_total: float = 0.0) -> None:
        with self._lock:
            self.processes[pid] = RawProcess(pid, name, owner, cpu_time_total)

    def remove(self, pid: int) -> None:
        with self._lock:
            self.processes.pop(pid, None)

    def cpu_count(self) -> int:
        return self.cpus

    def list_processes(self) -> ProcessListing:
        with self._lock:
            self.list_calls += 1
            if self.fail:
                raise EnumerationFailure("process table unavailable")
            listing = ProcessListing()
            for pid, raw in self.processes.items():
                if pid in self.unreadable:
                    listing.skipped.append(SkippedProcess(pid, PERMISSION_DENIED))
                else:
                    listing.processes.append(raw)
            return listing

    def send_signal(self, pid: int, sig) -> SignalResult:
        with self._lock:
            if pid not in self.processes:
                return SignalResult(False, NOT_FOUND)
            if pid in self.denied:
                return SignalResult(False, PERMISSION_DENIED)
            self.signals.append((pid, sig))
            if sig in (Signals.SIGTERM, Signals.SIGKILL):
                del self.processes[pid]
            return SignalResult(True)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_record(pid: int, name: str, owner: str = "alice", cpu_percent: float = 0.0) -> ProcessRecord:
    return ProcessRecord(pid=pid, name=name, owner=owner, cpu_time_total=0.0, cpu_percent=cpu_percent)


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource(
        [
            RawProcess(7, "init", "root", 5.0),
            RawProcess(42, "bash", "alice", 1.0),
            RawProcess(100, "shell", "alice", 10.0),
            RawProcess(200, "vim", "bob", 2.0),
        ]
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def snapshot() -> Snapshot:
    return Snapshot(
        timestamp=10.0,
        records=(
            make_record(1, "init", "root", 0.5),
            make_record(42, "bash", "alice", 3.0),
            make_record(100, "shell", "Alice", 50.0),
            make_record(200, "vim", "bob", 12.5),
            make_record(1234, "firefox", "bob", 80.0),
        ),
        cpu_count=4,
    )
