"""Data models for taskmon."""

from bisect import bisect_left
from collections.abc import Iterator
from dataclasses import dataclass
from operator import attrgetter
from typing import NamedTuple


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable view of one process at one tick."""

    pid: int
    name: str
    owner: str
    cpu_time_total: float  # Seconds of user + system time
    cpu_percent: float  # 0.0 - 100.0 * core_count


@dataclass(slots=True, frozen=True)
class SkippedProcess:
    """A process the source could not read during a tick."""

    pid: int
    reason: str


@dataclass(slots=True, frozen=True)
class Snapshot:
    """
    Point-in-time view of every observed process.

    Records are held in ascending PID order and never contain the same PID
    twice. A Snapshot is never modified once built; the next tick replaces it.
    """

    timestamp: float
    records: tuple[ProcessRecord, ...]
    cpu_count: int = 1
    skipped: tuple[SkippedProcess, ...] = ()

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[ProcessRecord]:
        return iter(self.records)

    def __contains__(self, pid: object) -> bool:
        return isinstance(pid, int) and self.get(pid) is not None

    @property
    def pids(self) -> tuple[int, ...]:
        """PIDs of all records, in order."""
        return tuple(record.pid for record in self.records)

    def get(self, pid: int) -> ProcessRecord | None:
        """Look up a record by PID."""
        index = bisect_left(self.records, pid, key=attrgetter("pid"))
        if index < len(self.records) and self.records[index].pid == pid:
            return self.records[index]
        return None

    @property
    def aggregate_cpu_percent(self) -> float:
        """System-wide CPU usage (0.0 - 100.0) summed over all records."""
        total = sum(record.cpu_percent for record in self.records)
        return min(max(total / max(self.cpu_count, 1), 0.0), 100.0)


class MetricSample(NamedTuple):
    """One point of the CPU graph."""

    timestamp: float
    value: float


@dataclass(slots=True, frozen=True)
class KillOutcome:
    """Result of signalling a single process."""

    pid: int
    succeeded: bool
    failure_reason: str | None = None


@dataclass(slots=True, frozen=True)
class KillReport:
    """Outcomes of one kill request, one per targeted process."""

    outcomes: tuple[KillOutcome, ...]

    def __len__(self) -> int:
        return len(self.outcomes)

    def __iter__(self) -> Iterator[KillOutcome]:
        return iter(self.outcomes)

    @property
    def succeeded(self) -> tuple[KillOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> tuple[KillOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if not outcome.succeeded)

    @property
    def ok(self) -> bool:
        """True when every target was signalled."""
        return not self.failed
