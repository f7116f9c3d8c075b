"""Periodic process sampling for taskmon."""

import logging
import threading
import time
from collections.abc import Callable
from queue import Queue

from taskmon.errors import EnumerationFailure
from taskmon.history import MetricsHistory
from taskmon.models import MetricSample, ProcessRecord, Snapshot
from taskmon.source import ProcessListing, ProcessSource

logger = logging.getLogger(__name__)

MIN_POLL_RATE = 0.1


def build_snapshot(
    listing: ProcessListing,
    previous: Snapshot | None,
    timestamp: float,
    cpu_count: int = 1,
    elapsed: float | None = None,
) -> Snapshot:
    """
    Build a Snapshot from a raw listing and the snapshot before it.

    CPU% for a process is the CPU time it consumed since ``previous`` divided
    by the wall time elapsed, as a percentage of one core. A process with no
    record in ``previous`` (newly started, or the first tick) gets 0, and so
    does every process when no wall time has elapsed.

    ``elapsed`` defaults to the difference between ``timestamp`` and
    ``previous.timestamp``. Pass it explicitly when the published timestamp
    is not the raw clock reading.

    PIDs are the only identity across ticks: a PID reused by a new process is
    paired with the old record, and the resulting negative delta clamps to 0.
    """
    if previous is None:
        elapsed = 0.0
    elif elapsed is None:
        elapsed = timestamp - previous.timestamp
    ceiling = 100.0 * max(cpu_count, 1)

    seen: set[int] = set()
    records: list[ProcessRecord] = []
    for raw in sorted(listing.processes, key=lambda p: p.pid):
        if raw.pid in seen:
            logger.debug("Dropping duplicate entry for PID %d", raw.pid)
            continue
        seen.add(raw.pid)

        cpu_percent = 0.0
        before = previous.get(raw.pid) if previous is not None else None
        if before is not None and elapsed > 0:
            delta = raw.cpu_time_total - before.cpu_time_total
            cpu_percent = min(max(delta / elapsed * 100.0, 0.0), ceiling)

        records.append(
            ProcessRecord(
                pid=raw.pid,
                name=raw.name,
                owner=raw.owner,
                cpu_time_total=raw.cpu_time_total,
                cpu_percent=cpu_percent,
            )
        )

    return Snapshot(
        timestamp=timestamp,
        records=tuple(records),
        cpu_count=max(cpu_count, 1),
        skipped=tuple(listing.skipped),
    )


class Sampler:
    """
    Samples processes on a fixed period and publishes immutable Snapshots.

    Runs in a separate daemon thread. Each tick replaces the current Snapshot
    as a whole and appends the aggregate CPU% to the metrics history. A failed
    tick is logged and counted; the previous Snapshot stays current and the
    loop carries on at the next period.
    """

    def __init__(
        self,
        source: ProcessSource,
        history: MetricsHistory,
        poll_rate: float = 1.0,
        update_queue: Queue[Snapshot] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the Sampler.

        Args:
            source: Where processes are read from.
            history: Receives one aggregate CPU sample per tick.
            poll_rate: Seconds between ticks. Default 1.0s.
            update_queue: Optional queue each new Snapshot is also pushed to.
            clock: Monotonic time source, injectable for tests.
        """
        self._source = source
        self._history = history
        self._poll_rate = max(MIN_POLL_RATE, poll_rate)
        self._queue = update_queue
        self._clock = clock
        self._current: Snapshot | None = None
        self._last_reading = 0.0
        self._failed_ticks = 0
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(MIN_POLL_RATE, value)

    @property
    def latest(self) -> Snapshot | None:
        """The most recently published Snapshot, if any."""
        return self._current

    @property
    def history(self) -> MetricsHistory:
        return self._history

    @property
    def failed_ticks(self) -> int:
        return self._failed_ticks

    @property
    def is_running(self) -> bool:
        """Check if the sampler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> Snapshot:
        """
        Take one sample and publish it.

        Raises:
            EnumerationFailure: the source could not list processes at all.
                Nothing is published in that case.
        """
        with self._tick_lock:
            try:
                listing = self._source.list_processes()
            except EnumerationFailure:
                self._failed_ticks += 1
                raise

            reading = self._clock()
            previous = self._current
            elapsed = reading - self._last_reading if previous is not None else 0.0
            self._last_reading = reading

            timestamp = reading
            if previous is not None and timestamp <= previous.timestamp:
                # Only the published timestamp moves; CPU% uses the real elapsed time
                timestamp = previous.timestamp + 1e-6

            snapshot = build_snapshot(
                listing, previous, timestamp, self._source.cpu_count(), elapsed=elapsed
            )
            self._history.push(MetricSample(timestamp, snapshot.aggregate_cpu_percent))
            self._current = snapshot

        logger.debug(
            "Tick at %.3f: %d processes, %d skipped, %.1f%% CPU",
            snapshot.timestamp,
            len(snapshot),
            len(snapshot.skipped),
            snapshot.aggregate_cpu_percent,
        )
        if self._queue is not None:
            self._queue.put(snapshot)
        return snapshot

    def request_refresh(self) -> None:
        """Wake the loop so the next tick happens now instead of at the next period."""
        self._wake_event.set()

    def start(self) -> None:
        """Start the sampling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._wake_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="Sampler",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the sampling thread, letting an in-flight tick finish.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except EnumerationFailure as exc:
                logger.warning("Tick failed, keeping previous snapshot: %s", exc)
            except Exception:
                # Keep the loop alive whatever the source does
                self._failed_ticks += 1
                logger.exception("Unexpected error during tick")

            # Wait for poll_rate seconds, a refresh request, or stop
            self._wake_event.wait(timeout=self._poll_rate)
            self._wake_event.clear()
