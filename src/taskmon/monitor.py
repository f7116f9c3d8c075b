"""Query interface tying the sampler, filters and dispatcher together."""

from collections.abc import Sequence
from queue import Queue
from signal import Signals

from taskmon.actions import ActionDispatcher, AllMatches, KillRequest
from taskmon.config import MonitorOptions
from taskmon.filters import FilterCriterion, match, parse_query
from taskmon.history import MetricsHistory
from taskmon.models import KillOutcome, KillReport, ProcessRecord, Snapshot
from taskmon.sampler import Sampler
from taskmon.source import ProcessSource, PsutilProcessSource


class TaskMonitor:
    """
    Process monitor facade used by the UI.

    Owns the background Sampler and the ActionDispatcher. Queries and kills
    run on the caller's thread against whatever Snapshot is current at call
    time, so they never wait for the next tick.
    """

    def __init__(
        self,
        options: MonitorOptions | None = None,
        source: ProcessSource | None = None,
        update_queue: Queue[Snapshot] | None = None,
    ) -> None:
        self._options = options or MonitorOptions()
        self._source = source if source is not None else PsutilProcessSource()
        self._history = MetricsHistory(self._options.history_capacity)
        self._sampler = Sampler(
            self._source,
            self._history,
            poll_rate=self._options.poll_interval,
            update_queue=update_queue,
        )
        self._dispatcher = ActionDispatcher(self._source, on_dispatched=self._sampler.request_refresh)

    @property
    def options(self) -> MonitorOptions:
        return self._options

    @property
    def sampler(self) -> Sampler:
        return self._sampler

    @property
    def history(self) -> MetricsHistory:
        return self._history

    @property
    def latest(self) -> Snapshot | None:
        """The current Snapshot, or None before the first successful tick."""
        return self._sampler.latest

    @property
    def is_running(self) -> bool:
        return self._sampler.is_running

    def start(self) -> None:
        self._sampler.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._sampler.stop(timeout=timeout)

    def refresh(self) -> Snapshot:
        """Take a sample right now on the calling thread."""
        return self._sampler.tick()

    def find(self, criteria: Sequence[FilterCriterion] = ()) -> tuple[ProcessRecord, ...]:
        """Records of the current Snapshot matching all ``criteria``."""
        snapshot = self.latest
        if snapshot is None:
            return ()
        return match(snapshot, criteria)

    def search(
        self, text: str, regex: bool = False, case_sensitive: bool = False
    ) -> tuple[ProcessRecord, ...]:
        """Run a search box query against the current Snapshot."""
        return self.find(parse_query(text, regex=regex, case_sensitive=case_sensitive))

    def kill(self, request: KillRequest) -> KillReport:
        return self._dispatcher.kill(request, self.latest)

    def kill_pid(self, pid: int, sig: Signals | int | str = Signals.SIGTERM) -> KillOutcome:
        return self._dispatcher.kill_pid(pid, self.latest, sig)

    def kill_matching(
        self,
        criteria: Sequence[FilterCriterion],
        sig: Signals | int | str = Signals.SIGKILL,
    ) -> KillReport:
        return self.kill(KillRequest(AllMatches(tuple(criteria)), sig))
