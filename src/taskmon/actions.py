"""Sending signals to processes on behalf of the user."""

import logging
import os
import signal
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from signal import Signals

from taskmon.errors import InvalidSignal
from taskmon.filters import FilterCriterion, compile_criteria, match
from taskmon.models import KillOutcome, KillReport, Snapshot
from taskmon.source import INVALID_SIGNAL, NOT_FOUND, ProcessSource

logger = logging.getLogger(__name__)

REFUSED_SELF = "refusing to signal self"

_SIGNAL_NAMES = (
    "SIGTERM",
    "SIGKILL",
    "SIGINT",
    "SIGHUP",
    "SIGQUIT",
    "SIGSTOP",
    "SIGCONT",
    "SIGUSR1",
    "SIGUSR2",
    "SIGABRT",
    "SIGALRM",
    "SIGBREAK",
    "CTRL_C_EVENT",
    "CTRL_BREAK_EVENT",
)

# Signals offered in the "kill with" menu, restricted to what this platform has
SUPPORTED_SIGNALS: tuple[Signals, ...] = tuple(
    getattr(signal, name) for name in _SIGNAL_NAMES if hasattr(signal, name)
)


def parse_signal(value: Signals | int | str) -> Signals:
    """
    Resolve a signal identifier.

    Accepts a ``signal.Signals`` member, its number, or a name with or
    without the ``SIG`` prefix in any case (``"TERM"``, ``"sigkill"``, ``"9"``).

    Raises:
        InvalidSignal: if the value does not name a signal on this platform.
    """
    if isinstance(value, Signals):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            value = int(text)
        else:
            name = text.upper()
            if not name.startswith("SIG") and not name.startswith("CTRL_"):
                name = "SIG" + name
            try:
                return Signals[name]
            except KeyError:
                raise InvalidSignal(f"unknown signal {value!r}") from None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidSignal(f"unknown signal {value!r}")
    try:
        return Signals(value)
    except ValueError:
        raise InvalidSignal(f"unknown signal number {value}") from None


@dataclass(slots=True, frozen=True)
class AllMatches:
    """Target every process matching ``criteria`` at the time of the request."""

    criteria: tuple[FilterCriterion, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "criteria", tuple(self.criteria))


@dataclass(slots=True, frozen=True)
class KillRequest:
    """A single PID or all matches, and the signal to send."""

    target: int | AllMatches
    signal: Signals | int | str = Signals.SIGTERM


class ActionDispatcher:
    """
    Executes kill requests against a ProcessSource.

    Every target gets exactly one KillOutcome. Failures (permission denied,
    process already gone, invalid signal) are reported in the outcome and
    never abort the remaining targets. Signals go out on a small thread pool
    so a slow call does not hold up the others.
    """

    def __init__(
        self,
        source: ProcessSource,
        on_dispatched: Callable[[], None] | None = None,
        max_workers: int = 8,
        protect_self: bool = True,
    ) -> None:
        """
        Initialize the ActionDispatcher.

        Args:
            source: Where signals are sent.
            on_dispatched: Called after a request has sent at least one
                signal, typically to refresh the sampler early.
            max_workers: Size of the signalling thread pool.
            protect_self: Refuse to signal the current process.
        """
        self._source = source
        self._on_dispatched = on_dispatched
        self._max_workers = max(1, max_workers)
        self._protect_self = protect_self

    def resolve_targets(self, request: KillRequest, snapshot: Snapshot | None) -> list[int]:
        """PIDs a request applies to, in ascending order and without duplicates."""
        if isinstance(request.target, AllMatches):
            # Malformed criteria are rejected even when there is nothing to match yet
            compile_criteria(request.target.criteria)
            if snapshot is None:
                return []
            # Re-run the filter now so stale results are never acted on
            return [record.pid for record in match(snapshot, request.target.criteria)]
        return [request.target]

    def kill(self, request: KillRequest, snapshot: Snapshot | None) -> KillReport:
        """
        Carry out ``request`` against ``snapshot``.

        A single PID that is not in ``snapshot`` is reported as "not found"
        without being signalled.

        Raises:
            InvalidCriterion: if the request's criteria are malformed.
        """
        pids = self.resolve_targets(request, snapshot)
        if not pids:
            return KillReport(())

        try:
            sig = parse_signal(request.signal)
        except InvalidSignal as exc:
            logger.warning("Not sending %r: %s", request.signal, exc)
            return KillReport(tuple(KillOutcome(pid, False, INVALID_SIGNAL) for pid in pids))

        outcomes: dict[int, KillOutcome] = {}
        to_signal: list[int] = []
        own_pid = os.getpid()
        single = not isinstance(request.target, AllMatches)
        for pid in pids:
            if single and snapshot is not None and pid not in snapshot:
                outcomes[pid] = KillOutcome(pid, False, NOT_FOUND)
            elif self._protect_self and pid == own_pid:
                outcomes[pid] = KillOutcome(pid, False, REFUSED_SELF)
            else:
                to_signal.append(pid)

        if to_signal:
            workers = min(self._max_workers, len(to_signal))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="kill") as executor:
                results = executor.map(lambda p: self._send(p, sig), to_signal)
                for pid, outcome in zip(to_signal, results):
                    outcomes[pid] = outcome
            if self._on_dispatched is not None:
                self._on_dispatched()

        report = KillReport(tuple(outcomes[pid] for pid in pids))
        logger.info(
            "Sent %s to %d processes: %d succeeded, %d failed",
            sig.name,
            len(report),
            len(report.succeeded),
            len(report.failed),
        )
        return report

    def kill_pid(
        self,
        pid: int,
        snapshot: Snapshot | None,
        sig: Signals | int | str = Signals.SIGTERM,
    ) -> KillOutcome:
        """Signal a single process."""
        return self.kill(KillRequest(pid, sig), snapshot).outcomes[0]

    def kill_matching(
        self,
        criteria: Sequence[FilterCriterion],
        snapshot: Snapshot | None,
        sig: Signals | int | str = Signals.SIGKILL,
    ) -> KillReport:
        """Signal every process in ``snapshot`` matching ``criteria``."""
        return self.kill(KillRequest(AllMatches(tuple(criteria)), sig), snapshot)

    def _send(self, pid: int, sig: Signals) -> KillOutcome:
        try:
            result = self._source.send_signal(pid, sig)
        except Exception as exc:
            # A misbehaving source must not lose the other targets' outcomes
            logger.exception("Source failed while signalling PID %d", pid)
            return KillOutcome(pid, False, str(exc) or type(exc).__name__)
        if not result.succeeded:
            logger.warning("Could not send %s to PID %d: %s", sig.name, pid, result.reason)
        return KillOutcome(pid, result.succeeded, None if result.succeeded else result.reason)
