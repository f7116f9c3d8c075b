"""Tests for the ActionDispatcher and signal parsing."""

import os
import threading
import time
from signal import Signals

import pytest

from taskmon.actions import (
    REFUSED_SELF,
    SUPPORTED_SIGNALS,
    ActionDispatcher,
    AllMatches,
    KillRequest,
    parse_signal,
)
from taskmon.errors import InvalidCriterion, InvalidSignal
from taskmon.filters import NameMatch, OwnerMatch, RegexMatch, match
from taskmon.history import MetricsHistory
from taskmon.models import Snapshot
from taskmon.sampler import Sampler
from taskmon.source import INVALID_SIGNAL, NOT_FOUND, PERMISSION_DENIED, SignalResult

from conftest import make_record


@pytest.fixture
def current(fake_source, fake_clock) -> Snapshot:
    return Sampler(fake_source, MetricsHistory(5), clock=fake_clock).tick()


class TestParseSignal:
    """Tests for parse_signal()."""

    @pytest.mark.parametrize("value", ["TERM", "term", "SIGTERM", "sigterm", " TERM ", int(Signals.SIGTERM)])
    def test_term_spellings(self, value):
        assert parse_signal(value) is Signals.SIGTERM

    def test_member_passthrough(self):
        assert parse_signal(Signals.SIGINT) is Signals.SIGINT

    def test_numeric_string(self):
        assert parse_signal(str(int(Signals.SIGINT))) is Signals.SIGINT

    @pytest.mark.parametrize("value", ["NOPE", "", 10_000, -3, 1.5, None, True])
    def test_invalid(self, value):
        with pytest.raises(InvalidSignal):
            parse_signal(value)

    def test_supported_signals(self):
        assert Signals.SIGTERM in SUPPORTED_SIGNALS
        assert len(set(SUPPORTED_SIGNALS)) == len(SUPPORTED_SIGNALS)


class TestKillSingle:
    """Kill requests targeting one PID."""

    def test_success(self, fake_source, current):
        dispatcher = ActionDispatcher(fake_source)
        report = dispatcher.kill(KillRequest(42, "TERM"), current)

        assert [(o.pid, o.succeeded, o.failure_reason) for o in report] == [(42, True, None)]
        assert fake_source.signals == [(42, Signals.SIGTERM)]

    def test_pid_not_in_snapshot(self, fake_source, current):
        dispatcher = ActionDispatcher(fake_source)
        outcome = dispatcher.kill_pid(4242, current)

        assert not outcome.succeeded
        assert outcome.failure_reason == NOT_FOUND
        assert fake_source.signals == []

    def test_process_exited_since_snapshot(self, fake_source, current):
        fake_source.remove(42)
        outcome = ActionDispatcher(fake_source).kill_pid(42, current)

        assert outcome.failure_reason == NOT_FOUND

    def test_permission_denied(self, fake_source, current):
        fake_source.denied.add(7)
        outcome = ActionDispatcher(fake_source).kill_pid(7, current, Signals.SIGKILL)

        assert not outcome.succeeded
        assert outcome.failure_reason == PERMISSION_DENIED

    def test_invalid_signal_reported_not_raised(self, fake_source, current):
        report = ActionDispatcher(fake_source).kill(KillRequest(42, "NOT_A_SIGNAL"), current)

        assert [(o.pid, o.succeeded, o.failure_reason) for o in report] == [(42, False, INVALID_SIGNAL)]
        assert fake_source.signals == []

    def test_without_snapshot_signals_directly(self, fake_source):
        outcome = ActionDispatcher(fake_source).kill_pid(42, None)
        assert outcome.succeeded

    def test_refuses_own_process(self, fake_source):
        own = os.getpid()
        fake_source.add(own, "pytest")
        snap = Snapshot(timestamp=0.0, records=(make_record(own, "pytest"),))

        outcome = ActionDispatcher(fake_source).kill_pid(own, snap)

        assert outcome.failure_reason == REFUSED_SELF
        assert fake_source.signals == []

    def test_self_protection_can_be_disabled(self, fake_source):
        own = os.getpid()
        fake_source.add(own, "pytest")
        snap = Snapshot(timestamp=0.0, records=(make_record(own, "pytest"),))

        # The fake source only records the signal
        outcome = ActionDispatcher(fake_source, protect_self=False).kill_pid(own, snap, Signals.SIGUSR1)

        assert outcome.succeeded


class TestKillAllMatches:
    """Bulk kill requests."""

    def test_one_outcome_per_match(self, fake_source, current):
        criteria = [OwnerMatch("alice")]
        report = ActionDispatcher(fake_source).kill_matching(criteria, current)

        expected = [r.pid for r in match(current, criteria)]
        assert [o.pid for o in report] == expected == [42, 100]
        assert all(o.succeeded for o in report)
        assert sorted(pid for pid, _ in fake_source.signals) == expected

    def test_failures_do_not_abort_others(self, fake_source, current):
        fake_source.denied.add(42)
        fake_source.remove(200)

        report = ActionDispatcher(fake_source).kill(KillRequest(AllMatches(()), Signals.SIGKILL), current)

        outcomes = {o.pid: o for o in report}
        assert list(outcomes) == [7, 42, 100, 200]
        assert outcomes[7].succeeded
        assert outcomes[42].failure_reason == PERMISSION_DENIED
        assert outcomes[100].succeeded
        assert outcomes[200].failure_reason == NOT_FOUND

    def test_no_matches(self, fake_source, current):
        report = ActionDispatcher(fake_source).kill_matching([NameMatch("nothing-here")], current)
        assert len(report) == 0
        assert fake_source.signals == []

    def test_no_snapshot_yet(self, fake_source):
        report = ActionDispatcher(fake_source).kill_matching([], None)
        assert len(report) == 0

    def test_invalid_criteria_rejected_without_snapshot(self, fake_source):
        dispatcher = ActionDispatcher(fake_source)
        with pytest.raises(InvalidCriterion):
            dispatcher.kill(KillRequest(AllMatches((RegexMatch("(", "name"),)), "KILL"), None)
        assert fake_source.signals == []

    def test_uses_snapshot_passed_at_call_time(self, fake_source, fake_clock):
        sampler = Sampler(fake_source, MetricsHistory(5), clock=fake_clock)
        old = sampler.tick()
        fake_source.remove(42)
        fake_source.add(300, "bash")
        fake_clock.advance(1.0)
        new = sampler.tick()
        dispatcher = ActionDispatcher(fake_source)

        assert [o.pid for o in dispatcher.kill_matching([NameMatch("bash")], old)] == [42]
        assert [o.pid for o in dispatcher.kill_matching([NameMatch("bash")], new)] == [300]

    def test_invalid_criteria_raise_before_signalling(self, fake_source, current):
        with pytest.raises(InvalidCriterion):
            ActionDispatcher(fake_source).kill_matching([RegexMatch("(")], current)
        assert fake_source.signals == []

    def test_signals_dispatched_concurrently(self, current):
        """Targets are signalled in parallel and outcomes collected in PID order."""
        barrier = threading.Barrier(len(current))
        seen_threads = set()

        class SlowSource:
            def send_signal(self, pid, sig):
                seen_threads.add(threading.current_thread().name)
                barrier.wait(timeout=5.0)
                return SignalResult(True)

        started = time.monotonic()
        report = ActionDispatcher(SlowSource()).kill_matching([], current)

        assert [o.pid for o in report] == list(current.pids)
        assert all(o.succeeded for o in report)
        assert len(seen_threads) == len(current)
        assert time.monotonic() - started < 5.0

    def test_source_exception_becomes_outcome(self, current):
        class BrokenSource:
            def send_signal(self, pid, sig):
                if pid == 100:
                    raise RuntimeError("driver exploded")
                return SignalResult(True)

        report = ActionDispatcher(BrokenSource()).kill_matching([], current)
        outcomes = {o.pid: o for o in report}
        assert outcomes[100].failure_reason == "driver exploded"
        assert len(report.succeeded) == len(current) - 1


class TestOnDispatched:
    """The dispatcher tells the sampler to refresh after signalling."""

    def test_called_after_signal(self, fake_source, current):
        calls = []
        dispatcher = ActionDispatcher(fake_source, on_dispatched=lambda: calls.append(1))
        dispatcher.kill_pid(42, current)
        assert calls == [1]

    def test_not_called_when_nothing_sent(self, fake_source, current):
        calls = []
        dispatcher = ActionDispatcher(fake_source, on_dispatched=lambda: calls.append(1))
        dispatcher.kill_pid(4242, current)
        dispatcher.kill(KillRequest(42, "BOGUS"), current)
        assert calls == []
