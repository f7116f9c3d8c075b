"""OS process access for taskmon, backed by psutil."""

import errno
import logging
import os
from dataclasses import dataclass, field
from typing import Protocol

import psutil

from taskmon.errors import EnumerationFailure
from taskmon.models import SkippedProcess

logger = logging.getLogger(__name__)

NOT_FOUND = "not found"
PERMISSION_DENIED = "permission denied"
INVALID_SIGNAL = "invalid signal"
ZOMBIE = "zombie"


@dataclass(slots=True, frozen=True)
class RawProcess:
    """Process data as read from the OS, before any derived metrics."""

    pid: int
    name: str
    owner: str
    cpu_time_total: float


@dataclass(slots=True)
class ProcessListing:
    """Result of one enumeration: the readable processes and the ones skipped."""

    processes: list[RawProcess] = field(default_factory=list)
    skipped: list[SkippedProcess] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class SignalResult:
    """Outcome of a single signal delivery."""

    succeeded: bool
    reason: str | None = None


class ProcessSource(Protocol):
    """Capability to enumerate processes and send them signals."""

    def list_processes(self) -> ProcessListing:
        """
        Enumerate all processes.

        Raises:
            EnumerationFailure: the process list as a whole is unavailable.
        """
        ...

    def send_signal(self, pid: int, sig: int) -> SignalResult: ...

    def cpu_count(self) -> int: ...


class PsutilProcessSource:
    """
    ProcessSource implementation using psutil.

    Processes that exit mid-poll, zombies and processes whose CPU times cannot
    be read are reported as skipped rather than failing the whole listing.
    """

    _ATTRS = ["pid", "name", "username", "status", "cpu_times"]

    def __init__(self) -> None:
        self._cpu_count = psutil.cpu_count() or 1

    def cpu_count(self) -> int:
        return self._cpu_count

    def list_processes(self) -> ProcessListing:
        listing = ProcessListing()
        try:
            # Vanished processes are dropped by process_iter; AccessDenied and
            # ZombieProcess come back as None through ad_value
            for proc in psutil.process_iter(attrs=self._ATTRS, ad_value=None):
                info = proc.info
                cpu_times = info.get("cpu_times")
                if cpu_times is None:
                    zombie = info.get("status") == psutil.STATUS_ZOMBIE
                    reason = ZOMBIE if zombie else PERMISSION_DENIED
                    listing.skipped.append(SkippedProcess(proc.pid, reason))
                    continue
                listing.processes.append(
                    RawProcess(
                        pid=info.get("pid", proc.pid),
                        name=info.get("name") or "",
                        owner=info.get("username") or "",
                        cpu_time_total=cpu_times.user + cpu_times.system,
                    )
                )
        except (psutil.Error, OSError) as exc:
            raise EnumerationFailure(f"unable to enumerate processes: {exc}") from exc

        if listing.skipped:
            logger.debug("Skipped %d unreadable processes", len(listing.skipped))
        return listing

    def send_signal(self, pid: int, sig: int) -> SignalResult:
        """Send ``sig`` to ``pid``, mapping every failure onto a reason string."""
        try:
            psutil.Process(pid).send_signal(sig)
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return SignalResult(False, NOT_FOUND)
        except psutil.AccessDenied:
            return SignalResult(False, PERMISSION_DENIED)
        except ValueError as exc:
            # psutil refuses PID 0 and negative PIDs
            return SignalResult(False, str(exc))
        except OSError as exc:
            if exc.errno == errno.EINVAL:
                return SignalResult(False, INVALID_SIGNAL)
            return SignalResult(False, os.strerror(exc.errno) if exc.errno else str(exc))
        return SignalResult(True)
