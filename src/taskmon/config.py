"""Runtime options for taskmon."""

from dataclasses import dataclass

DEFAULT_POLL_INTERVAL_MS = 1000
DEFAULT_HISTORY_CAPACITY = 60  # One minute of graph at the default interval


@dataclass(slots=True, frozen=True)
class MonitorOptions:
    """Options passed to the monitor at construction."""

    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    history_capacity: int = DEFAULT_HISTORY_CAPACITY

    def __post_init__(self) -> None:
        if self.poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be positive, got {self.poll_interval_ms}")
        if self.history_capacity <= 0:
            raise ValueError(f"history_capacity must be positive, got {self.history_capacity}")

    @property
    def poll_interval(self) -> float:
        """Poll interval in seconds."""
        return self.poll_interval_ms / 1000.0
