"""Rolling window of aggregate CPU samples for the graph."""

import threading
from collections import deque

from taskmon.models import MetricSample


class MetricsHistory:
    """
    Fixed-capacity FIFO of (timestamp, value) samples.

    Written by the sampler thread and read by the renderer. All access goes
    through a lock, so a reader sees the buffer either before or after a push.
    Timestamps must strictly increase; the oldest sample is evicted first once
    the buffer is full.
    """

    def __init__(self, capacity: int) -> None:
        """
        Initialize the history.

        Args:
            capacity: Maximum number of samples retained.
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._samples: deque[MetricSample] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def push(self, sample: MetricSample | tuple[float, float]) -> None:
        """Append a sample, evicting the oldest one when full."""
        sample = MetricSample(*sample)
        with self._lock:
            if self._samples and sample.timestamp <= self._samples[-1].timestamp:
                raise ValueError(
                    f"sample at {sample.timestamp} is not newer than {self._samples[-1].timestamp}"
                )
            self._samples.append(sample)

    def as_sequence(self) -> tuple[MetricSample, ...]:
        """Return the samples, oldest first."""
        with self._lock:
            return tuple(self._samples)

    def values(self) -> list[float]:
        """Return just the sample values, oldest first."""
        return [sample.value for sample in self.as_sequence()]

    def latest(self) -> MetricSample | None:
        with self._lock:
            return self._samples[-1] if self._samples else None

    def window(self) -> float:
        """Seconds between the oldest and newest sample."""
        samples = self.as_sequence()
        if len(samples) < 2:
            return 0.0
        return samples[-1].timestamp - samples[0].timestamp
