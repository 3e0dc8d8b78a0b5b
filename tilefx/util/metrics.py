"""Rolling timing statistics for compositor phases and effects."""

import abc
from typing import NamedTuple

import numpy as np


class MetricSummary(NamedTuple):
    """Point-in-time digest of a metric's recent samples (milliseconds)."""

    count: int
    last: float
    mean: float
    p50: float
    p95: float
    p99: float

    def __str__(self) -> str:
        if self.count == 0:
            return "No samples"
        return f"p50={self.p50:.2f} p95={self.p95:.2f} p99={self.p99:.2f}"


EMPTY_SUMMARY = MetricSummary(0, 0.0, 0.0, 0.0, 0.0, 0.0)


class StatsVar(abc.ABC):
    """Sample store behind a metric live variable."""

    @abc.abstractmethod
    def record(self, value: float) -> None: ...

    @abc.abstractmethod
    def values(self) -> np.ndarray:
        """Retained samples, oldest first."""

    @abc.abstractmethod
    def clear(self) -> None: ...

    @property
    def sample_count(self) -> int:
        return len(self.values())

    def summary(self) -> MetricSummary:
        samples = self.values()
        if len(samples) == 0:
            return EMPTY_SUMMARY
        p50, p95, p99 = np.percentile(samples, [50, 95, 99])
        return MetricSummary(
            count=len(samples),
            last=float(samples[-1]),
            mean=float(samples.mean()),
            p50=float(p50),
            p95=float(p95),
            p99=float(p99),
        )

    @property
    def p50(self) -> float:
        return self.summary().p50

    def get_percentiles(self) -> tuple[float, float, float]:
        summary = self.summary()
        return summary.p50, summary.p95, summary.p99


class MostRecentNVar(StatsVar):
    """Keeps the last ``num_samples`` values in a fixed ring buffer."""

    def __init__(self, num_samples: int = 1000) -> None:
        if num_samples <= 0:
            raise ValueError("num_samples must be positive")
        self.num_samples = num_samples
        self._ring = np.zeros(num_samples, dtype=np.float32)
        self._written = 0

    def record(self, value: float) -> None:
        self._ring[self._written % self.num_samples] = value
        self._written += 1

    def values(self) -> np.ndarray:
        if self._written <= self.num_samples:
            return self._ring[: self._written]
        # Oldest retained sample sits where the next write goes
        start = self._written % self.num_samples
        return np.roll(self._ring, -start)

    def clear(self) -> None:
        self._written = 0
