"""Named live values and timing metrics the host's debug tooling can inspect.

The compositor publishes two kinds of entries here:

- plain variables, read through a getter (cache counters, for example);
- metrics, which hold a rolling ``StatsVar`` of millisecond samples filled by
  ``record_time_live_variable`` scopes around frame phases and effect calls.

Names are dotted paths (``time.fx.post_ms``, ``time.fx.effect.water.render_ms``,
``cache.surface_fields.stats``) so related entries can be read or dropped by
prefix.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from time import perf_counter
from typing import Any, NamedTuple

from .metrics import EMPTY_SUMMARY, MetricSummary, MostRecentNVar, StatsVar


class MetricSpec(NamedTuple):
    """Definition for a metric to register in batch."""

    name: str
    description: str
    num_samples: int = 100


@dataclass
class LiveVariable:
    name: str
    description: str
    getter: Callable[[], Any]
    stats_var: StatsVar | None = None

    @property
    def metric(self) -> bool:
        return self.stats_var is not None

    def get_value(self) -> Any:
        return self.getter()

    def record_value(self, value: float) -> None:
        if self.stats_var is not None:
            self.stats_var.record(value)

    def summary(self) -> MetricSummary | None:
        """Digest of the recorded samples; None for plain variables."""
        return None if self.stats_var is None else self.stats_var.summary()

    def get_stats_summary(self) -> str | None:
        summary = self.summary()
        return None if summary is None else str(summary)


class LiveVariableRegistry:
    """Registry of every ``LiveVariable`` the compositor exposes.

    When ``strict`` is ``True`` (the default), recording a metric that has
    not been registered raises immediately. Test fixtures that clear the
    registry set ``strict = False`` so timing scopes keep working after the
    registry was emptied.
    """

    def __init__(self) -> None:
        self._variables: dict[str, LiveVariable] = {}
        self.strict: bool = True

    def register(
        self,
        name: str,
        getter: Callable[[], Any],
        *,
        description: str = "",
        replace: bool = False,
    ) -> None:
        """Register a read-only variable.

        Raises:
            ValueError: ``name`` is taken and ``replace`` is False.
        """
        if name in self._variables and not replace:
            raise ValueError(f"Live variable '{name}' already registered")
        self._variables[name] = LiveVariable(name, description, getter)

    def register_metric(
        self, name: str, description: str = "", num_samples: int = 1000
    ) -> LiveVariable:
        """Register a metric whose value is the digest of its recent samples.

        Raises:
            ValueError: ``name`` is already registered.
        """
        if name in self._variables:
            raise ValueError(f"Live variable '{name}' already registered")
        stats_var = MostRecentNVar(num_samples)
        live_var = LiveVariable(
            name, description, lambda: str(stats_var.summary()), stats_var
        )
        self._variables[name] = live_var
        return live_var

    def register_metrics(self, specs: Sequence[MetricSpec]) -> None:
        """Register every metric in ``specs`` that is not registered yet."""
        for spec in specs:
            if spec.name not in self._variables:
                self.register_metric(spec.name, spec.description, spec.num_samples)

    def unregister(self, name: str) -> bool:
        return self._variables.pop(name, None) is not None

    def unregister_prefix(self, prefix: str) -> int:
        """Drop every entry whose name starts with ``prefix``; returns the count."""
        doomed = [name for name in self._variables if name.startswith(prefix)]
        for name in doomed:
            del self._variables[name]
        return len(doomed)

    def get_variable(self, name: str) -> LiveVariable | None:
        return self._variables.get(name)

    def get_all_variables(self) -> list[LiveVariable]:
        """Plain variables first, then metrics, each group sorted by name."""
        return sorted(self._variables.values(), key=lambda v: (v.metric, v.name))

    def metric_summary(self, name: str) -> MetricSummary:
        """Digest of one metric; empty when it is unknown or has no samples."""
        var = self._variables.get(name)
        summary = var.summary() if var is not None else None
        return summary or EMPTY_SUMMARY

    def metric_summaries(self, prefix: str = "") -> dict[str, MetricSummary]:
        """Digests of every metric under ``prefix``, keyed by full name."""
        return {
            name: var.stats_var.summary()
            for name, var in sorted(self._variables.items())
            if var.stats_var is not None and name.startswith(prefix)
        }

    def record_metric(self, name: str, value: float) -> None:
        """Record one sample.

        Raises:
            KeyError: The name is unknown, or names a plain variable.
        """
        var = self._variables.get(name)
        if var is None:
            raise KeyError(f"Metric '{name}' is not registered")
        if var.stats_var is None:
            raise KeyError(f"Variable '{name}' is not a metric (has no stats tracker)")
        var.record_value(value)


live_variable_registry = LiveVariableRegistry()


@contextmanager
def record_time_live_variable(metric_name: str) -> Iterator[None]:
    """Record the wall-clock time (ms) spent in the block to ``metric_name``.

    Unregistered metrics raise ``KeyError`` in strict mode and are skipped
    otherwise. Time is recorded even when the block raises.
    """
    start = perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (perf_counter() - start) * 1000
        registry = live_variable_registry
        if registry.strict or metric_name in registry._variables:
            registry.record_metric(metric_name, elapsed_ms)
