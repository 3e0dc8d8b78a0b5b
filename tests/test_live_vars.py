from __future__ import annotations

import pytest

from tilefx.util.live_vars import (
    LiveVariableRegistry,
    MetricSpec,
    live_variable_registry,
    record_time_live_variable,
)
from tilefx.util.metrics import EMPTY_SUMMARY, MostRecentNVar


def test_register_and_read_a_variable() -> None:
    registry = LiveVariableRegistry()
    registry.register("fx.count", lambda: 3, description="Effects")

    var = registry.get_variable("fx.count")

    assert var is not None
    assert var.get_value() == 3
    assert var.get_stats_summary() is None


def test_duplicate_names_raise() -> None:
    registry = LiveVariableRegistry()
    registry.register_metric("time.fx.frame_ms")
    with pytest.raises(ValueError, match="already registered"):
        registry.register("time.fx.frame_ms", lambda: 0)


def test_register_metrics_skips_existing() -> None:
    registry = LiveVariableRegistry()
    first = registry.register_metric("time.fx.a_ms", num_samples=4)

    registry.register_metrics([MetricSpec("time.fx.a_ms", ""), MetricSpec("time.fx.b_ms", "")])

    assert registry.get_variable("time.fx.a_ms") is first
    assert registry.get_variable("time.fx.b_ms") is not None


def test_variables_sort_before_metrics() -> None:
    registry = LiveVariableRegistry()
    registry.register_metric("a.metric")
    registry.register("z.var", lambda: 1)
    registry.register("b.var", lambda: 1)

    assert [v.name for v in registry.get_all_variables()] == ["b.var", "z.var", "a.metric"]


def test_record_metric_rejects_plain_variables() -> None:
    registry = LiveVariableRegistry()
    registry.register("plain", lambda: 0)
    with pytest.raises(KeyError, match="not a metric"):
        registry.record_metric("plain", 1.0)


def test_timing_scope_records_into_the_metric() -> None:
    metric = live_variable_registry.register_metric("time.fx.test_ms")

    with record_time_live_variable("time.fx.test_ms"):
        pass

    assert metric.stats_var.sample_count == 1
    assert metric.get_value().startswith("p50=")


def test_strict_registry_rejects_unknown_metrics() -> None:
    live_variable_registry.strict = True
    with pytest.raises(KeyError, match="not registered"):
        with record_time_live_variable("time.fx.unknown_ms"):
            pass


def test_relaxed_registry_skips_unknown_metrics() -> None:
    with record_time_live_variable("time.fx.unknown_ms"):
        pass
    assert live_variable_registry.get_variable("time.fx.unknown_ms") is None


def test_ring_buffer_keeps_most_recent_samples() -> None:
    stats = MostRecentNVar(3)
    for value in (100.0, 1.0, 2.0, 3.0):
        stats.record(value)

    assert stats.sample_count == 3
    assert stats.p50 == pytest.approx(2.0)
    assert stats.get_percentiles()[2] < 100.0


def test_replace_takes_over_a_name() -> None:
    registry = LiveVariableRegistry()
    registry.register("cache.a.stats", lambda: "old")
    registry.register("cache.a.stats", lambda: "new", replace=True)
    assert registry.get_variable("cache.a.stats").get_value() == "new"


def test_unregister_prefix_drops_one_subtree() -> None:
    registry = LiveVariableRegistry()
    registry.register_metrics(
        [
            MetricSpec("time.fx.effect.water.update_ms", ""),
            MetricSpec("time.fx.effect.water.render_ms", ""),
            MetricSpec("time.fx.effect.waterfall.update_ms", ""),
        ]
    )

    assert registry.unregister_prefix("time.fx.effect.water.") == 2
    assert [v.name for v in registry.get_all_variables()] == [
        "time.fx.effect.waterfall.update_ms"
    ]


def test_metric_summaries_skip_plain_variables() -> None:
    registry = LiveVariableRegistry()
    registry.register("time.fx.plain", lambda: 0)
    registry.register_metric("time.fx.b_ms")
    registry.register_metric("time.fx.a_ms")
    registry.record_metric("time.fx.a_ms", 4.0)

    summaries = registry.metric_summaries("time.fx.")

    assert list(summaries) == ["time.fx.a_ms", "time.fx.b_ms"]
    assert summaries["time.fx.a_ms"].last == 4.0
    assert summaries["time.fx.b_ms"].count == 0
    assert registry.metric_summary("time.fx.missing_ms") == EMPTY_SUMMARY


def test_summary_reports_count_and_mean() -> None:
    stats = MostRecentNVar(4)
    for value in (1.0, 2.0, 3.0):
        stats.record(value)

    summary = stats.summary()

    assert summary.count == 3
    assert summary.mean == pytest.approx(2.0)
    assert summary.last == 3.0
    assert str(summary).startswith("p50=2.00")
    assert str(MostRecentNVar(2).summary()) == "No samples"
