"""Tests for the wind-advection integrator."""

from __future__ import annotations

import logging

import pytest

from tests.helpers import make_dimensions
from tilefx import config
from tilefx.providers import StaticWeather, WeatherState, WeatherTarget
from tilefx.types import TimeInfo
from tilefx.wind import WindAdvection


def _wind(state: WeatherState | None = None, **kwargs) -> WindAdvection:
    weather = StaticWeather(state or WeatherState(wind_speed=0.5))
    return WindAdvection(weather, make_dimensions(1000), **kwargs)


def test_wind_time_never_runs_backwards() -> None:
    wind = _wind()
    times = []
    for elapsed in (0.0, 1.0, 0.5, 2.0):
        times.append(wind.update(TimeInfo(elapsed)).wind_time)

    assert times == pytest.approx([0.0, 1.77, 1.77, 4.425])
    assert wind.last_time == 2.0


def test_offset_accumulates_in_scene_uv() -> None:
    wind = _wind()
    wind.update(TimeInfo(0.0))

    state = wind.update(TimeInfo(1.0))

    assert state.offset_uv == pytest.approx((0.145, 0.0))
    assert state.direction == pytest.approx((1.0, 0.0))
    assert state.speed == 0.5


def test_advection_multiplier_scales_drift() -> None:
    wind = _wind(advection_mul=2.0)
    wind.update(TimeInfo(0.0))
    assert wind.update(TimeInfo(1.0)).offset_uv[0] == pytest.approx(0.29)


def test_zero_heading_falls_back_to_east() -> None:
    wind = _wind(WeatherState(wind_direction=(0.0, 0.0), wind_speed=0.2))
    wind.update(TimeInfo(0.0))
    assert wind.update(TimeInfo(1.0)).direction == (1.0, 0.0)


def test_direction_steers_toward_target_state() -> None:
    weather = StaticWeather(
        WeatherState(wind_speed=0.5), target_state=WeatherTarget((0.0, 1.0))
    )
    wind = WindAdvection(
        weather, make_dimensions(), responsiveness=1000.0, use_target_direction=True
    )
    wind.update(TimeInfo(0.0))

    state = wind.update(TimeInfo(1.0))

    assert state.direction == pytest.approx((0.0, 1.0), abs=1e-6)


def test_speed_is_clamped_to_unit_range() -> None:
    wind = _wind(WeatherState(wind_speed=3.0))
    assert wind.update(TimeInfo(0.0)).speed == 1.0


def test_reset_restarts_from_rest() -> None:
    wind = _wind()
    wind.update(TimeInfo(0.0))
    wind.update(TimeInfo(1.0))

    wind.reset()

    assert wind.state.wind_time == 0.0
    assert wind.state.offset_uv == (0.0, 0.0)
    assert wind.last_time is None


class TestStallDetection:
    def test_frozen_clock_warns_once(self, caplog: pytest.LogCaptureFixture) -> None:
        wind = _wind()
        with caplog.at_level(logging.WARNING, logger="tilefx.wind"):
            for _ in range(config.WIND_STALL_FRAMES + 10):
                wind.update(TimeInfo(5.0))

        warnings = [r for r in caplog.records if "has not advanced" in r.getMessage()]
        assert len(warnings) == 1
        assert wind.stalled

    def test_no_warning_below_the_threshold(self, caplog: pytest.LogCaptureFixture) -> None:
        wind = _wind()
        with caplog.at_level(logging.WARNING, logger="tilefx.wind"):
            for _ in range(config.WIND_STALL_FRAMES):
                wind.update(TimeInfo(5.0))

        assert not wind.stalled
        assert caplog.records == []

    def test_advancing_clock_clears_the_stall(self) -> None:
        wind = _wind()
        for _ in range(config.WIND_STALL_FRAMES + 1):
            wind.update(TimeInfo(5.0))
        assert wind.stalled

        wind.update(TimeInfo(5.5))

        assert not wind.stalled


def test_configure_keeps_integrated_state() -> None:
    wind = _wind()
    wind.update(TimeInfo(0.0))
    wind.update(TimeInfo(1.0))

    wind.configure(advection_mul=2.0, responsiveness=0.0)

    assert wind.offset_uv == pytest.approx((0.145, 0.0))
    assert wind.advection_mul == 2.0
    assert wind.responsiveness == config.WIND_MIN_RESPONSIVENESS
