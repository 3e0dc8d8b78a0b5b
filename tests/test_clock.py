from __future__ import annotations

from unittest.mock import patch

import pytest

from tilefx.util.clock import FrameClock


def test_tick_reports_elapsed_delta_and_frame() -> None:
    with patch("time.perf_counter", side_effect=[0.0, 0.1, 0.3]):
        clock = FrameClock()
        first = clock.tick()
        second = clock.tick()

    assert (first.elapsed, first.delta, first.frame) == pytest.approx((0.1, 0.1, 1))
    assert (second.elapsed, second.delta, second.frame) == pytest.approx((0.3, 0.2, 2))
    assert clock.last_fps == pytest.approx(5.0)
    assert clock.mean_fps == pytest.approx(1 / 0.15)


def test_reset_restarts_elapsed_time() -> None:
    with patch("time.perf_counter", side_effect=[0.0, 1.0, 5.0, 5.5]):
        clock = FrameClock()
        clock.tick()
        clock.reset()
        info = clock.tick()

    assert info.elapsed == pytest.approx(0.5)
    assert info.frame == 1


def test_fps_is_zero_before_the_first_frame() -> None:
    clock = FrameClock()
    assert clock.last_fps == 0
    assert clock.mean_fps == 0
