"""Tests for mask field publication, subscriptions and floor policies."""

from __future__ import annotations

import gc
import logging

import numpy as np
import pytest

from tilefx.masks.raster import MaskRaster
from tilefx.masks.registry import MaskPolicy, MaskRegistry
from tilefx.masks.surface_model import SurfaceModelOptions, build_surface_field


@pytest.fixture
def field():
    raster = MaskRaster(np.zeros((8, 8, 4), dtype=np.uint8))
    return build_surface_field(raster, SurfaceModelOptions(resolution=8))


def test_subscribers_run_in_subscription_order(field) -> None:
    registry = MaskRegistry()
    calls: list[str] = []
    registry.subscribe("water", lambda f: calls.append("first"))
    registry.subscribe("water", lambda f: calls.append("second"))
    registry.subscribe("outdoors", lambda f: calls.append("other"))

    registry.publish("water", field)

    assert calls == ["first", "second"]
    assert registry.get("water") is field


def test_publishing_the_same_field_twice_broadcasts_twice(field) -> None:
    registry = MaskRegistry()
    received = []
    registry.subscribe("water", received.append)

    registry.publish("water", field)
    registry.publish("water", field)

    assert received == [field, field]


def test_unsubscribe_stops_delivery(field) -> None:
    registry = MaskRegistry()
    received = []
    subscription = registry.subscribe("water", received.append)

    subscription.unsubscribe()
    subscription.unsubscribe()
    registry.publish("water", field)

    assert received == []
    assert not subscription.active
    assert registry.subscriber_count("water") == 0


def test_replay_delivers_current_field(field) -> None:
    registry = MaskRegistry()
    registry.publish("water", field)
    received = []

    registry.subscribe("water", received.append, replay=True)
    registry.subscribe("outdoors", received.append, replay=True)

    assert received == [field]


def test_clear_publishes_none(field) -> None:
    registry = MaskRegistry()
    registry.publish("water", field)
    received = []
    registry.subscribe("water", received.append)

    registry.clear("water")

    assert received == [None]
    assert registry.get("water") is None
    assert registry.ids() == []


def test_failing_subscriber_does_not_block_others(
    field, caplog: pytest.LogCaptureFixture
) -> None:
    registry = MaskRegistry()
    received = []

    def failing(_field) -> None:
        raise RuntimeError("subscriber failed")

    registry.subscribe("water", failing)
    registry.subscribe("water", received.append)

    with caplog.at_level(logging.ERROR):
        registry.publish("water", field)

    assert received == [field]
    assert "Mask subscriber for 'water' failed" in caplog.text


def test_subscription_does_not_keep_registry_alive(field) -> None:
    registry = MaskRegistry()
    subscription = registry.subscribe("water", lambda f: None)

    del registry
    gc.collect()
    subscription.unsubscribe()

    assert not subscription.active


class TestFloorPolicies:
    def test_first_floor_clears_nothing(self, field) -> None:
        registry = MaskRegistry()
        registry.set_policy("water", MaskPolicy(preserve_across_floors=False))
        registry.publish("water", field)

        assert registry.on_floor_change(0) == []
        assert registry.get("water") is field

    def test_floor_change_clears_floor_specific_masks(self, field) -> None:
        registry = MaskRegistry()
        registry.set_policy("water", MaskPolicy(preserve_across_floors=False))
        registry.on_floor_change(0)
        registry.publish("water", field)
        registry.publish("outdoors", field)
        received = []
        registry.subscribe("water", received.append)

        cleared = registry.on_floor_change(1)

        assert cleared == ["water"]
        assert received == [None]
        assert registry.get("outdoors") is field

    def test_same_floor_is_a_no_op(self, field) -> None:
        registry = MaskRegistry()
        registry.set_policy("water", MaskPolicy(preserve_across_floors=False))
        registry.on_floor_change(2)
        registry.publish("water", field)

        assert registry.on_floor_change(2) == []
        assert registry.get("water") is field

    def test_default_policy_preserves(self) -> None:
        assert MaskRegistry().policy("anything").preserve_across_floors
