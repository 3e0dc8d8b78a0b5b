"""Tests for the effect contract, parameter schemas and the built-in effects."""

from __future__ import annotations

import logging

import numpy as np
import pytest

from tests.helpers import (
    SIZE,
    PassthroughEffect,
    make_camera,
    make_dimensions,
    scene_of,
    solid_pixels,
    solid_texture,
    tile,
)
from tilefx.effects import (
    ColorCorrectionEffect,
    EffectState,
    FluidOverlayEffect,
    OverheadShadowsEffect,
    RoofAlphaConsumer,
    SelectionGizmoEffect,
    ShadowFactorConsumer,
    WaterEffect,
    WindConsumer,
)
from tilefx.effects.schema import ControlSchema, ParameterBag, enum
from tilefx.masks.raster import MaskRaster
from tilefx.masks.registry import MaskRegistry
from tilefx.masks.surface_model import SurfaceModelOptions, build_surface_field
from tilefx.providers import StaticWeather
from tilefx.render.floor_bus import FloorRenderBus
from tilefx.render.rasterizer import RasterRenderer
from tilefx.render.scene import Scene
from tilefx.render.textures import TextureLoader
from tilefx.types import TimeInfo
from tilefx.wind import WindAdvection

RED = (255, 0, 0, 255)


class TestParameterBag:
    def _bag(self) -> ParameterBag:
        return ParameterBag(ColorCorrectionEffect.get_control_schema(), "grading")

    def test_defaults_come_from_the_schema(self) -> None:
        bag = self._bag()
        assert bag["saturation"] == 1.0
        assert bag.as_dict()["tint"] == (1.0, 1.0, 1.0)

    def test_out_of_range_is_clamped_and_reported_once(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        bag = self._bag()
        with caplog.at_level(logging.WARNING, logger="tilefx.effects.schema"):
            assert bag.set("saturation", 5.0) == 2.0
            assert bag.set("saturation", -3.0) == 0.0

        assert len(caplog.records) == 1
        assert "grading: 'saturation'=5.0 outside" in caplog.text

    def test_non_numbers_fall_back_to_default(self) -> None:
        bag = self._bag()
        assert bag.set("exposure", "bright") == 0.0

    def test_colors_accept_hex_strings(self) -> None:
        bag = self._bag()
        assert bag.set("tint", "#ff0000") == (1.0, 0.0, 0.0)
        assert bag.set("tint", "#12") == (1.0, 1.0, 1.0)

    def test_enum_outside_options_uses_default(self) -> None:
        schema = ControlSchema("custom", parameters=(enum("mode", "a", ("a", "b")),))
        bag = ParameterBag(schema, "custom")
        assert bag.set("mode", "b") == "b"
        assert bag.set("mode", "c") == "a"

    def test_unknown_parameter_is_ignored(self) -> None:
        bag = self._bag()
        assert bag.set("nonsense", 1) is None
        assert "nonsense" not in bag

    def test_presets(self) -> None:
        effect = ColorCorrectionEffect()
        effect.params.apply_preset("night")
        assert effect.params["saturation"] == 0.6
        assert effect.params["tint"] == (0.6, 0.7, 1.0)

        with pytest.raises(KeyError, match="no preset named 'noir'"):
            effect.params.apply_preset("noir")

    def test_constructor_values_are_coerced(self) -> None:
        effect = ColorCorrectionEffect(params={"saturation": 9})
        assert effect.params["saturation"] == 2.0


def test_schema_describes_itself_for_host_uis() -> None:
    data = WaterEffect.get_control_schema().to_dict()

    assert data["effect"] == "water"
    assert [g["name"] for g in data["groups"]] == ["color", "waves"]
    foam = next(p for p in data["parameters"] if p["name"] == "foam")
    assert foam["type"] == "slider"
    assert (foam["min"], foam["max"]) == (0.0, 1.0)
    assert "stormy" in data["presets"]


class CountingEffect(PassthroughEffect):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.initialized = 0
        self.disposed_calls = 0

    def on_initialize(self) -> None:
        self.initialized += 1

    def on_dispose(self) -> None:
        self.disposed_calls += 1
        super().on_dispose()


class TestLifecycle:
    def test_initialize_is_idempotent(self) -> None:
        effect = CountingEffect("counting")
        renderer = RasterRenderer(16, 8)

        effect.initialize(renderer, Scene(), make_camera())
        effect.initialize(renderer, Scene(), make_camera())

        assert effect.initialized == 1
        assert effect.state is EffectState.INITIALIZED
        assert effect.size == (16, 8)

    def test_dispose_runs_once(self) -> None:
        effect = CountingEffect("counting")
        effect.initialize(RasterRenderer(4, 4), Scene(), make_camera())

        effect.dispose()
        effect.dispose()

        assert effect.disposed_calls == 1
        assert effect.disposed
        assert effect.renderer is None
        assert not effect.is_active()

    def test_disposed_effect_cannot_be_initialized_again(self) -> None:
        effect = CountingEffect("counting")
        effect.dispose()
        effect.initialize(RasterRenderer(4, 4), Scene(), make_camera())
        assert effect.initialized == 0

    def test_consumer_protocols(self) -> None:
        assert isinstance(OverheadShadowsEffect(), ShadowFactorConsumer)
        assert isinstance(FluidOverlayEffect(), RoofAlphaConsumer)
        assert isinstance(WaterEffect(), WindConsumer)
        assert not isinstance(ColorCorrectionEffect(), WindConsumer)


class TestFluidOverlays:
    @pytest.fixture
    def scene_data(self):
        return scene_of(tile("pool", kind="fluid-carrier"), tile("ground"))

    @pytest.fixture
    def bus(self, scene_data) -> FloorRenderBus:
        bus = FloorRenderBus()
        bus.populate(scene_data)
        return bus

    def _fluid(self, bus, scene_data, loader=None, **kwargs) -> FluidOverlayEffect:
        fluid = FluidOverlayEffect(**kwargs)
        fluid.initialize(RasterRenderer(SIZE, SIZE), bus.scene, make_camera())
        fluid.populate(bus, scene_data, loader)
        return fluid

    def test_overlays_only_on_fluid_carriers(self, bus, scene_data) -> None:
        fluid = self._fluid(bus, scene_data)

        assert list(fluid.overlays) == ["pool"]
        overlay = fluid.overlays["pool"]
        assert overlay.render_order == bus.tile("pool").render_order - 1
        assert fluid.state is EffectState.POPULATED

    def test_populating_twice_does_not_duplicate(self, bus, scene_data) -> None:
        fluid = self._fluid(bus, scene_data)
        fluid.populate(bus, scene_data)
        assert len(bus.overlays_for("pool")) == 1

    def test_disabling_hides_overlays(self, bus, scene_data) -> None:
        fluid = self._fluid(bus, scene_data)
        fluid.enabled = False
        assert not fluid.overlays["pool"].material.visible

    def test_roof_conversion_drops_the_overlay(self, bus, scene_data) -> None:
        fluid = self._fluid(bus, scene_data)
        bus.set_tile_kind("pool", "roof")
        assert fluid.overlays == {}
        assert not fluid.is_active()

    def test_mask_installs_on_pump(self, bus, scene_data) -> None:
        loader = TextureLoader(fetch=lambda src: solid_pixels(2, 2))
        fluid = self._fluid(bus, scene_data, loader, mask_sources={"pool": "pool.png"})
        uniforms = fluid.overlays["pool"].material.uniforms
        assert uniforms["u_mask"] is None

        loader.pump()

        assert uniforms["u_mask"] is not None

    def test_dispose_cancels_mask_loads(self, bus, scene_data) -> None:
        loader = TextureLoader(fetch=lambda src: solid_pixels(2, 2))
        fluid = self._fluid(bus, scene_data, loader, mask_sources={"pool": "pool.png"})
        overlay = fluid.overlays["pool"]

        fluid.dispose()
        loader.pump()

        assert overlay.material.uniforms["u_mask"] is None
        assert bus.overlays_for("pool") == []

    def test_roof_alpha_and_wind_reach_the_uniforms(self, bus, scene_data) -> None:
        fluid = self._fluid(bus, scene_data)
        roof = solid_texture((0, 0, 0, 255), 4, 4)
        wind = WindAdvection(StaticWeather(), make_dimensions())
        fluid.attach_wind(wind)
        wind.update(TimeInfo(0.0))
        wind.update(TimeInfo(1.0))

        fluid.set_roof_alpha(roof, (0.5, 0.5))
        fluid.update(TimeInfo(1.0))

        uniforms = fluid.overlays["pool"].material.uniforms
        assert uniforms["u_roof_alpha"] is roof
        assert uniforms["u_roof_uv_remap"] == (0.5, 0.5)
        assert uniforms["u_offset"] == wind.offset_uv
        assert uniforms["u_time"] == wind.wind_time


def _render_post(effect, input_texture, size: int = SIZE) -> RasterRenderer:
    renderer = RasterRenderer(size, size)
    camera = make_camera(size)
    if effect.state is EffectState.CREATED:
        effect.initialize(renderer, Scene(), camera)
    effect.set_input_texture(input_texture)
    effect.set_render_to_screen(True)
    effect.render(renderer, Scene(), camera)
    return renderer


class TestWater:
    def _water(self) -> tuple[WaterEffect, MaskRegistry]:
        water = WaterEffect(
            params={"tint": (0.0, 0.0, 1.0), "tint_strength": 1.0,
                    "distortion_px": 0.0, "foam": 0.0}
        )
        water.initialize(RasterRenderer(SIZE, SIZE), Scene(), make_camera())
        water.attach_wind(WindAdvection(StaticWeather(), make_dimensions()))
        registry = MaskRegistry()
        water.bind_masks(registry)
        return water, registry

    def test_tints_the_inside_of_the_field(self) -> None:
        water, registry = self._water()
        field = build_surface_field(
            MaskRaster(solid_pixels(SIZE, SIZE)), SurfaceModelOptions(resolution=SIZE)
        )
        registry.publish("water", field)

        renderer = _render_post(water, solid_texture(RED))

        assert water.is_active()
        assert np.all(renderer.screen.pixels == [0, 0, 255, 255])

    def test_passthrough_without_a_field(self) -> None:
        water, _ = self._water()

        renderer = _render_post(water, solid_texture(RED))

        assert not water.is_active()
        assert np.all(renderer.screen.pixels == RED)

    def test_clearing_the_field_deactivates(self) -> None:
        water, registry = self._water()
        registry.publish(
            "water",
            build_surface_field(
                MaskRaster(solid_pixels(8, 8)), SurfaceModelOptions(resolution=8)
            ),
        )
        registry.clear("water")
        assert water.field is None

    def test_dispose_unsubscribes(self) -> None:
        water, registry = self._water()
        water.dispose()
        assert registry.subscriber_count("water") == 0


class TestOverheadShadows:
    def test_factor_multiplies_the_scene(self) -> None:
        shadows = OverheadShadowsEffect()
        shadows.set_shadow_factor(solid_texture((128, 128, 128, 255)), (1.0, 1.0))

        renderer = _render_post(shadows, solid_texture((255, 255, 255, 255)))

        assert np.all(renderer.screen.pixels == [128, 128, 128, 255])

    def test_without_factor_the_scene_passes_through(self) -> None:
        renderer = _render_post(OverheadShadowsEffect(), solid_texture(RED))
        assert np.all(renderer.screen.pixels == RED)

    def test_settings_follow_parameters(self) -> None:
        shadows = OverheadShadowsEffect(params={"opacity": 0.3, "tile_projection": True})
        settings = shadows.shadow_settings()
        assert settings.opacity == 0.3
        assert settings.tile_projection
        assert settings.sort_bias == shadows.params["sort_bias"]


class TestColorCorrection:
    def test_zero_saturation_is_grey(self) -> None:
        grading = ColorCorrectionEffect(params={"saturation": 0.0})
        pixels = _render_post(grading, solid_texture(RED)).screen.pixels
        assert np.all(pixels[..., 0] == pixels[..., 1])
        assert np.all(pixels[..., 1] == pixels[..., 2])
        assert pixels[0, 0, 0] == 54

    def test_disabled_copies_its_input(self) -> None:
        grading = ColorCorrectionEffect(enabled=False, params={"saturation": 0.0})
        assert grading.always_render
        assert np.all(_render_post(grading, solid_texture(RED)).screen.pixels == RED)


class TestSelectionGizmos:
    @pytest.fixture
    def bus(self) -> FloorRenderBus:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("a"), tile("up", floor=1, rect=(4, 4, 8, 8))))
        return bus

    def _selection(self, bus, *tile_ids) -> SelectionGizmoEffect:
        selection = SelectionGizmoEffect()
        selection.initialize(RasterRenderer(SIZE, SIZE), bus.scene, make_camera())
        selection.attach_bus(bus)
        selection.select(tile_ids)
        selection.update(TimeInfo(0.0))
        return selection

    def test_gizmos_follow_their_tiles(self, bus) -> None:
        selection = self._selection(bus, "up", "missing")

        assert list(selection.gizmos) == ["up"]
        gizmo = selection.gizmos["up"]
        assert gizmo.transform.center_x == bus.tile("up").transform.center_x

        bus.tile("up").transform.center_x = 20.0
        selection.update(TimeInfo(0.1))
        assert gizmo.transform.center_x == 20.0

    def test_gizmos_hide_with_their_floor(self, bus) -> None:
        selection = self._selection(bus, "up")
        bus.set_visible_floors(0)
        selection.update(TimeInfo(0.1))
        assert not selection.gizmos["up"].visible

    def test_outline_draws_on_the_overlay_layer(self, bus) -> None:
        selection = self._selection(bus, "a")
        renderer = RasterRenderer(SIZE, SIZE)
        camera = make_camera()
        layers = camera.layers

        selection.render(renderer, bus.scene, camera)

        assert camera.layers is layers
        assert renderer.screen.pixels[16, 0, 3] > 0
        assert renderer.screen.pixels[16, 16, 3] == 0
