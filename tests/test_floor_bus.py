"""Tests for the floor render bus: ordering, visibility and overlays."""

from __future__ import annotations

import numpy as np
import pytest

from tests.helpers import make_camera, scene_of, solid_pixels, tile
from tilefx import config
from tilefx.render.floor_bus import FloorRenderBus
from tilefx.render.rasterizer import RasterRenderer
from tilefx.render.scene import Mesh, OverlayInfo, TileInfo
from tilefx.render.targets import RenderTargetPool
from tilefx.render.textures import TextureLoader


def _overlay(tile_id: str) -> Mesh:
    return Mesh(f"overlay:{tile_id}", metadata=OverlayInfo(tile_id, "test"))


class TestTwoFloorStack:
    """Floor 0 holds tile A, floor 1 holds tile B, both with sort key 0."""

    @pytest.fixture
    def bus(self) -> FloorRenderBus:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("A", floor=0), tile("B", floor=1)))
        return bus

    def test_lower_floor_only(self, bus: FloorRenderBus) -> None:
        bus.set_visible_floors(0)
        assert bus.tile("A").visible
        assert not bus.tile("B").visible

    def test_render_order_follows_floor(self, bus: FloorRenderBus) -> None:
        assert bus.tile("A").render_order < bus.tile("B").render_order

    def test_raising_the_floor_reveals_upper_tiles(self, bus: FloorRenderBus) -> None:
        bus.set_visible_floors(0)
        bus.set_visible_floors(1)
        assert bus.tile("A").visible
        assert bus.tile("B").visible

    def test_visibility_never_rebuilds_geometry(self, bus: FloorRenderBus) -> None:
        meshes = {m.id for m in bus.scene}
        bus.set_visible_floors(0)
        bus.set_visible_floors(1)
        assert {m.id for m in bus.scene} == meshes


class TestOrdering:
    def test_sort_key_orders_tiles_within_a_floor(self) -> None:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("high", sort_key=10), tile("low", sort_key=-3)))
        assert [m.metadata.tile_id for m in bus.tiles()] == ["low", "high"]
        assert bus.tile("low").render_order == 1
        assert bus.tile("high").render_order == 3

    def test_equal_sort_keys_keep_input_order(self) -> None:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("first"), tile("second"), tile("third")))
        assert [m.metadata.tile_id for m in bus.tiles(0)] == ["first", "second", "third"]

    def test_stride_grows_for_crowded_floors(self) -> None:
        count = config.RENDER_ORDER_PER_FLOOR
        records = [tile(f"t{i}", sort_key=i) for i in range(count)]
        records.append(tile("upper", floor=1))
        bus = FloorRenderBus()
        bus.populate(scene_of(*records))

        top_of_ground = max(m.render_order for m in bus.tiles(0))
        assert bus.floor_stride > config.RENDER_ORDER_PER_FLOOR
        assert bus.tile("upper").render_order > top_of_ground

    def test_tile_metadata_is_typed(self) -> None:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("roof", kind="roof", floor=2, sort_key=4)))
        info = bus.tile("roof").metadata
        assert info == TileInfo("roof", 2, 4, "roof")
        assert bus.tile("roof").layers.is_enabled(config.ROOF_LAYER)

    def test_duplicate_tile_ids_are_rejected(self) -> None:
        bus = FloorRenderBus()
        with pytest.raises(ValueError, match="Duplicate tile id"):
            bus.populate(scene_of(tile("same"), tile("same", floor=1)))


class TestOverlays:
    def test_overlay_sits_directly_behind_its_tile(self) -> None:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("a"), tile("b", sort_key=1)))
        overlay = _overlay("b")

        assert bus.add_effect_overlay("b", overlay)

        assert overlay.render_order == bus.tile("b").render_order - 1
        assert overlay.render_order > bus.tile("a").render_order
        assert bus.overlays_for("b") == [overlay]

    def test_overlay_shares_floor_visibility(self) -> None:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("ground"), tile("upper", floor=1)))
        bus.set_visible_floors(0)
        overlay = _overlay("upper")

        bus.add_effect_overlay("upper", overlay)
        assert not overlay.visible

        bus.set_visible_floors(1)
        assert overlay.visible

    def test_roof_and_unknown_tiles_reject_overlays(self) -> None:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("roof", kind="roof")))
        assert not bus.add_effect_overlay("roof", _overlay("roof"))
        assert not bus.add_effect_overlay("missing", _overlay("missing"))
        assert bus.all_overlays() == []

    def test_becoming_a_roof_discards_overlays(self) -> None:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("pool", kind="fluid-carrier")))
        overlay = _overlay("pool")
        bus.add_effect_overlay("pool", overlay)
        discarded: list[Mesh] = []
        bus.on_overlay_discarded(discarded.append)

        bus.set_tile_kind("pool", "roof")

        assert discarded == [overlay]
        assert not bus.scene.contains(overlay)
        assert bus.overlays_for("pool") == []

    def test_detached_listener_is_not_called(self) -> None:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("pool")))
        bus.add_effect_overlay("pool", _overlay("pool"))
        discarded: list[Mesh] = []
        detach = bus.on_overlay_discarded(discarded.append)

        detach()
        bus.set_tile_kind("pool", "roof")

        assert discarded == []

    def test_sync_copies_tile_transform(self) -> None:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("a")))
        overlay = _overlay("a")
        bus.add_effect_overlay("a", overlay)

        bus.tile("a").transform.center_x = 99.0
        bus.sync_overlays()

        assert overlay.transform.center_x == 99.0

    def test_remove_overlay(self) -> None:
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("a")))
        overlay = _overlay("a")
        bus.add_effect_overlay("a", overlay)

        bus.remove_effect_overlay(overlay)

        assert not bus.scene.contains(overlay)
        assert bus.overlays_for("a") == []


class TestRendering:
    def test_textures_install_on_pump(self) -> None:
        loader = TextureLoader(fetch=lambda src: solid_pixels(2, 2, (255, 0, 0, 255)))
        bus = FloorRenderBus(loader)
        bus.populate(scene_of(tile("a", texture_src="a.png")))
        assert bus.tile("a").material.texture is None

        loader.pump()

        assert bus.tile("a").material.texture is not None

    def test_render_to_target_restores_renderer_state(self) -> None:
        renderer = RasterRenderer(32, 32)
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("a")))
        target = RenderTargetPool(32, 32).acquire("scene")

        bus.render_to(renderer, make_camera(), target, (0.0, 0.0, 0.0, 1.0))

        assert renderer.get_render_target() is None
        assert np.all(target.pixels[16, 16] == 255)
        assert renderer.screen.pixels.max() == 0

    def test_background_draws_below_every_floor(self) -> None:
        renderer = RasterRenderer(32, 32)
        bus = FloorRenderBus()
        bus.populate(scene_of(tile("a", rect=(0, 0, 16, 32))))
        bus.set_background((0, 0, 32, 32), color=(0.0, 0.0, 1.0))
        bus.set_visible_floors(0)

        bus.render_to(renderer, make_camera(), renderer.screen)

        assert renderer.screen.pixels[16, 8].tolist() == [255, 255, 255, 255]
        assert renderer.screen.pixels[16, 24].tolist() == [0, 0, 255, 255]

    def test_dispose_cancels_pending_loads(self) -> None:
        loader = TextureLoader(fetch=lambda src: solid_pixels(2, 2))
        bus = FloorRenderBus(loader)
        bus.populate(scene_of(tile("a", texture_src="a.png")))

        bus.dispose()
        bus.dispose()
        loader.pump()

        assert bus.disposed
        assert len(bus.scene) == 0
