"""Floor render bus: the Z-ordered scene of tile meshes and their overlays.

Tiles are grouped by floor. Render order is ``floor * stride + 2 * rank + 1``
where ``rank`` is the tile's position within its floor when sorted by sort
key (equal keys keep their input order), so floors are the high-order key and
sort keys the low-order key. An overlay bound to a tile draws at
``tile_order - 1``, directly behind its tile and never colliding with another
tile.

Visibility is owned here: ``set_visible_floors`` shows every tile (and every
overlay bound to it) whose floor is at or below the active floor. Overlay
effects add their meshes through ``add_effect_overlay`` and never manage
floor visibility themselves. Changing the active floor never rebuilds
geometry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from functools import partial

from tilefx import config
from tilefx.providers import SceneData, TileRecord
from tilefx.types import ColorRGBf, FloorIndex, TileId, TileKind

from .rasterizer import RasterRenderer
from .scene import (
    Camera,
    Layers,
    Material,
    Mesh,
    OverlayInfo,
    Scene,
    TileInfo,
    Transform,
)
from .targets import RenderTarget
from .textures import LoadTask, Texture, TextureLoader

logger = logging.getLogger(__name__)

type OverlayDiscardedCallback = Callable[[Mesh], None]


def tile_layers(kind: TileKind) -> Layers:
    """Layer set for a tile of ``kind``: roofs and fluid carriers join the roof layer."""
    layers = Layers(config.DEFAULT_LAYER)
    if kind in ("roof", "fluid-carrier"):
        layers.enable(config.ROOF_LAYER)
    return layers


class FloorRenderBus:
    """Owns the private scene of tile meshes, their overlays and floor visibility."""

    def __init__(self, loader: TextureLoader | None = None) -> None:
        self.scene = Scene("floor-bus")
        self.loader = loader
        self.floor_stride = config.RENDER_ORDER_PER_FLOOR
        self.visible_max_floor: FloorIndex | None = None
        self.populated = False
        self.disposed = False

        self._floors: dict[FloorIndex, list[Mesh]] = {}
        self._tiles: dict[TileId, Mesh] = {}
        self._overlays: dict[TileId, list[Mesh]] = {}
        self._internal: dict[str, Mesh] = {}
        self._load_tasks: list[LoadTask] = []
        self._discard_listeners: list[OverlayDiscardedCallback] = []

    # ------------------------------------------------------------------
    # Population
    # ------------------------------------------------------------------
    def populate(self, scene_data: SceneData) -> None:
        """Build tile meshes for every floor in ``scene_data``.

        Replaces any previous population. Textures are requested from the
        loader; until they resolve the meshes draw untextured.
        """
        self._clear_tiles()

        max_population = max((len(f.tiles) for f in scene_data.floors), default=0)
        self.floor_stride = max(config.RENDER_ORDER_PER_FLOOR, 2 * max_population + 2)

        for floor in scene_data.floors:
            ranked = sorted(
                enumerate(floor.tiles), key=lambda item: (item[1].sort_key, item[0])
            )
            meshes: list[Mesh] = []
            for rank, (_, record) in enumerate(ranked):
                mesh = self._build_tile(record, floor.index, rank)
                meshes.append(mesh)
            self._floors[floor.index] = meshes

        self.populated = True
        if self.visible_max_floor is not None:
            self.set_visible_floors(self.visible_max_floor)
        logger.debug(
            f"Floor bus populated: {len(self._tiles)} tiles on "
            f"{len(self._floors)} floors (stride {self.floor_stride})"
        )

    def render_order_for(self, floor: FloorIndex, rank: int) -> int:
        return floor * self.floor_stride + 2 * rank + 1

    def _build_tile(self, record: TileRecord, floor: FloorIndex, rank: int) -> Mesh:
        if record.id in self._tiles:
            raise ValueError(f"Duplicate tile id '{record.id}'")
        mesh = Mesh(
            f"tile:{record.id}",
            Transform.from_rect(
                record.x, record.y, record.width, record.height, record.rotation
            ),
            Material(opacity=record.opacity),
            metadata=TileInfo(
                tile_id=record.id,
                floor=floor,
                sort_key=record.sort_key,
                kind=record.kind,
            ),
            render_order=self.render_order_for(floor, rank),
            layers=tile_layers(record.kind),
        )
        self.scene.add(mesh)
        self._tiles[record.id] = mesh

        if record.texture_src and self.loader is not None:
            task = self.loader.load(
                record.texture_src, partial(self._install_texture, mesh)
            )
            self._load_tasks.append(task)
        return mesh

    def _install_texture(self, mesh: Mesh, texture: Texture) -> None:
        if self.disposed or not self.scene.contains(mesh):
            return
        mesh.material.texture = texture

    def _clear_tiles(self) -> None:
        for task in self._load_tasks:
            task.cancel()
        self._load_tasks.clear()
        for overlays in self._overlays.values():
            for overlay in overlays:
                self.scene.remove(overlay)
        for mesh in self._tiles.values():
            self.scene.remove(mesh)
        self._overlays.clear()
        self._tiles.clear()
        self._floors.clear()
        self.populated = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def tile(self, tile_id: TileId) -> Mesh | None:
        return self._tiles.get(tile_id)

    def tiles(self, floor: FloorIndex | None = None) -> list[Mesh]:
        """Tile meshes in render order, optionally restricted to one floor."""
        if floor is not None:
            return list(self._floors.get(floor, ()))
        return sorted(self._tiles.values(), key=lambda m: (m.render_order, m.id))

    def floors(self) -> list[FloorIndex]:
        return sorted(self._floors)

    def overlays_for(self, tile_id: TileId) -> list[Mesh]:
        return list(self._overlays.get(tile_id, ()))

    def all_overlays(self) -> list[Mesh]:
        return [overlay for items in self._overlays.values() for overlay in items]

    @staticmethod
    def tile_info(mesh: Mesh) -> TileInfo:
        if not isinstance(mesh.metadata, TileInfo):
            raise TypeError(f"{mesh!r} is not a tile mesh")
        return mesh.metadata

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------
    def set_visible_floors(self, max_index: FloorIndex) -> None:
        """Show tiles and overlays on floors ``<= max_index``, hide the rest."""
        self.visible_max_floor = max_index
        for tile_id, mesh in self._tiles.items():
            visible = self.tile_info(mesh).floor <= max_index
            mesh.visible = visible
            for overlay in self._overlays.get(tile_id, ()):
                overlay.visible = visible
        for mesh in self._internal.values():
            mesh.visible = True

    def _floor_visible(self, floor: FloorIndex) -> bool:
        return self.visible_max_floor is None or floor <= self.visible_max_floor

    # ------------------------------------------------------------------
    # Overlays
    # ------------------------------------------------------------------
    def add_effect_overlay(self, tile_id: TileId, overlay: Mesh) -> bool:
        """Bind ``overlay`` to a tile and add it to the bus scene.

        Returns:
            False when the tile is unknown or is a roof tile (nothing is added).
        """
        tile = self._tiles.get(tile_id)
        if tile is None or self.tile_info(tile).kind == "roof":
            return False
        overlay.render_order = tile.render_order - 1
        overlay.transform = tile.transform.copy()
        overlay.layers = tile.layers.copy()
        overlay.visible = self._floor_visible(self.tile_info(tile).floor)
        self.scene.add(overlay)
        self._overlays.setdefault(tile_id, []).append(overlay)
        return True

    def remove_effect_overlay(self, overlay: Mesh) -> None:
        self.scene.remove(overlay)
        if isinstance(overlay.metadata, OverlayInfo):
            overlays = self._overlays.get(overlay.metadata.tile_id, [])
            if overlay in overlays:
                overlays.remove(overlay)

    def on_overlay_discarded(self, callback: OverlayDiscardedCallback) -> Callable[[], None]:
        """Be told when the bus drops an overlay; returns a detach function."""
        self._discard_listeners.append(callback)

        def detach() -> None:
            if callback in self._discard_listeners:
                self._discard_listeners.remove(callback)

        return detach

    def set_tile_kind(self, tile_id: TileId, kind: TileKind) -> None:
        """Change a tile's kind; becoming a roof discards its overlays."""
        mesh = self._tiles.get(tile_id)
        if mesh is None:
            return
        mesh.metadata = replace(self.tile_info(mesh), kind=kind)
        mesh.layers = tile_layers(kind)
        if kind == "roof":
            for overlay in self._overlays.pop(tile_id, []):
                self.scene.remove(overlay)
                for listener in list(self._discard_listeners):
                    listener(overlay)
        else:
            for overlay in self._overlays.get(tile_id, ()):
                overlay.layers = mesh.layers.copy()

    def sync_overlays(self) -> None:
        """Copy each bound tile's transform and layers onto its overlays."""
        for tile_id, overlays in self._overlays.items():
            tile = self._tiles.get(tile_id)
            if tile is None:
                continue
            for overlay in overlays:
                overlay.transform = tile.transform.copy()
                overlay.layers = tile.layers.copy()
                overlay.render_order = tile.render_order - 1

    # ------------------------------------------------------------------
    # Background planes
    # ------------------------------------------------------------------
    def set_background(
        self,
        rect: tuple[float, float, float, float],
        color: ColorRGBf | None = None,
        texture: Texture | None = None,
    ) -> None:
        """Solid and/or image planes covering ``rect`` (x, y, w, h) below all floors."""
        prefix = config.INTERNAL_ENTRY_PREFIX
        self._set_internal(
            f"{prefix}background_solid",
            rect,
            None if color is None else Material(color=color),
            config.BACKGROUND_SOLID_RENDER_ORDER,
        )
        self._set_internal(
            f"{prefix}background_image",
            rect,
            None if texture is None else Material(texture=texture),
            config.BACKGROUND_IMAGE_RENDER_ORDER,
        )

    def _set_internal(
        self,
        name: str,
        rect: tuple[float, float, float, float],
        material: Material | None,
        render_order: int,
    ) -> None:
        existing = self._internal.pop(name, None)
        if existing is not None:
            self.scene.remove(existing)
        if material is None:
            return
        mesh = Mesh(name, Transform.from_rect(*rect), material, render_order=render_order)
        self._internal[name] = mesh
        self.scene.add(mesh)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def render_to_screen(self, renderer: RasterRenderer, camera: Camera) -> None:
        """Render the bus scene into the renderer's current target."""
        state = renderer.save_state()
        try:
            self.sync_overlays()
            renderer.render(self.scene, camera)
        finally:
            renderer.restore_state(state)

    def render_to(
        self,
        renderer: RasterRenderer,
        camera: Camera,
        target: RenderTarget,
        clear_color: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0),
    ) -> None:
        """Clear ``target`` and render the bus scene into it."""
        state = renderer.save_state()
        try:
            renderer.set_render_target(target)
            renderer.clear(clear_color)
            self.render_to_screen(renderer, camera)
        finally:
            renderer.restore_state(state)

    def clear(self) -> None:
        self._clear_tiles()
        for mesh in self._internal.values():
            self.scene.remove(mesh)
        self._internal.clear()

    def dispose(self) -> None:
        if self.disposed:
            return
        self.clear()
        self._discard_listeners.clear()
        self.disposed = True
