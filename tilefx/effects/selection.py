"""Selection gizmos drawn on the overlay layer."""

from __future__ import annotations

from collections.abc import Iterable

import numpy as np

from tilefx import config
from tilefx.render.floor_bus import FloorRenderBus
from tilefx.render.scene import FragmentInputs, GizmoInfo, Layers, Material, Mesh
from tilefx.types import TileId, TimeInfo

from .base import OverlayLayerEffect
from .schema import ControlSchema, color, slider


def _outline(f: FragmentInputs) -> np.ndarray:
    width = f.uniforms["u_outline"]
    edge = np.minimum(np.minimum(f.u, 1.0 - f.u), np.minimum(f.v, 1.0 - f.v))
    out = f.base.copy()
    out[:, 3] = np.where(edge < width, out[:, 3], 0.0)
    return out


class SelectionGizmoEffect(OverlayLayerEffect):
    """Outlines the selected tiles above everything else.

    Gizmos follow their tile's transform and hide with its floor.
    """

    effect_type = "selection"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.bus: FloorRenderBus | None = None
        self.selected: list[TileId] = []
        self.gizmos: dict[TileId, Mesh] = {}
        self._dirty = False

    @classmethod
    def get_control_schema(cls) -> ControlSchema:
        return ControlSchema(
            cls.effect_type,
            parameters=(
                color("color", config.SELECTION_DEFAULT_COLOR),
                slider("opacity", config.SELECTION_DEFAULT_OPACITY, 0.0, 1.0),
                slider("outline", config.SELECTION_OUTLINE_FRACTION, 0.01, 0.5),
            ),
        )

    def attach_bus(self, bus: FloorRenderBus) -> None:
        self.bus = bus
        self._dirty = True

    def select(self, tile_ids: Iterable[TileId]) -> None:
        self.selected = list(dict.fromkeys(tile_ids))
        self._dirty = True

    def is_active(self) -> bool:
        return super().is_active() and bool(self.gizmos or self.selected)

    def _rebuild(self) -> None:
        self.overlay_scene.clear()
        self.gizmos.clear()
        if self.bus is None:
            return
        for tile_id in self.selected:
            if self.bus.tile(tile_id) is None:
                continue
            gizmo = Mesh(
                f"gizmo:{tile_id}",
                material=Material(
                    visible=self.enabled,
                    uniforms={"u_outline": self.params["outline"]},
                    fragment=_outline,
                ),
                metadata=GizmoInfo(effect_name=self.name, target_id=tile_id),
                layers=Layers(config.OVERLAY_LAYER),
            )
            self.gizmos[tile_id] = gizmo
            self.overlay_scene.add(gizmo)
        self._dirty = False

    def update(self, time_info: TimeInfo) -> None:
        if self._dirty:
            self._rebuild()
        if self.bus is None:
            return
        for tile_id, gizmo in self.gizmos.items():
            tile = self.bus.tile(tile_id)
            if tile is None:
                gizmo.visible = False
                continue
            gizmo.transform = tile.transform.copy()
            gizmo.visible = tile.visible
            gizmo.material.color = self.params["color"]
            gizmo.material.opacity = self.params["opacity"]
            gizmo.material.uniforms["u_outline"] = self.params["outline"]

    def on_dispose(self) -> None:
        super().on_dispose()
        self.gizmos.clear()
        self.bus = None
