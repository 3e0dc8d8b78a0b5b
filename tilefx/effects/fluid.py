"""Fluid overlays: animated flow on fluid-carrier tiles.

Each fluid-carrier tile gets an overlay mesh bound through the floor render
bus, so it shares the tile's floor visibility and draws directly behind it.
The flow pattern is advected by the wind and phased by wind time. The overlay
hides where a roof covers it, using the roof alpha captured by the shadow
pipeline.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from functools import partial
from typing import Any

import numpy as np

from tilefx import config
from tilefx.providers import SceneData
from tilefx.render.floor_bus import FloorRenderBus
from tilefx.render.rasterizer import sample_texture
from tilefx.render.scene import FragmentInputs, Material, Mesh, OverlayInfo
from tilefx.render.shadow_capture import to_captured_uv
from tilefx.render.textures import LoadTask, Texture, TextureLoader
from tilefx.types import TileId, TimeInfo
from tilefx.wind import WindAdvection

from .base import SceneMeshEffect
from .schema import ControlSchema, ParamGroup, color, slider

logger = logging.getLogger(__name__)


class FluidOverlayEffect(SceneMeshEffect):
    """Binds a flowing fluid overlay to every fluid-carrier tile.

    Args:
        mask_sources: Optional per-tile mask images limiting where the fluid
            shows. They load asynchronously; a tile draws unmasked until its
            mask arrives.
    """

    effect_type = "fluid"

    def __init__(
        self,
        *args,
        mask_sources: Mapping[TileId, str] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.requires_continuous_render = True
        self.mask_sources = dict(mask_sources or {})
        self.wind: WindAdvection | None = None
        self._mask_tasks: list[LoadTask] = []

    @classmethod
    def get_control_schema(cls) -> ControlSchema:
        return ControlSchema(
            cls.effect_type,
            parameters=(
                color("color", config.FLUID_DEFAULT_COLOR),
                slider("opacity", config.FLUID_DEFAULT_OPACITY, 0.0, 1.0),
                slider("flow_scale", config.FLUID_DEFAULT_FLOW_SCALE, 0.5, 32.0, 0.5),
                slider("flow_speed", 1.0, 0.0, 4.0, 0.05),
            ),
            groups=(
                ParamGroup("look", "Look", ("color", "opacity")),
                ParamGroup("motion", "Motion", ("flow_scale", "flow_speed")),
            ),
            presets={
                "acid": {"color": (0.55, 0.95, 0.2), "opacity": 0.9},
                "blood": {"color": (0.55, 0.05, 0.05), "flow_speed": 0.4},
            },
        )

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def wind_options(self) -> dict[str, Any]:
        return {"responsiveness": 1.5, "advection_mul": self.params["flow_speed"]}

    def attach_wind(self, wind: WindAdvection) -> None:
        self.wind = wind

    def set_roof_alpha(
        self, texture: Texture | None, uv_remap: tuple[float, float]
    ) -> None:
        for overlay in self.overlays.values():
            overlay.material.uniforms["u_roof_alpha"] = texture
            overlay.material.uniforms["u_roof_uv_remap"] = uv_remap

    # ------------------------------------------------------------------
    # Population
    # ------------------------------------------------------------------
    def on_populate(
        self,
        bus: FloorRenderBus,
        scene_data: SceneData,
        loader: TextureLoader | None,
    ) -> None:
        for floor in scene_data.floors:
            for record in floor.tiles:
                if record.kind != "fluid-carrier" or record.id in self.overlays:
                    continue
                overlay = self._build_overlay(record.id, record.opacity)
                if not bus.add_effect_overlay(record.id, overlay):
                    continue
                self.overlays[record.id] = overlay

                src = self.mask_sources.get(record.id)
                if src and loader is not None:
                    self._mask_tasks.append(
                        loader.load(src, partial(self._install_mask, record.id))
                    )
        logger.debug(f"{self.name}: {len(self.overlays)} fluid overlays bound")

    def _build_overlay(self, tile_id: TileId, tile_opacity: float) -> Mesh:
        material = Material(
            color=self.params["color"],
            visible=self.enabled,
            uniforms={
                "u_tile_opacity": tile_opacity,
                "u_roof_occlusion_enabled": True,
                "u_roof_alpha": None,
                "u_roof_uv_remap": (1.0, 1.0),
                "u_mask": None,
                "u_opacity": self.params["opacity"],
                "u_flow_scale": self.params["flow_scale"],
                "u_offset": (0.0, 0.0),
                "u_time": 0.0,
            },
            fragment=self._shade,
        )
        return Mesh(
            f"fluid:{tile_id}",
            material=material,
            metadata=OverlayInfo(tile_id=tile_id, effect_name=self.name),
        )

    def _install_mask(self, tile_id: TileId, texture: Texture) -> None:
        if self.disposed:
            return
        overlay = self.overlays.get(tile_id)
        if overlay is not None:
            overlay.material.uniforms["u_mask"] = texture

    # ------------------------------------------------------------------
    # Frame
    # ------------------------------------------------------------------
    def is_active(self) -> bool:
        return super().is_active() and bool(self.overlays)

    def update(self, time_info: TimeInfo) -> None:
        offset = self.wind.offset_uv if self.wind is not None else (0.0, 0.0)
        phase = self.wind.wind_time if self.wind is not None else time_info.elapsed
        for overlay in self.overlays.values():
            uniforms = overlay.material.uniforms
            uniforms["u_offset"] = offset
            uniforms["u_time"] = phase
            uniforms["u_opacity"] = self.params["opacity"]
            uniforms["u_flow_scale"] = self.params["flow_scale"]
            overlay.material.color = self.params["color"]

    @staticmethod
    def _shade(f: FragmentInputs) -> np.ndarray:
        uni = f.uniforms
        scale = uni["u_flow_scale"]
        ox, oy = uni["u_offset"]
        t = uni["u_time"]
        px = (f.u - ox * scale) * scale
        py = (f.v - oy * scale) * scale
        wave = 0.5 + 0.25 * (
            np.sin(2.0 * math.pi * (px + 0.35 * py) + t)
            + np.cos(2.0 * math.pi * (0.6 * px - py) - 0.7 * t)
        )

        out = f.base.copy()
        out[:, :3] *= (0.8 + 0.4 * wave)[:, None]
        alpha = out[:, 3] * uni["u_opacity"] * uni["u_tile_opacity"]

        mask = uni["u_mask"]
        if mask is not None:
            alpha = alpha * sample_texture(mask, f.u, f.v)[:, 3]

        roof = uni["u_roof_alpha"]
        if uni["u_roof_occlusion_enabled"] and roof is not None:
            cu, cv = to_captured_uv(f.screen_u, f.screen_v, uni["u_roof_uv_remap"])
            alpha = alpha * (1.0 - sample_texture(roof, cu, cv)[:, 3])

        out[:, 3] = np.clip(alpha, 0.0, 1.0)
        return out

    def on_dispose(self) -> None:
        for task in self._mask_tasks:
            task.cancel()
        self._mask_tasks.clear()
        self.wind = None
        super().on_dispose()
