"""Water: tints, ripples and foams the scene inside the water field."""

from __future__ import annotations

import logging
import math
from typing import Any

import numpy as np

from tilefx import config
from tilefx.masks.registry import MaskRegistry, Subscription
from tilefx.masks.surface_model import SurfaceField
from tilefx.render.rasterizer import FullscreenInputs, sample_bilinear
from tilefx.wind import WindAdvection

from .base import PostProcessEffect, RenderLayer
from .schema import ControlSchema, ParamGroup, color, slider

logger = logging.getLogger(__name__)

WATER_MASK_ID = "water"


def _smoothstep(edge0: float, edge1: float, x: np.ndarray) -> np.ndarray:
    t = np.clip((x - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


class WaterEffect(PostProcessEffect):
    """Post pass driven by the derived ``water`` field.

    The field arrives through a mask-registry subscription; while none is
    published the pass is a passthrough.
    """

    effect_type = "water"
    default_render_layer = RenderLayer.SURFACE_EFFECTS

    def __init__(self, *args, mask_id: str = WATER_MASK_ID, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.requires_continuous_render = True
        self.mask_id = mask_id
        self.field: SurfaceField | None = None
        self.wind: WindAdvection | None = None
        self._subscription: Subscription | None = None

    @classmethod
    def get_control_schema(cls) -> ControlSchema:
        return ControlSchema(
            cls.effect_type,
            parameters=(
                color("tint", config.WATER_DEFAULT_TINT),
                slider("tint_strength", config.WATER_DEFAULT_TINT_STRENGTH, 0.0, 1.0),
                slider("wave_scale", config.WATER_DEFAULT_WAVE_SCALE, 4.0, 256.0, 1.0),
                slider("distortion_px", config.WATER_DEFAULT_DISTORTION_PX, 0.0, 16.0, 0.25),
                slider("foam", config.WATER_DEFAULT_FOAM, 0.0, 1.0),
            ),
            groups=(
                ParamGroup("color", "Colour", ("tint", "tint_strength")),
                ParamGroup("waves", "Waves", ("wave_scale", "distortion_px", "foam")),
            ),
            presets={
                "calm": {"distortion_px": 0.5, "foam": 0.1},
                "stormy": {"distortion_px": 5.0, "foam": 0.8, "wave_scale": 40.0},
                "swamp": {"tint": (0.2, 0.3, 0.12), "tint_strength": 0.7},
            },
        )

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def bind_masks(self, registry: MaskRegistry) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
        self._subscription = registry.subscribe(
            self.mask_id, self._on_field, replay=True
        )

    def _on_field(self, field: SurfaceField | None) -> None:
        if self.disposed:
            return
        self.field = field
        if field is None:
            logger.debug(f"{self.name}: '{self.mask_id}' field cleared")

    def wind_options(self) -> dict[str, Any]:
        return {"responsiveness": config.WIND_DEFAULT_RESPONSIVENESS}

    def attach_wind(self, wind: WindAdvection) -> None:
        self.wind = wind

    def is_active(self) -> bool:
        return super().is_active() and self.field is not None

    # ------------------------------------------------------------------
    # Shading
    # ------------------------------------------------------------------
    def shade(self, f: FullscreenInputs) -> np.ndarray:
        if self.field is None or self.wind is None or self.camera is None:
            return self.sample_input(f.u, f.v)

        dims = self.wind.dimensions
        wx, wy = self.camera.screen_uv_to_world(f.u, f.v)
        mu, mv = dims.world_to_scene_uv(wx, wy)
        in_scene = (mu >= 0.0) & (mu <= 1.0) & (mv >= 0.0) & (mv <= 1.0)

        surface = sample_bilinear(self.field.data, mu, mv)
        sdf01, exposure = surface[..., 0], surface[..., 1]
        water = (1.0 - _smoothstep(0.47, 0.5, sdf01)) * in_scene

        p = self.params
        ox, oy = self.wind.offset_uv
        t = self.wind.wind_time
        scale = p["wave_scale"]
        qx = (mu + ox) * dims.scene_rect.width / scale
        qy = (mv + oy) * dims.scene_rect.height / scale
        wave_x = np.sin(2.0 * math.pi * qx + t) * np.cos(math.pi * qy - 0.5 * t)
        wave_y = np.cos(2.0 * math.pi * qy + 1.3 * t) * np.sin(math.pi * qx)

        du = wave_x * p["distortion_px"] / f.width * water
        dv = wave_y * p["distortion_px"] / f.height * water
        out = self.sample_input(f.u + du, f.v + dv)

        tint = np.asarray(p["tint"], dtype=np.float32)
        k = (p["tint_strength"] * water)[..., None]
        out[..., :3] = out[..., :3] * (1.0 - k) + tint * k

        # Exposure is 0 on the shoreline, so foam gathers where it is low
        foam = (1.0 - exposure) * p["foam"] * (0.5 + 0.5 * wave_x) * water
        out[..., :3] = np.clip(out[..., :3] + foam[..., None], 0.0, 1.0)
        return out

    def on_dispose(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self.field = None
        self.wind = None
        super().on_dispose()
