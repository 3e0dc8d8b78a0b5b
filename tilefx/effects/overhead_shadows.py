"""Overhead shadows: darkens the scene by the captured shadow factor."""

from __future__ import annotations

import numpy as np

from tilefx import config
from tilefx.render.rasterizer import FullscreenInputs, sample_texture
from tilefx.render.shadow_capture import ShadowSettings
from tilefx.render.textures import Texture

from .base import PostProcessEffect, RenderLayer
from .schema import ControlSchema, ParamGroup, boolean, slider


class OverheadShadowsEffect(PostProcessEffect):
    """Multiplies the scene by the roof and tile shadow factors.

    The coordinator captures the shadow factor with ``shadow_settings()`` and
    hands the texture back through ``set_shadow_factor``.
    """

    effect_type = "overhead-shadows"
    default_render_layer = RenderLayer.ENVIRONMENTAL

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.shadow_factor: Texture | None = None
        self.uv_remap: tuple[float, float] = (1.0, 1.0)

    @classmethod
    def get_control_schema(cls) -> ControlSchema:
        return ControlSchema(
            cls.effect_type,
            parameters=(
                slider("opacity", config.SHADOW_DEFAULT_OPACITY, 0.0, 1.0),
                slider("length", config.SHADOW_DEFAULT_LENGTH, 0.0, 0.3, 0.005),
                slider("softness", config.SHADOW_DEFAULT_SOFTNESS, 0.0, 8.0, 0.1),
                slider("sun_latitude", config.SHADOW_DEFAULT_SUN_LATITUDE, 0.0, 1.0),
                slider("indoor_darkness", config.SHADOW_DEFAULT_INDOOR_DARKNESS, 0.0, 1.0),
                boolean("tile_projection", False),
                slider("tile_strength", config.SHADOW_DEFAULT_TILE_STRENGTH, 0.0, 1.0),
                slider("sort_bias", config.SHADOW_DEFAULT_SORT_BIAS, 0.0, 0.1, 0.001),
            ),
            groups=(
                ParamGroup(
                    "roof", "Roof shadows",
                    ("opacity", "length", "softness", "sun_latitude", "indoor_darkness"),
                ),
                ParamGroup(
                    "tiles", "Tile projection",
                    ("tile_projection", "tile_strength", "sort_bias"),
                ),
            ),
            presets={
                "soft": {"opacity": 0.4, "softness": 3.0},
                "noon": {"length": 0.02, "sun_latitude": 0.2},
                "dusk": {"opacity": 0.75, "length": 0.12, "softness": 2.0},
            },
        )

    def shadow_settings(self) -> ShadowSettings:
        p = self.params
        return ShadowSettings(
            opacity=p["opacity"],
            length=p["length"],
            softness=p["softness"],
            sun_latitude=p["sun_latitude"],
            indoor_darkness=p["indoor_darkness"],
            tile_projection=p["tile_projection"],
            tile_strength=p["tile_strength"],
            sort_bias=p["sort_bias"],
        )

    def set_shadow_factor(
        self, texture: Texture | None, uv_remap: tuple[float, float]
    ) -> None:
        self.shadow_factor = texture
        self.uv_remap = uv_remap

    def shade(self, f: FullscreenInputs) -> np.ndarray:
        color = self.sample_input(f.u, f.v)
        if self.shadow_factor is None:
            return color
        # The factor was composited at screen resolution, so screen UV reads it
        factor = sample_texture(self.shadow_factor, f.u, f.v)
        color[..., :3] *= (factor[..., 0] * factor[..., 3])[..., None]
        return color

    def on_dispose(self) -> None:
        super().on_dispose()
        self.shadow_factor = None
