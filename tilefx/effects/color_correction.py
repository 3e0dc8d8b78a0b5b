"""Colour grading pass."""

from __future__ import annotations

import numpy as np

from tilefx import config

from .base import PostProcessEffect, RenderLayer
from .schema import ControlSchema, ParamGroup, color, slider


class ColorCorrectionEffect(PostProcessEffect):
    """Exposure, saturation and tint.

    Always part of the post chain: when disabled it copies its input through
    so the chain keeps one stable final pass.
    """

    effect_type = "color-correction"
    default_render_layer = RenderLayer.POST_PROCESSING

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.always_render = True

    @classmethod
    def get_control_schema(cls) -> ControlSchema:
        return ControlSchema(
            cls.effect_type,
            parameters=(
                slider("exposure", 0.0, -2.0, 2.0, 0.05),
                slider("saturation", 1.0, 0.0, 2.0),
                color("tint", (1.0, 1.0, 1.0)),
                slider("tint_strength", 0.0, 0.0, 1.0),
            ),
            groups=(
                ParamGroup("tone", "Tone", ("exposure", "saturation")),
                ParamGroup("tint", "Tint", ("tint", "tint_strength")),
            ),
            presets={
                "neutral": {"exposure": 0.0, "saturation": 1.0, "tint_strength": 0.0},
                "night": {"exposure": -0.8, "saturation": 0.6, "tint": (0.6, 0.7, 1.0),
                          "tint_strength": 0.3},
                "sepia": {"saturation": 0.2, "tint": (0.9, 0.75, 0.55), "tint_strength": 0.5},
            },
        )

    def shade(self, f) -> np.ndarray:
        p = self.params
        out = self.sample_input(f.u, f.v)
        rgb = out[..., :3] * (2.0 ** p["exposure"])
        luma = rgb @ np.asarray(config.LUMA_WEIGHTS, dtype=np.float32)
        rgb = luma[..., None] + (rgb - luma[..., None]) * p["saturation"]
        k = p["tint_strength"]
        rgb = rgb * (1.0 - k) + rgb * np.asarray(p["tint"], dtype=np.float32) * k
        out[..., :3] = np.clip(rgb, 0.0, 1.0)
        return out
