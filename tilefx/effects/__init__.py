"""Compositor effects and the contract they implement."""

from .base import (
    BusConsumer,
    EffectBase,
    EffectState,
    MaskConsumer,
    OverlayLayerEffect,
    PostProcessEffect,
    RenderLayer,
    RoofAlphaConsumer,
    SceneMeshEffect,
    ShadowFactorConsumer,
    WindConsumer,
)
from .color_correction import ColorCorrectionEffect
from .fluid import FluidOverlayEffect
from .overhead_shadows import OverheadShadowsEffect
from .schema import ControlSchema, ParameterBag, ParamGroup, ParamSpec, ParamType
from .selection import SelectionGizmoEffect
from .water import WaterEffect

__all__ = [
    "BusConsumer",
    "ColorCorrectionEffect",
    "ControlSchema",
    "EffectBase",
    "EffectState",
    "FluidOverlayEffect",
    "MaskConsumer",
    "OverheadShadowsEffect",
    "OverlayLayerEffect",
    "ParamGroup",
    "ParamSpec",
    "ParamType",
    "ParameterBag",
    "PostProcessEffect",
    "RenderLayer",
    "RoofAlphaConsumer",
    "SceneMeshEffect",
    "SelectionGizmoEffect",
    "ShadowFactorConsumer",
    "WaterEffect",
    "WindConsumer",
]
