"""Mask rasters, derived surface fields and their registry."""

from .raster import MaskRaster
from .registry import MaskPolicy, MaskRegistry, Subscription
from .surface_model import (
    SurfaceField,
    SurfaceModelBuilder,
    SurfaceModelOptions,
    build_surface_field,
)

__all__ = [
    "MaskPolicy",
    "MaskRaster",
    "MaskRegistry",
    "Subscription",
    "SurfaceField",
    "SurfaceModelBuilder",
    "SurfaceModelOptions",
    "build_surface_field",
]
