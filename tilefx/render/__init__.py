"""Scene primitives, the raster renderer and the compositor's render passes."""

from .floor_bus import FloorRenderBus
from .overrides import OverrideStack
from .post_chain import PostProcessingChain
from .rasterizer import RasterRenderer
from .scene import (
    Camera,
    GizmoInfo,
    Layers,
    Material,
    Mesh,
    OrthographicCamera,
    OverlayInfo,
    PerspectiveCamera,
    Scene,
    TileInfo,
    Transform,
)
from .shadow_capture import ShadowCapturePipeline, ShadowCaptureResult, ShadowSettings
from .targets import RenderTarget, RenderTargetPool
from .textures import LoadTask, Texture, TextureLoader

__all__ = [
    "Camera",
    "FloorRenderBus",
    "GizmoInfo",
    "Layers",
    "LoadTask",
    "Material",
    "Mesh",
    "OrthographicCamera",
    "OverlayInfo",
    "OverrideStack",
    "PerspectiveCamera",
    "PostProcessingChain",
    "RasterRenderer",
    "RenderTarget",
    "RenderTargetPool",
    "Scene",
    "ShadowCapturePipeline",
    "ShadowCaptureResult",
    "ShadowSettings",
    "Texture",
    "TextureLoader",
    "TileInfo",
    "Transform",
]
