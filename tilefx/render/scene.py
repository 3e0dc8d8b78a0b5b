"""Scene graph primitives for the compositor's raster renderer.

Meshes are textured quads with a world transform, a material, a layer set
and a render order. Cameras project world coordinates (scene pixels at zoom 1,
Y down) to normalized device coordinates. A mesh carries typed metadata
instead of an untyped user-data bag.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from itertools import count
from typing import TYPE_CHECKING, Any

import numpy as np

from tilefx import config
from tilefx.types import ColorRGBf, FloorIndex, TileId, TileKind

if TYPE_CHECKING:
    from .textures import Texture

# =============================================================================
# MESH METADATA
# =============================================================================


@dataclass(frozen=True)
class TileInfo:
    """Metadata of a map tile sprite."""

    tile_id: TileId
    floor: FloorIndex
    sort_key: int
    kind: TileKind = "regular"


@dataclass(frozen=True)
class OverlayInfo:
    """Metadata of an effect overlay bound to a tile."""

    tile_id: TileId
    effect_name: str


@dataclass(frozen=True)
class GizmoInfo:
    """Metadata of an editor/selection gizmo drawn on the overlay layer."""

    effect_name: str
    target_id: str


type MeshMetadata = TileInfo | OverlayInfo | GizmoInfo

# =============================================================================
# LAYERS AND TRANSFORMS
# =============================================================================


class Layers:
    """A 32-bit layer mask; a camera draws a mesh when their masks intersect."""

    def __init__(self, *layers: int) -> None:
        self.mask = 0
        for layer in layers or (config.DEFAULT_LAYER,):
            self.enable(layer)

    def set(self, layer: int) -> None:
        """Enable only ``layer``."""
        self.mask = 1 << self._check(layer)

    def enable(self, layer: int) -> None:
        self.mask |= 1 << self._check(layer)

    def disable(self, layer: int) -> None:
        self.mask &= ~(1 << self._check(layer))

    def is_enabled(self, layer: int) -> bool:
        return bool(self.mask & (1 << self._check(layer)))

    def test(self, other: Layers) -> bool:
        return (self.mask & other.mask) != 0

    def copy(self) -> Layers:
        clone = Layers()
        clone.mask = self.mask
        return clone

    @staticmethod
    def _check(layer: int) -> int:
        if not 0 <= layer <= config.MAX_LAYER:
            raise ValueError(f"Layer {layer} outside 0..{config.MAX_LAYER}")
        return layer

    def __repr__(self) -> str:
        enabled = [i for i in range(config.MAX_LAYER + 1) if self.mask & (1 << i)]
        return f"Layers({enabled})"


@dataclass
class Transform:
    """World placement of a unit quad: centre, size and rotation (radians)."""

    center_x: float = 0.0
    center_y: float = 0.0
    width: float = 1.0
    height: float = 1.0
    rotation: float = 0.0

    @classmethod
    def from_rect(
        cls, x: float, y: float, width: float, height: float, rotation_deg: float = 0.0
    ) -> Transform:
        """Build from a top-left rectangle and a rotation in degrees."""
        return cls(
            center_x=x + width / 2.0,
            center_y=y + height / 2.0,
            width=width,
            height=height,
            rotation=math.radians(rotation_deg),
        )

    def copy(self) -> Transform:
        return Transform(
            self.center_x, self.center_y, self.width, self.height, self.rotation
        )

    def corners(self) -> np.ndarray:
        """World coordinates of the four quad corners, shape (4, 2)."""
        local = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        return self.local_to_world(local[:, 0], local[:, 1])

    def local_to_world(self, u: np.ndarray, v: np.ndarray) -> np.ndarray:
        cos_r, sin_r = math.cos(self.rotation), math.sin(self.rotation)
        lx = (np.asarray(u) - 0.5) * self.width
        ly = (np.asarray(v) - 0.5) * self.height
        wx = self.center_x + lx * cos_r - ly * sin_r
        wy = self.center_y + lx * sin_r + ly * cos_r
        return np.stack([wx, wy], axis=-1)

    def world_to_local(
        self, wx: np.ndarray, wy: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Map world coordinates to quad-local UV (inside the quad iff in [0, 1])."""
        cos_r, sin_r = math.cos(self.rotation), math.sin(self.rotation)
        dx = np.asarray(wx) - self.center_x
        dy = np.asarray(wy) - self.center_y
        lx = dx * cos_r + dy * sin_r
        ly = -dx * sin_r + dy * cos_r
        u = lx / max(self.width, 1e-9) + 0.5
        v = ly / max(self.height, 1e-9) + 0.5
        return u, v


# =============================================================================
# MATERIALS AND MESHES
# =============================================================================


@dataclass
class FragmentInputs:
    """Per-pixel inputs handed to a material's fragment function.

    All arrays are flat and share one length: the pixels covered by the mesh.

    Attributes:
        u, v: Quad-local texture coordinates.
        screen_u, screen_v: Normalized coordinates on the render target.
        world_x, world_y: World position of the pixel centre.
        base: Textured and tinted colour before the fragment ran, (N, 4).
        uniforms: The material's uniform dict.
        target_size: (width, height) of the render target.
    """

    u: np.ndarray
    v: np.ndarray
    screen_u: np.ndarray
    screen_v: np.ndarray
    world_x: np.ndarray
    world_y: np.ndarray
    base: np.ndarray
    uniforms: dict[str, Any]
    target_size: tuple[int, int]


# Returns straight-alpha RGBA floats, shape (N, 4).
type FragmentShader = Callable[[FragmentInputs], np.ndarray]


@dataclass
class Material:
    """Surface description: tint, opacity, optional texture and fragment function.

    Attributes:
        flat_color: When set, replaces the textured RGB while keeping the
            texture's alpha. Capture passes use it to encode scalar data.
    """

    color: ColorRGBf = (1.0, 1.0, 1.0)
    opacity: float = 1.0
    texture: Texture | None = None
    visible: bool = True
    flat_color: ColorRGBf | None = None
    uniforms: dict[str, Any] = field(default_factory=dict)
    fragment: FragmentShader | None = None


_mesh_ids = count(1)


class Mesh:
    """A quad in the scene.

    ``id`` increases with creation and breaks render-order ties, so equal
    render orders always draw in creation order.
    """

    def __init__(
        self,
        name: str,
        transform: Transform | None = None,
        material: Material | None = None,
        *,
        metadata: MeshMetadata | None = None,
        render_order: int = 0,
        layers: Layers | None = None,
    ) -> None:
        self.id = next(_mesh_ids)
        self.name = name
        self.transform = transform or Transform()
        self.material = material or Material()
        self.metadata = metadata
        self.render_order = render_order
        self.layers = layers or Layers()
        self.visible = True

    def is_drawable(self) -> bool:
        return self.visible and self.material.visible and self.material.opacity > 0.0

    def __repr__(self) -> str:
        return (
            f"Mesh({self.name!r}, order={self.render_order}, "
            f"visible={self.visible}, metadata={self.metadata})"
        )


class Scene:
    """An unordered collection of meshes; the renderer sorts at draw time."""

    def __init__(self, name: str = "scene") -> None:
        self.name = name
        self._meshes: dict[int, Mesh] = {}

    def add(self, mesh: Mesh) -> Mesh:
        self._meshes[mesh.id] = mesh
        return mesh

    def remove(self, mesh: Mesh) -> None:
        self._meshes.pop(mesh.id, None)

    def contains(self, mesh: Mesh) -> bool:
        return mesh.id in self._meshes

    def clear(self) -> None:
        self._meshes.clear()

    def meshes(self) -> list[Mesh]:
        return list(self._meshes.values())

    def __iter__(self) -> Iterator[Mesh]:
        return iter(list(self._meshes.values()))

    def __len__(self) -> int:
        return len(self._meshes)


# =============================================================================
# CAMERAS
# =============================================================================


class Camera(ABC):
    """Projects world coordinates to normalized device coordinates (Y down).

    ``frustum_scale`` widens the visible extent per axis without touching the
    camera's own parameters; the shadow capture guard band uses it.
    """

    def __init__(
        self,
        center_x: float = 0.0,
        center_y: float = 0.0,
        viewport: tuple[int, int] = config.DEFAULT_DRAWING_BUFFER_SIZE,
    ) -> None:
        self.center_x = center_x
        self.center_y = center_y
        self.viewport = (max(1, int(viewport[0])), max(1, int(viewport[1])))
        self.layers = Layers(config.DEFAULT_LAYER, config.ROOF_LAYER)
        self.frustum_scale: tuple[float, float] = (1.0, 1.0)

    @abstractmethod
    def base_pixels_per_unit(self) -> float:
        """Viewport pixels per world unit before ``frustum_scale``."""

    @property
    @abstractmethod
    def zoom(self) -> float:
        """Effective zoom (1.0 shows one world unit per viewport pixel)."""

    def set_viewport(self, width: int, height: int) -> None:
        self.viewport = (max(1, int(width)), max(1, int(height)))

    def world_to_ndc(
        self, wx: np.ndarray, wy: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        ppu = self.base_pixels_per_unit()
        sx, sy = self.frustum_scale
        half_w, half_h = self.viewport[0] / 2.0, self.viewport[1] / 2.0
        nx = (np.asarray(wx) - self.center_x) * ppu / (half_w * sx)
        ny = (np.asarray(wy) - self.center_y) * ppu / (half_h * sy)
        return nx, ny

    def ndc_to_world(
        self, nx: np.ndarray, ny: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        ppu = self.base_pixels_per_unit()
        sx, sy = self.frustum_scale
        half_w, half_h = self.viewport[0] / 2.0, self.viewport[1] / 2.0
        wx = np.asarray(nx) * half_w * sx / ppu + self.center_x
        wy = np.asarray(ny) * half_h * sy / ppu + self.center_y
        return wx, wy

    def screen_uv_to_world(
        self, su: np.ndarray, sv: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """World position seen at normalized target coordinates (0..1, top-left)."""
        return self.ndc_to_world(np.asarray(su) * 2.0 - 1.0, np.asarray(sv) * 2.0 - 1.0)


class OrthographicCamera(Camera):
    """Top-down camera: ``zoom`` viewport pixels per world unit."""

    def __init__(self, zoom: float = 1.0, **kwargs) -> None:
        super().__init__(**kwargs)
        self._zoom = float(zoom)

    @property
    def zoom(self) -> float:
        return self._zoom

    @zoom.setter
    def zoom(self, value: float) -> None:
        if value <= 0:
            raise ValueError(f"Camera zoom must be positive, got {value}")
        self._zoom = float(value)

    def base_pixels_per_unit(self) -> float:
        return self._zoom


class PerspectiveCamera(Camera):
    """Camera looking straight down at the map plane from ``distance``.

    Widening it multiplies tan(fov / 2), which for a flat map is the same as
    dividing an orthographic zoom.
    """

    def __init__(
        self,
        fov_deg: float = 45.0,
        distance: float = 1000.0,
        near: float = 1.0,
        far: float = 5000.0,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.fov_deg = fov_deg
        self.distance = distance
        self.near = near
        self.far = far

    @property
    def tan_half_fov(self) -> float:
        return math.tan(math.radians(self.fov_deg) / 2.0)

    def base_pixels_per_unit(self) -> float:
        return self.viewport[1] / (2.0 * self.distance * self.tan_half_fov)

    @property
    def zoom(self) -> float:
        return self.base_pixels_per_unit()
