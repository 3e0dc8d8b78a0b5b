"""Interfaces and records the compositor consumes from its host.

The host application owns the scene document, the weather simulation, the
camera controller and the asset loader. The compositor only sees them through
the narrow protocols and plain records defined here.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from tilefx.types import FloorIndex, Heading, MaskId, TileId, TileKind, TimeOfDay

if TYPE_CHECKING:
    from tilefx.masks.raster import MaskRaster
    from tilefx.render.textures import Texture

# =============================================================================
# ASSETS
# =============================================================================


@dataclass
class MaskAsset:
    """An authored mask shipped with the scene.

    Attributes:
        id: Unique asset id.
        type: What the mask selects ("water", "outdoors", "fluid", ...). Derived
            fields are published in the mask registry under this name.
        raster: The pixels.
        floor: Floor the mask belongs to, or None when it applies to every floor.
    """

    id: str
    type: MaskId
    raster: MaskRaster
    floor: FloorIndex | None = None


@dataclass
class AssetBundle:
    masks: list[MaskAsset] = field(default_factory=list)

    def by_id(self, asset_id: str) -> MaskAsset | None:
        return next((m for m in self.masks if m.id == asset_id), None)

    def by_type(self, mask_type: MaskId) -> list[MaskAsset]:
        return [m for m in self.masks if m.type == mask_type]


# =============================================================================
# SCENE DATA
# =============================================================================


@dataclass
class TileRecord:
    """One tile sprite of the map; ``x, y`` is the top-left corner in scene pixels."""

    id: TileId
    x: float
    y: float
    width: float
    height: float
    rotation: float = 0.0  # Degrees
    floor_index: FloorIndex = 0
    sort_key: int = 0
    kind: TileKind = "regular"
    texture_src: str | None = None
    opacity: float = 1.0
    projects_shadow: bool = False


@dataclass
class FloorData:
    index: FloorIndex
    tiles: list[TileRecord] = field(default_factory=list)


@dataclass
class SceneData:
    """Ordered floors, lowest first."""

    floors: list[FloorData] = field(default_factory=list)

    def tile_count(self) -> int:
        return sum(len(f.tiles) for f in self.floors)

    def projecting_tile_ids(self) -> set[TileId]:
        return {t.id for f in self.floors for t in f.tiles if t.projects_shadow}


@dataclass(frozen=True)
class SceneRect:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class GridInfo:
    size: float = 100.0
    distance: float = 5.0


@dataclass(frozen=True)
class SceneDimensions:
    """Full canvas size plus the playable scene rectangle inside it."""

    width: float
    height: float
    scene_rect: SceneRect
    grid: GridInfo = GridInfo()

    def world_to_scene_uv(self, wx, wy):
        """World position -> UV inside ``scene_rect`` (0..1, top-left origin)."""
        rect = self.scene_rect
        return (wx - rect.x) / max(rect.width, 1e-9), (wy - rect.y) / max(
            rect.height, 1e-9
        )


# =============================================================================
# LIVE PROVIDERS
# =============================================================================


@dataclass(frozen=True)
class ActiveFloor:
    index: FloorIndex


@runtime_checkable
class ActiveFloorProvider(Protocol):
    def get_active_floor(self) -> ActiveFloor | None: ...


@dataclass(frozen=True)
class WeatherState:
    wind_direction: Heading = (1.0, 0.0)
    wind_speed: float = 0.0
    time_of_day: TimeOfDay = TimeOfDay(12.0)


@dataclass(frozen=True)
class WeatherTarget:
    """Where the weather is heading; only the direction is used."""

    wind_direction: Heading = (1.0, 0.0)


@runtime_checkable
class WeatherSource(Protocol):
    """Host weather simulation. ``target_state`` may be absent or None."""

    def get_current_state(self) -> WeatherState: ...


@runtime_checkable
class DepthPassProvider(Protocol):
    """Optional per-pixel device depth of the current view."""

    def is_enabled(self) -> bool: ...

    def get_depth_texture(self) -> Texture | None: ...

    def get_depth_near(self) -> float: ...

    def get_depth_far(self) -> float: ...


type ZoomProvider = Callable[[], float]


# =============================================================================
# SIMPLE IMPLEMENTATIONS
# =============================================================================


class StaticFloorProvider:
    """Active floor provider holding a settable index."""

    def __init__(self, index: FloorIndex | None = 0) -> None:
        self.index = index

    def get_active_floor(self) -> ActiveFloor | None:
        return None if self.index is None else ActiveFloor(self.index)


class StaticWeather:
    """Weather source returning a settable state."""

    def __init__(
        self, state: WeatherState | None = None, target_state: WeatherTarget | None = None
    ) -> None:
        self.state = state or WeatherState()
        self.target_state = target_state

    def get_current_state(self) -> WeatherState:
        return self.state


def normalize_heading(heading: Heading, fallback: Heading = (1.0, 0.0)) -> Heading:
    """Unit-length copy of ``heading``; ``fallback`` for zero or invalid vectors."""
    x, y = float(heading[0]), float(heading[1])
    length = math.hypot(x, y)
    if not math.isfinite(length) or length < 1e-9:
        return fallback
    return x / length, y / length
