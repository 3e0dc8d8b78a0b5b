from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, NewType

# =============================================================================
# SPATIAL TYPES
# =============================================================================

# World coordinates are scene pixels at zoom 1 (Y down).
type WorldCoord = float
type WorldPos = tuple[WorldCoord, WorldCoord]

# Pixel coordinates on a render target
type PixelCoord = int | float
type PixelPos = tuple[PixelCoord, PixelCoord]
type PixelSize = tuple[int, int]  # Example: (1280, 720)

# Normalized texture coordinates, (0, 0) top-left
type UV = tuple[float, float]

# Continuous 2-vector, usually unit length
type Heading = tuple[float, float]

# =============================================================================
# TIME-RELATED TYPES
# =============================================================================

# Real time elapsed between two rendered frames, in seconds.
DeltaTime = NewType("DeltaTime", float)

# Hour of the in-world day in [0, 24).
TimeOfDay = NewType("TimeOfDay", float)


@dataclass(frozen=True)
class TimeInfo:
    """Per-frame timing handed to every effect update.

    Attributes:
        elapsed: Seconds since the clock started. Hosts may feed arbitrary values;
            consumers must tolerate it going backwards.
        delta: Seconds since the previous frame.
        frame: Monotonic frame counter.
    """

    elapsed: float
    delta: DeltaTime = DeltaTime(0.0)
    frame: int = 0


# =============================================================================
# RENDERING-RELATED TYPES
# =============================================================================

# Opacity from 0.0 (transparent) to 1.0 (opaque).
Opacity = NewType("Opacity", float)

# Float colors in 0.0-1.0 space.
type ColorRGBf = tuple[float, float, float]
type ColorRGBAf = tuple[float, float, float, float]

# Integer draw position; lower draws first.
RenderOrder = NewType("RenderOrder", int)

# =============================================================================
# SCENE-RELATED TYPES
# =============================================================================

type TileId = str
type MaskId = str
type FloorIndex = int
type TileKind = Literal["roof", "fluid-carrier", "regular"]
type MaskChannel = Literal["auto", "red", "alpha", "luma"]
