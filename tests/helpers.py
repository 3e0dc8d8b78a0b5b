"""Shared builders for compositor tests."""

from __future__ import annotations

from concurrent.futures import Executor, Future

import numpy as np

from tilefx.coordinator import CoordinatorDependencies, EffectCoordinator
from tilefx.effects.base import PostProcessEffect
from tilefx.events import EventBus
from tilefx.masks.raster import MaskRaster
from tilefx.providers import (
    AssetBundle,
    FloorData,
    MaskAsset,
    SceneData,
    SceneDimensions,
    SceneRect,
    StaticFloorProvider,
    StaticWeather,
    TileRecord,
    WeatherState,
)
from tilefx.render.rasterizer import FullscreenInputs, RasterRenderer
from tilefx.render.scene import OrthographicCamera
from tilefx.render.textures import Texture, TextureLoader
from tilefx.types import TileKind

SIZE = 32


def solid_pixels(
    width: int, height: int, rgba: tuple[int, int, int, int] = (255, 255, 255, 255)
) -> np.ndarray:
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[...] = rgba
    return pixels


def half_plane_raster(size: int = 64) -> MaskRaster:
    """Rows ``0 .. size/2 - 1`` opaque white, the rest fully transparent."""
    pixels = np.zeros((size, size, 4), dtype=np.uint8)
    pixels[: size // 2] = 255
    return MaskRaster(pixels)


def solid_texture(
    rgba: tuple[int, int, int, int], width: int = SIZE, height: int = SIZE
) -> Texture:
    return Texture(solid_pixels(width, height, rgba))


def tile(
    tile_id: str,
    *,
    floor: int = 0,
    sort_key: int = 0,
    kind: TileKind = "regular",
    rect: tuple[float, float, float, float] = (0.0, 0.0, SIZE, SIZE),
    **kwargs,
) -> TileRecord:
    x, y, width, height = rect
    return TileRecord(
        tile_id, x, y, width, height,
        floor_index=floor, sort_key=sort_key, kind=kind, **kwargs,
    )


def scene_of(*tiles: TileRecord) -> SceneData:
    """Group tile records into floors by their ``floor_index``."""
    floors: dict[int, FloorData] = {}
    for record in tiles:
        floors.setdefault(record.floor_index, FloorData(record.floor_index)).tiles.append(
            record
        )
    return SceneData([floors[index] for index in sorted(floors)])


def make_camera(size: int = SIZE) -> OrthographicCamera:
    """Camera showing world ``(0, 0) .. (size, size)`` one unit per pixel."""
    return OrthographicCamera(
        zoom=1.0, center_x=size / 2, center_y=size / 2, viewport=(size, size)
    )


def make_dimensions(size: int = SIZE) -> SceneDimensions:
    return SceneDimensions(size, size, SceneRect(0, 0, size, size))


class ImmediateExecutor(Executor):
    """Executor that runs submissions synchronously."""

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class PassthroughEffect(PostProcessEffect):
    """Post effect that copies its input and records how it was routed."""

    effect_type = "passthrough"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.routes: list[dict] = []
        self.updates = 0

    def update(self, time_info) -> None:
        self.updates += 1

    def render(self, renderer, scene, camera) -> None:
        self.routes.append(
            {
                "input": self.input_texture,
                "read": self.read_buffer,
                "write": self.write_buffer,
                "to_screen": self.render_to_screen,
            }
        )
        super().render(renderer, scene, camera)

    def shade(self, f: FullscreenInputs) -> np.ndarray:
        return self.sample_input(f.u, f.v)


class CrashingEffect(PassthroughEffect):
    """Post effect raising in the configured lifecycle phase."""

    effect_type = "crashing"

    def __init__(self, *args, crash_in: str = "update", **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.crash_in = crash_in

    def update(self, time_info) -> None:
        super().update(time_info)
        if self.crash_in == "update":
            raise RuntimeError("boom in update")

    def shade(self, f: FullscreenInputs) -> np.ndarray:
        if self.crash_in == "render":
            raise RuntimeError("boom in render")
        return super().shade(f)


def make_coordinator(
    scene_data: SceneData | None = None,
    masks: list[MaskAsset] | None = None,
    *,
    floor: int | None = 0,
    size: int = SIZE,
    weather: StaticWeather | None = None,
    events: EventBus | None = None,
    **kwargs,
) -> EffectCoordinator:
    deps = CoordinatorDependencies(
        renderer=RasterRenderer(size, size),
        camera=make_camera(size),
        asset_bundle=AssetBundle(masks or []),
        scene_data=scene_data or SceneData(),
        floor_provider=StaticFloorProvider(floor),
        weather=weather or StaticWeather(WeatherState(wind_speed=0.5)),
        dimensions=make_dimensions(size),
        zoom=lambda: 1.0,
        events=events or EventBus(),
        loader=kwargs.pop("loader", TextureLoader(fetch=lambda src: solid_pixels(4, 4))),
        **kwargs,
    )
    return EffectCoordinator(deps)
