"""Surface-model builder: authored mask raster -> derived surface field.

The derived field packs, per pixel, ``(sdf01, exposure01, nx01, ny01)``:

- ``sdf01``: signed distance normalized so 0.5 is the boundary, values below
  0.5 are inside the mask and values above are outside.
- ``exposure01``: inside distance to the shore over ``shore_width_px``, so 0
  at the shoreline rising to 1 at ``shore_width_px`` inside; always 0 outside.
- ``nx01, ny01``: unit gradient of the signed distance, encoded ``0.5 + 0.5 n``.

Fields are cached by raster identity, raster version and every option value,
so asking again for an unchanged mask returns the cached object.
"""

from __future__ import annotations

import logging
from dataclasses import astuple, dataclass
from time import perf_counter

import numpy as np
from PIL import Image

from tilefx import config
from tilefx.errors import InvalidConfigError, NoImageDataError
from tilefx.types import MaskChannel
from tilefx.util.caching import CacheStats, ResourceCache

from .distance import gaussian_blur, signed_distance, unit_gradient
from .raster import MaskRaster

logger = logging.getLogger(__name__)

_CHANNELS = ("auto", "red", "alpha", "luma")


@dataclass(frozen=True)
class SurfaceModelOptions:
    """Options controlling how a raster becomes a surface field."""

    resolution: int = config.SURFACE_DEFAULT_RESOLUTION
    threshold: float = config.SURFACE_DEFAULT_THRESHOLD
    channel: MaskChannel = "auto"
    invert: bool = False
    flip_y: bool = False
    blur_radius: float = 0.0
    blur_passes: int = 0
    expand_px: float = 0.0
    sdf_range_px: float = config.SURFACE_DEFAULT_SDF_RANGE_PX
    shore_width_px: float = config.SURFACE_DEFAULT_SHORE_WIDTH_PX

    def __post_init__(self) -> None:
        if self.channel not in _CHANNELS:
            raise InvalidConfigError(
                f"Unknown mask channel {self.channel!r}; expected one of {_CHANNELS}"
            )

    def raw_key(self) -> tuple:
        """The subset of options that affect the raw greyscale mask."""
        return (self.resolution, self.channel, self.invert, self.flip_y)


@dataclass(frozen=True, eq=False)
class SurfaceField:
    """A derived surface field plus the intermediate masks it was built from.

    Arrays are read-only once built; consumers must copy before mutating.

    Attributes:
        data: float32 (H, W, 4) of ``(sdf01, exposure01, nx01, ny01)``.
        raw: uint8 (H, W) greyscale mask after channel selection.
        binary: bool (H, W) thresholded mask.
        channel: The channel actually used (auto resolved).
        key: Cache key the field was built under.
    """

    data: np.ndarray
    raw: np.ndarray
    binary: np.ndarray
    channel: str
    key: tuple

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def sdf01(self) -> np.ndarray:
        return self.data[..., 0]

    @property
    def exposure01(self) -> np.ndarray:
        return self.data[..., 1]

    def decoded_normal(self) -> tuple[np.ndarray, np.ndarray]:
        """Normal components decoded back to [-1, 1]."""
        return self.data[..., 2] * 2.0 - 1.0, self.data[..., 3] * 2.0 - 1.0

    def to_rgba8(self) -> np.ndarray:
        """Byte encoding for texture upload: ``round(x * 255)`` per channel."""
        return np.round(np.clip(self.data, 0.0, 1.0) * 255.0).astype(np.uint8)

    def raw_rgba8(self) -> np.ndarray:
        """The raw mask as grey RGBA with opaque alpha."""
        alpha = np.full(self.raw.shape, 255, dtype=np.uint8)
        return np.stack([self.raw, self.raw, self.raw, alpha], axis=-1)


def fit_size(width: int, height: int, resolution: int) -> tuple[int, int]:
    """Scale (width, height) so the long side equals ``resolution``.

    Both sides are clamped to ``SURFACE_MIN_RESOLUTION``.
    """
    minimum = config.SURFACE_MIN_RESOLUTION
    resolution = max(minimum, int(resolution))
    if width >= height:
        out_w = resolution
        out_h = round(resolution * height / width)
    else:
        out_h = resolution
        out_w = round(resolution * width / height)
    return max(minimum, out_w), max(minimum, out_h)


def resolve_channel(rgba: np.ndarray, channel: str) -> str:
    """Pick the channel for ``auto``: alpha only when it clearly varies more than red."""
    if channel != "auto":
        return channel
    stride = config.SURFACE_AUTO_CHANNEL_STRIDE
    sample = rgba[::stride, ::stride]
    red = sample[..., 0]
    alpha = sample[..., 3]
    red_range = int(red.max()) - int(red.min())
    alpha_range = int(alpha.max()) - int(alpha.min())
    if alpha_range > red_range + config.SURFACE_AUTO_CHANNEL_ALPHA_MARGIN:
        return "alpha"
    return "red"


def channel_values(rgba: np.ndarray, channel: str) -> np.ndarray:
    """Per-pixel scalar in [0, 1] for an already resolved channel."""
    if channel == "red":
        return rgba[..., 0].astype(np.float32) / 255.0
    if channel == "alpha":
        return rgba[..., 3].astype(np.float32) / 255.0
    weights = np.asarray(config.LUMA_WEIGHTS, dtype=np.float32)
    return (rgba[..., :3].astype(np.float32) @ weights) / 255.0


def resample(rgba: np.ndarray, size: tuple[int, int]) -> np.ndarray:
    """Bilinear resize of an RGBA8 array to ``size`` (width, height)."""
    height, width = rgba.shape[:2]
    if (width, height) == size:
        return rgba
    image = Image.fromarray(rgba, "RGBA")
    return np.asarray(image.resize(size, Image.Resampling.BILINEAR))


def encode_field(
    sdf: np.ndarray, sdf_range_px: float, shore_width_px: float
) -> np.ndarray:
    """Pack a signed distance field into ``(sdf01, exposure01, nx01, ny01)``."""
    sdf_range = max(float(sdf_range_px), 1e-6)
    shore = max(float(shore_width_px), 1e-3)

    sdf01 = np.clip(0.5 + sdf / (2.0 * sdf_range), 0.0, 1.0)
    exposure01 = np.clip(np.maximum(0.0, -sdf) / shore, 0.0, 1.0)
    nx, ny = unit_gradient(sdf)

    return np.stack(
        [sdf01, exposure01, 0.5 + 0.5 * nx, 0.5 + 0.5 * ny], axis=-1
    ).astype(np.float32)


def _freeze(*arrays: np.ndarray) -> None:
    for array in arrays:
        array.setflags(write=False)


class SurfaceModelBuilder:
    """Builds and caches surface fields and raw masks for mask rasters."""

    def __init__(self, max_entries: int = config.SURFACE_CACHE_MAX_ENTRIES) -> None:
        self.max_entries = max_entries
        self._fields: ResourceCache[tuple, SurfaceField] = ResourceCache(
            "surface_fields", max_size=max_entries
        )
        self._raw: ResourceCache[tuple, tuple[np.ndarray, str]] = ResourceCache(
            "raw_masks", max_size=max_entries
        )
        self.builds = 0

    @staticmethod
    def cache_key(raster: MaskRaster, options: SurfaceModelOptions) -> tuple:
        return (raster.uuid, raster.version, *astuple(options))

    def raw_mask(
        self, raster: MaskRaster, options: SurfaceModelOptions | None = None
    ) -> tuple[np.ndarray, str]:
        """Greyscale byte mask after resampling, channel selection, invert and flip.

        Returns:
            (uint8 (H, W) array, resolved channel name)

        Raises:
            NoImageDataError: If the raster has no pixels.
        """
        options = options or SurfaceModelOptions()
        pixels = raster.pixels
        if pixels is None:
            raise NoImageDataError(f"Mask raster {raster.uuid} has no image data")

        key = (raster.uuid, raster.version, *options.raw_key())
        cached = self._raw.get(key)
        if cached is not None:
            return cached

        size = fit_size(raster.width, raster.height, options.resolution)
        rgba = resample(pixels, size)
        channel = resolve_channel(rgba, options.channel)
        values = channel_values(rgba, channel)
        if options.invert:
            values = 1.0 - values
        if options.flip_y:
            values = values[::-1]

        raw = np.round(values * 255.0).astype(np.uint8)
        _freeze(raw)
        self._raw.store(key, (raw, channel))
        return raw, channel

    def build(
        self, raster: MaskRaster, options: SurfaceModelOptions | None = None
    ) -> SurfaceField:
        """Derive (or fetch from cache) the surface field for ``raster``.

        Raises:
            NoImageDataError: If the raster has no pixels.
        """
        options = options or SurfaceModelOptions()
        key = self.cache_key(raster, options)
        cached = self._fields.get(key)
        if cached is not None:
            return cached

        start = perf_counter()
        raw, channel = self.raw_mask(raster, options)

        values = raw.astype(np.float32) / 255.0
        if options.blur_radius > 0 and options.blur_passes > 0:
            values = gaussian_blur(values, options.blur_radius, options.blur_passes)

        binary = values >= options.threshold
        sdf = signed_distance(binary, options.expand_px)
        data = encode_field(sdf, options.sdf_range_px, options.shore_width_px)
        _freeze(data, binary)

        field = SurfaceField(
            data=data, raw=raw, binary=binary, channel=channel, key=key
        )
        self._fields.store(key, field)
        self.builds += 1

        elapsed_ms = (perf_counter() - start) * 1000
        logger.debug(
            f"Built surface field for {raster!r}: {field.width}x{field.height}, "
            f"channel={channel}, {elapsed_ms:.1f}ms"
        )
        return field

    def invalidate(self, raster_uuid: str) -> None:
        """Drop every cached entry derived from the raster with ``raster_uuid``."""
        for cache in (self._fields, self._raw):
            cache.discard_where(lambda key: key[0] == raster_uuid)

    def clear(self) -> None:
        self._fields.clear()
        self._raw.clear()

    def cache_stats(self) -> dict[str, CacheStats]:
        return {cache.name: cache.stats for cache in (self._fields, self._raw)}


def build_surface_field(
    raster: MaskRaster, options: SurfaceModelOptions | None = None
) -> SurfaceField:
    """Build a surface field without caching."""
    return SurfaceModelBuilder(max_entries=1).build(raster, options)

