"""Authored mask rasters.

A ``MaskRaster`` wraps an RGBA8 pixel array with a stable identity and a
version counter, which together key every cache derived from it.
"""

from __future__ import annotations

import uuid as uuid_module
from pathlib import Path

import numpy as np
from PIL import Image


def _as_rgba8(pixels: np.ndarray) -> np.ndarray:
    """Normalize greyscale, RGB or RGBA arrays to a contiguous (H, W, 4) uint8."""
    array = np.asarray(pixels)
    if array.dtype != np.uint8:
        if np.issubdtype(array.dtype, np.floating):
            array = np.round(np.clip(array, 0.0, 1.0) * 255.0)
        array = np.clip(array, 0, 255).astype(np.uint8)

    if array.ndim == 2:
        alpha = np.full(array.shape, 255, dtype=np.uint8)
        array = np.stack([array, array, array, alpha], axis=-1)
    elif array.ndim == 3 and array.shape[2] == 3:
        alpha = np.full(array.shape[:2], 255, dtype=np.uint8)
        array = np.concatenate([array, alpha[..., None]], axis=-1)
    elif array.ndim != 3 or array.shape[2] != 4:
        raise ValueError(f"Unsupported mask pixel shape {array.shape}")
    return np.ascontiguousarray(array)


class MaskRaster:
    """An RGBA image plus the identity used to cache anything derived from it.

    Attributes:
        uuid: Stable identity, unique per raster unless supplied by the host.
        version: Incremented each time the pixels are replaced.
        source: Where the pixels came from, for log messages.
    """

    def __init__(
        self,
        pixels: np.ndarray | None,
        *,
        uuid: str | None = None,
        source: str = "",
    ) -> None:
        self.uuid = uuid or uuid_module.uuid4().hex
        self.version = 0
        self.source = source
        self._pixels: np.ndarray | None = None
        if pixels is not None and np.asarray(pixels).size > 0:
            self._pixels = _as_rgba8(pixels)

    @classmethod
    def from_image(cls, image: Image.Image, **kwargs) -> MaskRaster:
        """Create a raster from a Pillow image in any mode."""
        return cls(np.asarray(image.convert("RGBA")), **kwargs)

    @classmethod
    def from_file(cls, path: Path | str, **kwargs) -> MaskRaster:
        """Load a raster from an image file on disk."""
        path = Path(path)
        kwargs.setdefault("source", str(path))
        with Image.open(path) as image:
            return cls.from_image(image, **kwargs)

    @property
    def has_image_data(self) -> bool:
        return self._pixels is not None

    @property
    def pixels(self) -> np.ndarray | None:
        """The RGBA8 pixels, or None when the raster is empty."""
        return self._pixels

    @property
    def width(self) -> int:
        return 0 if self._pixels is None else int(self._pixels.shape[1])

    @property
    def height(self) -> int:
        return 0 if self._pixels is None else int(self._pixels.shape[0])

    def update(self, pixels: np.ndarray | None) -> None:
        """Replace the pixels and bump the version so caches rebuild."""
        if pixels is not None and np.asarray(pixels).size > 0:
            self._pixels = _as_rgba8(pixels)
        else:
            self._pixels = None
        self.version += 1

    def to_image(self) -> Image.Image:
        if self._pixels is None:
            raise ValueError(f"Mask raster {self.uuid} has no pixels")
        return Image.fromarray(self._pixels, "RGBA")

    def __repr__(self) -> str:
        return (
            f"MaskRaster(uuid={self.uuid!r}, version={self.version}, "
            f"size={self.width}x{self.height})"
        )
