"""Offscreen render targets and the pool that owns them.

Every target is RGBA8, single-buffered, sampled clamp-to-edge with linear
filtering and no mipmaps. The pool creates targets lazily at the current
drawing-buffer size and resizes all live targets together.
"""

from __future__ import annotations

import logging

import numpy as np

from tilefx import config
from tilefx.errors import ResourceExhaustedError

from .textures import Texture

logger = logging.getLogger(__name__)


def _allocate(width: int, height: int) -> np.ndarray:
    if width > config.MAX_RENDER_TARGET_DIM or height > config.MAX_RENDER_TARGET_DIM:
        raise ResourceExhaustedError(
            f"Render target {width}x{height} exceeds the "
            f"{config.MAX_RENDER_TARGET_DIM}px limit"
        )
    try:
        return np.zeros((height, width, 4), dtype=np.uint8)
    except MemoryError as e:
        raise ResourceExhaustedError(
            f"Out of memory allocating a {width}x{height} render target"
        ) from e


class RenderTarget:
    """An RGBA8 surface that can be drawn into and sampled as a texture."""

    def __init__(self, name: str, width: int, height: int) -> None:
        self.name = name
        width, height = max(1, int(width)), max(1, int(height))
        self.texture = Texture(_allocate(width, height), name=name)
        self.disposed = False
        self.writes = 0  # Incremented by the renderer on every draw into it

    @property
    def width(self) -> int:
        return self.texture.width

    @property
    def height(self) -> int:
        return self.texture.height

    @property
    def size(self) -> tuple[int, int]:
        return self.texture.size

    @property
    def pixels(self) -> np.ndarray:
        return self.texture.data

    def resize(self, width: int, height: int) -> None:
        """Reallocate at ``(max(1, width), max(1, height))``; contents are cleared.

        Raises:
            ResourceExhaustedError: The allocation failed; the previous size is kept.
        """
        width, height = max(1, int(width)), max(1, int(height))
        if (width, height) == self.size:
            return
        self.texture.update(_allocate(width, height))

    def clear(self, color: tuple[float, float, float, float] = (0, 0, 0, 0)) -> None:
        rgba = np.round(np.clip(np.asarray(color, dtype=np.float32), 0, 1) * 255)
        self.texture.data[...] = rgba.astype(np.uint8)
        self.texture.touch()

    def dispose(self) -> None:
        self.disposed = True

    def __repr__(self) -> str:
        return f"RenderTarget({self.name!r}, {self.width}x{self.height})"


class RenderTargetPool:
    """Lazy, name-keyed pool of render targets sized to the drawing buffer.

    Ownership is explicit: a target lives until ``dispose(name)`` or
    ``dispose_all()``. Targets acquired on behalf of an effect remember its
    name so a failed resize can be charged to that effect.
    """

    def __init__(self, width: int, height: int) -> None:
        self.width = max(1, int(width))
        self.height = max(1, int(height))
        self._targets: dict[str, RenderTarget] = {}
        self._owners: dict[str, str] = {}

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def acquire(self, name: str, owner: str | None = None) -> RenderTarget:
        """Return the target called ``name``, creating it at the current size."""
        target = self._targets.get(name)
        if target is None:
            target = RenderTarget(name, self.width, self.height)
            self._targets[name] = target
            logger.debug(f"Allocated render target {target!r}")
        elif target.size != self.size:
            target.resize(self.width, self.height)
        if owner is not None:
            self._owners[name] = owner
        return target

    def get(self, name: str) -> RenderTarget | None:
        return self._targets.get(name)

    def owner_of(self, name: str) -> str | None:
        return self._owners.get(name)

    def names(self) -> list[str]:
        return list(self._targets)

    def sizes(self) -> dict[str, tuple[int, int]]:
        return {name: target.size for name, target in self._targets.items()}

    def resize(self, width: int, height: int) -> None:
        """Resize every live target to ``(max(1, width), max(1, height))``.

        When any target cannot be allocated at the new size, the targets that
        already grew are put back to the previous pool size so the pool stays
        uniform. A target whose rollback fails too is left at the new size and
        reported as stranded.

        Raises:
            ResourceExhaustedError: After all targets were processed, naming the
                ones that could not be resized and the stranded ones.
        """
        width, height = max(1, int(width)), max(1, int(height))
        previous = self.size
        failed: list[str] = []
        grown: list[RenderTarget] = []
        for name, target in self._targets.items():
            before = target.size
            try:
                target.resize(width, height)
            except ResourceExhaustedError:
                logger.warning(
                    f"Render target '{name}' cannot be resized to {width}x{height}"
                )
                failed.append(name)
                continue
            if target.size != before:
                grown.append(target)

        if not failed:
            self.width, self.height = width, height
            return

        stranded: list[str] = []
        try:
            for target in grown:
                try:
                    target.resize(*previous)
                except ResourceExhaustedError:
                    logger.error(
                        f"Render target '{target.name}' could not return to "
                        f"{previous[0]}x{previous[1]}; left at {target.width}x{target.height}"
                    )
                    stranded.append(target.name)
        finally:
            raise ResourceExhaustedError(
                f"Render targets {failed} kept their previous size "
                f"{previous[0]}x{previous[1]}"
                + (f"; {stranded} are stranded at {width}x{height}" if stranded else ""),
                names=tuple(failed),
                stranded=tuple(stranded),
            )

    def dispose(self, name: str) -> None:
        self._owners.pop(name, None)
        target = self._targets.pop(name, None)
        if target is not None:
            target.dispose()

    def dispose_all(self) -> None:
        for target in self._targets.values():
            target.dispose()
        self._targets.clear()
        self._owners.clear()

    def __len__(self) -> int:
        return len(self._targets)
