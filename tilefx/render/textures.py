"""Textures and the cancellable texture loader.

Loads are the only suspension points of the compositor. ``TextureLoader.load``
returns a ``LoadTask`` immediately; decoding happens either inside ``pump()``
or on an optional executor, and completion callbacks only ever run inside
``pump()``, which the coordinator calls on the render thread. A task whose
owner was disposed is cancelled and its result is discarded on completion.
"""

from __future__ import annotations

import logging
import uuid as uuid_module
from collections.abc import Callable
from concurrent.futures import Executor, Future
from enum import Enum
from pathlib import Path

import numpy as np
from PIL import Image

from tilefx import config
from tilefx.util.caching import CacheStats, ResourceCache

logger = logging.getLogger(__name__)


class Texture:
    """RGBA pixel data sampled by materials.

    Byte data (uint8) is the normal case; derived data fields may be stored
    as float32 in [0, 1]. ``version`` bumps whenever the pixels change.
    """

    def __init__(self, data: np.ndarray, *, name: str = "") -> None:
        self.uuid = uuid_module.uuid4().hex
        self.name = name
        self.version = 0
        self._data = self._validate(data)
        self._float_cache: tuple[int, np.ndarray] | None = None

    @staticmethod
    def _validate(data: np.ndarray) -> np.ndarray:
        array = np.asarray(data)
        if array.ndim != 3 or array.shape[2] != 4:
            raise ValueError(f"Texture data must be (H, W, 4), got {array.shape}")
        return array

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def width(self) -> int:
        return int(self._data.shape[1])

    @property
    def height(self) -> int:
        return int(self._data.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def update(self, data: np.ndarray) -> None:
        self._data = self._validate(data)
        self.touch()

    def touch(self) -> None:
        """Mark the pixels as changed after an in-place write."""
        self.version += 1
        self._float_cache = None

    def as_float(self) -> np.ndarray:
        """Pixels as float32 in [0, 1], cached until the next change."""
        if self._float_cache is not None and self._float_cache[0] == self.version:
            return self._float_cache[1]
        if self._data.dtype == np.uint8:
            pixels = self._data.astype(np.float32) / 255.0
        else:
            pixels = self._data.astype(np.float32)
        self._float_cache = (self.version, pixels)
        return pixels

    def __repr__(self) -> str:
        return f"Texture({self.name!r}, {self.width}x{self.height})"


class LoadState(Enum):
    PENDING = "pending"
    LOADED = "loaded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LoadTask:
    """Handle of one asynchronous texture load."""

    def __init__(self, src: str) -> None:
        self.src = src
        self.state = LoadState.PENDING
        self.texture: Texture | None = None
        self.error: BaseException | None = None
        self._callbacks: list[Callable[[Texture], None]] = []

    @property
    def done(self) -> bool:
        return self.state is not LoadState.PENDING

    @property
    def cancelled(self) -> bool:
        return self.state is LoadState.CANCELLED

    def cancel(self) -> None:
        """Drop the task; a result arriving later is discarded."""
        if self.state is LoadState.PENDING:
            self.state = LoadState.CANCELLED
            self._callbacks.clear()

    def add_done_callback(self, callback: Callable[[Texture], None]) -> None:
        if self.state is LoadState.LOADED and self.texture is not None:
            callback(self.texture)
        elif self.state is LoadState.PENDING:
            self._callbacks.append(callback)

    def _resolve(self, texture: Texture) -> None:
        if self.state is not LoadState.PENDING:
            return
        self.state = LoadState.LOADED
        self.texture = texture
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(texture)
            except Exception:
                logger.exception(f"Texture load callback for '{self.src}' failed")

    def _fail(self, error: BaseException) -> None:
        if self.state is not LoadState.PENDING:
            return
        self.state = LoadState.FAILED
        self.error = error
        self._callbacks.clear()

    def __repr__(self) -> str:
        return f"LoadTask({self.src!r}, {self.state.value})"


type PixelFetcher = Callable[[str], np.ndarray]


class TextureLoader:
    """Resolves texture sources to ``Texture`` objects, one pump at a time.

    Args:
        fetch: Returns RGBA pixels for a source string. Defaults to reading an
            image file with Pillow, relative to ``base_path`` when given.
        executor: Optional executor decoding in the background. Results are
            still installed only by ``pump()``.
        base_path: Directory relative sources are resolved against.
        cache_size: Decoded textures kept for reuse, least recently used first out.
    """

    def __init__(
        self,
        fetch: PixelFetcher | None = None,
        executor: Executor | None = None,
        base_path: Path | None = None,
        cache_size: int = config.LOADER_CACHE_MAX_ENTRIES,
    ) -> None:
        self.base_path = base_path
        self._fetch = fetch or self._read_image
        self._executor = executor
        self._cache: ResourceCache[str, Texture] = ResourceCache(
            "textures", max_size=cache_size
        )
        self._pending: list[tuple[LoadTask, Future | None]] = []

    def _read_image(self, src: str) -> np.ndarray:
        path = Path(src)
        if not path.is_absolute() and self.base_path is not None:
            path = self.base_path / path
        with Image.open(path) as image:
            return np.asarray(image.convert("RGBA"))

    @property
    def pending_count(self) -> int:
        return sum(1 for task, _ in self._pending if not task.done)

    def cache_stats(self) -> CacheStats:
        return self._cache.stats

    def load(
        self, src: str, on_loaded: Callable[[Texture], None] | None = None
    ) -> LoadTask:
        """Queue a load of ``src``. Cached textures resolve at the next pump."""
        task = LoadTask(src)
        if on_loaded is not None:
            task.add_done_callback(on_loaded)
        future = None
        if self._executor is not None and src not in self._cache:
            future = self._executor.submit(self._fetch, src)
        self._pending.append((task, future))
        return task

    def pump(self, max_completions: int = config.LOADER_MAX_COMPLETIONS_PER_PUMP) -> int:
        """Install finished loads and run their callbacks on the calling thread.

        Returns:
            The number of tasks that completed during this pump.
        """
        completed = 0
        still_pending: list[tuple[LoadTask, Future | None]] = []
        for task, future in self._pending:
            if task.cancelled:
                if future is not None:
                    future.cancel()
                continue
            if completed >= max_completions or (
                future is not None and not future.done()
            ):
                still_pending.append((task, future))
                continue

            try:
                texture = self._cache.get(task.src)
                if texture is None:
                    pixels = future.result() if future is not None else self._fetch(task.src)
                    texture = Texture(np.asarray(pixels), name=task.src)
                    self._cache.store(task.src, texture)
            except Exception as e:
                logger.warning(f"Failed to load texture '{task.src}': {e}")
                task._fail(e)
            else:
                task._resolve(texture)
            completed += 1

        self._pending = still_pending
        return completed

    def dispose(self) -> None:
        """Cancel everything in flight and forget cached textures."""
        for task, future in self._pending:
            task.cancel()
            if future is not None:
                future.cancel()
        self._pending.clear()
        self._cache.clear()
