"""Tests for textures and the pump-driven texture loader."""

from __future__ import annotations

import logging

import numpy as np
import pytest
from PIL import Image

from tests.helpers import ImmediateExecutor, solid_pixels
from tilefx.render.textures import LoadState, Texture, TextureLoader


def test_texture_rejects_non_rgba_data() -> None:
    with pytest.raises(ValueError, match=r"must be \(H, W, 4\)"):
        Texture(np.zeros((2, 2, 3), dtype=np.uint8))


def test_float_view_is_cached_until_touched() -> None:
    texture = Texture(solid_pixels(2, 2, (255, 0, 0, 255)))
    first = texture.as_float()
    assert texture.as_float() is first
    assert first[0, 0].tolist() == [1.0, 0.0, 0.0, 1.0]

    texture.data[0, 0] = (0, 0, 0, 0)
    texture.touch()

    assert texture.as_float()[0, 0].tolist() == [0.0, 0.0, 0.0, 0.0]


class TestTextureLoader:
    def test_callbacks_only_run_inside_pump(self) -> None:
        loader = TextureLoader(fetch=lambda src: solid_pixels(2, 2))
        loaded = []
        task = loader.load("a.png", loaded.append)
        assert loaded == []
        assert loader.pending_count == 1

        assert loader.pump() == 1

        assert loaded == [task.texture]
        assert task.state is LoadState.LOADED
        assert loader.pending_count == 0

    def test_repeated_sources_share_one_texture(self) -> None:
        fetched = []

        def fetch(src: str) -> np.ndarray:
            fetched.append(src)
            return solid_pixels(2, 2)

        loader = TextureLoader(fetch=fetch)
        first, second = loader.load("a.png"), loader.load("a.png")
        loader.pump()
        third = loader.load("a.png")
        loader.pump()

        assert first.texture is second.texture is third.texture
        assert fetched == ["a.png"]

    def test_cache_keeps_only_the_most_recent_sources(self) -> None:
        fetched = []

        def fetch(src: str) -> np.ndarray:
            fetched.append(src)
            return solid_pixels(2, 2)

        loader = TextureLoader(fetch=fetch, cache_size=2)
        for src in ("a.png", "b.png", "c.png", "c.png", "a.png"):
            loader.load(src)
            loader.pump()

        assert fetched == ["a.png", "b.png", "c.png", "a.png"]
        stats = loader.cache_stats()
        assert (stats.hits, stats.misses, stats.evictions) == (1, 4, 2)

    def test_cancelled_task_never_calls_back(self) -> None:
        loader = TextureLoader(fetch=lambda src: solid_pixels(2, 2))
        loaded = []
        task = loader.load("a.png", loaded.append)

        task.cancel()
        loader.pump()

        assert loaded == []
        assert task.cancelled
        assert task.texture is None

    def test_failed_fetch_is_reported(self, caplog: pytest.LogCaptureFixture) -> None:
        def fetch(src: str) -> np.ndarray:
            raise FileNotFoundError(src)

        loader = TextureLoader(fetch=fetch)
        loaded = []
        task = loader.load("missing.png", loaded.append)

        with caplog.at_level(logging.WARNING):
            loader.pump()

        assert task.state is LoadState.FAILED
        assert isinstance(task.error, FileNotFoundError)
        assert loaded == []
        assert "Failed to load texture 'missing.png'" in caplog.text

    def test_failing_callback_does_not_stop_others(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        loader = TextureLoader(fetch=lambda src: solid_pixels(2, 2))
        loaded = []

        def broken(texture: Texture) -> None:
            raise RuntimeError("install failed")

        task = loader.load("a.png", broken)
        task.add_done_callback(loaded.append)
        with caplog.at_level(logging.ERROR):
            loader.pump()

        assert loaded == [task.texture]
        assert "Texture load callback for 'a.png' failed" in caplog.text

    def test_late_callback_fires_immediately(self) -> None:
        loader = TextureLoader(fetch=lambda src: solid_pixels(2, 2))
        task = loader.load("a.png")
        loader.pump()
        loaded = []

        task.add_done_callback(loaded.append)

        assert loaded == [task.texture]

    def test_executor_results_install_on_pump(self) -> None:
        loader = TextureLoader(
            fetch=lambda src: solid_pixels(2, 2), executor=ImmediateExecutor()
        )
        loaded = []
        loader.load("a.png", loaded.append)
        assert loaded == []

        loader.pump()

        assert len(loaded) == 1

    def test_pump_limits_completions(self) -> None:
        loader = TextureLoader(fetch=lambda src: solid_pixels(2, 2))
        for name in ("a", "b", "c"):
            loader.load(name)

        assert loader.pump(max_completions=1) == 1
        assert loader.pending_count == 2
        assert loader.pump() == 2

    def test_dispose_cancels_in_flight_loads(self) -> None:
        loader = TextureLoader(fetch=lambda src: solid_pixels(2, 2))
        task = loader.load("a.png")

        loader.dispose()

        assert task.cancelled
        assert loader.pump() == 0

    def test_reads_image_files_relative_to_base_path(self, tmp_path) -> None:
        Image.new("RGB", (3, 2), (10, 20, 30)).save(tmp_path / "tile.png")
        loader = TextureLoader(base_path=tmp_path)
        task = loader.load("tile.png")

        loader.pump()

        assert task.texture.size == (3, 2)
        assert task.texture.data[0, 0].tolist() == [10, 20, 30, 255]
