"""Shared GPU resources for presenting compositor textures.

Caches one GL texture per compositor ``Texture`` (re-uploaded only when its
version changes) and framebuffers keyed by size, so presenting a frame does
not allocate GPU memory once sizes settle.
"""

from __future__ import annotations

import logging

import moderngl
import numpy as np

from tilefx.render.rasterizer import to_bytes
from tilefx.render.textures import Texture

logger = logging.getLogger(__name__)


class ModernGLResourceManager:
    """Manages GL textures and framebuffers created on behalf of the compositor."""

    def __init__(self, mgl_context: moderngl.Context) -> None:
        self.mgl_context = mgl_context

        # Compositor texture uuid -> (GL texture, uploaded version)
        self._texture_cache: dict[str, tuple[moderngl.Texture, int]] = {}

        # Offscreen framebuffers keyed by (width, height)
        self._fbo_cache: dict[
            tuple[int, int], tuple[moderngl.Framebuffer, moderngl.Texture]
        ] = {}
        self.uploads = 0

    def upload(self, texture: Texture) -> moderngl.Texture:
        """Return a GL texture holding ``texture``'s current pixels.

        The GL texture is reallocated when the size changes and rewritten when
        the compositor texture's version moved since the last upload.
        """
        cached = self._texture_cache.get(texture.uuid)
        if cached is not None:
            gl_texture, version = cached
            if gl_texture.size != texture.size:
                gl_texture.release()
                cached = None
            elif version == texture.version:
                return gl_texture

        if cached is None:
            gl_texture = self.mgl_context.texture(texture.size, 4)
            gl_texture.filter = (moderngl.LINEAR, moderngl.LINEAR)
            gl_texture.repeat_x = False
            gl_texture.repeat_y = False

        pixels = texture.data
        if pixels.dtype != np.uint8:
            pixels = to_bytes(pixels)
        gl_texture.write(np.ascontiguousarray(pixels).tobytes())
        self._texture_cache[texture.uuid] = (gl_texture, texture.version)
        self.uploads += 1
        return gl_texture

    def get_or_create_fbo(
        self, width: int, height: int
    ) -> tuple[moderngl.Framebuffer, moderngl.Texture]:
        """Get or create a cached RGBA8 framebuffer for the given dimensions."""
        cache_key = (width, height)
        if cache_key in self._fbo_cache:
            return self._fbo_cache[cache_key]

        texture = self.mgl_context.texture((width, height), 4)
        fbo = self.mgl_context.framebuffer(color_attachments=[texture])
        self._fbo_cache[cache_key] = (fbo, texture)
        logger.debug(f"Created {width}x{height} presentation framebuffer")
        return fbo, texture

    def release_texture(self, texture: Texture) -> None:
        cached = self._texture_cache.pop(texture.uuid, None)
        if cached is not None:
            cached[0].release()

    def release_all(self) -> None:
        """Release all cached GPU resources."""
        for gl_texture, _ in self._texture_cache.values():
            gl_texture.release()
        self._texture_cache.clear()

        for fbo, texture in self._fbo_cache.values():
            fbo.release()
            texture.release()
        self._fbo_cache.clear()

    def get_cache_info(self) -> dict[str, int]:
        return {
            "texture_count": len(self._texture_cache),
            "fbo_count": len(self._fbo_cache),
        }
