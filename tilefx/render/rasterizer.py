"""Reference raster renderer.

Draws scene meshes into RGBA8 render targets on the CPU with numpy. It
mirrors the semantics the effects are written against: a default framebuffer
("screen"), a current render target, camera layer tests, mesh and material
visibility, ``(render_order, id)`` draw order, straight-alpha "over" blending
and clamp-to-edge bilinear sampling.

Output in the default framebuffer can be presented to a display by a GPU
backend (see ``tilefx.backends.moderngl``).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from tilefx import config
from tilefx.types import ColorRGBAf

from .scene import Camera, FragmentInputs, Mesh, Scene
from .targets import RenderTarget
from .textures import Texture

logger = logging.getLogger(__name__)


def to_bytes(rgba: np.ndarray) -> np.ndarray:
    """Float [0, 1] -> uint8 with rounding."""
    return np.round(np.clip(rgba, 0.0, 1.0) * 255.0).astype(np.uint8)


def sample_bilinear(pixels: np.ndarray, u: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Bilinearly sample ``pixels`` (H, W, C) at normalized ``u, v``.

    Texel centres sit at ``(i + 0.5) / size``; coordinates outside [0, 1] are
    clamped to the edge. The result has shape ``u.shape + (C,)``.
    """
    height, width = pixels.shape[:2]
    x = np.asarray(u, dtype=np.float64) * width - 0.5
    y = np.asarray(v, dtype=np.float64) * height - 0.5
    x0 = np.floor(x)
    y0 = np.floor(y)
    fx = (x - x0)[..., None]
    fy = (y - y0)[..., None]

    x0i = np.clip(x0, 0, width - 1).astype(np.intp)
    x1i = np.clip(x0 + 1, 0, width - 1).astype(np.intp)
    y0i = np.clip(y0, 0, height - 1).astype(np.intp)
    y1i = np.clip(y0 + 1, 0, height - 1).astype(np.intp)

    top = pixels[y0i, x0i] * (1.0 - fx) + pixels[y0i, x1i] * fx
    bottom = pixels[y1i, x0i] * (1.0 - fx) + pixels[y1i, x1i] * fx
    return (top * (1.0 - fy) + bottom * fy).astype(np.float32)


def sample_texture(texture: Texture, u: np.ndarray, v: np.ndarray) -> np.ndarray:
    return sample_bilinear(texture.as_float(), u, v)


def blend_over(dst: np.ndarray, src: np.ndarray) -> np.ndarray:
    """Straight-alpha source-over blending of (N, 4) float arrays."""
    alpha = src[..., 3:4]
    rgb = src[..., :3] * alpha + dst[..., :3] * (1.0 - alpha)
    out_alpha = alpha + dst[..., 3:4] * (1.0 - alpha)
    return np.concatenate([rgb, out_alpha], axis=-1)


@dataclass
class FullscreenInputs:
    """Inputs of a full-screen pass: one entry per target pixel, shape (H, W)."""

    u: np.ndarray
    v: np.ndarray
    width: int
    height: int


# Returns straight RGBA floats, shape (H, W, 4).
type FullscreenShader = Callable[[FullscreenInputs], np.ndarray]


@dataclass(frozen=True)
class RendererState:
    """Renderer settings a pass may change and must put back."""

    target: RenderTarget | None
    clear_color: ColorRGBAf


class RasterRenderer:
    """Numpy renderer with a default framebuffer and switchable render targets."""

    def __init__(
        self,
        width: int = config.DEFAULT_DRAWING_BUFFER_SIZE[0],
        height: int = config.DEFAULT_DRAWING_BUFFER_SIZE[1],
    ) -> None:
        self._size = (max(0, int(width)), max(0, int(height)))
        self.screen = RenderTarget("screen", width, height)
        self._target: RenderTarget | None = None
        self.clear_color: ColorRGBAf = (0.0, 0.0, 0.0, 0.0)
        self.draw_calls = 0

    # ------------------------------------------------------------------
    # Size and state
    # ------------------------------------------------------------------
    def get_drawing_buffer_size(self) -> tuple[int, int]:
        """Logical drawing-buffer size; may be zero-area while minimized."""
        return self._size

    def set_size(self, width: int, height: int) -> None:
        self._size = (max(0, int(width)), max(0, int(height)))
        self.screen.resize(width, height)

    def set_render_target(self, target: RenderTarget | None) -> None:
        """Direct subsequent draws to ``target``; ``None`` means the screen."""
        self._target = target

    def get_render_target(self) -> RenderTarget | None:
        return self._target

    @property
    def current_target(self) -> RenderTarget:
        return self._target if self._target is not None else self.screen

    def save_state(self) -> RendererState:
        return RendererState(self._target, self.clear_color)

    def restore_state(self, state: RendererState) -> None:
        self._target = state.target
        self.clear_color = state.clear_color

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------
    def clear(self, color: ColorRGBAf | None = None) -> None:
        self.current_target.clear(color if color is not None else self.clear_color)

    def render(self, scene: Scene, camera: Camera) -> None:
        """Draw every drawable mesh the camera sees, in render order."""
        target = self.current_target
        meshes = sorted(
            (
                mesh
                for mesh in scene
                if mesh.is_drawable() and mesh.layers.test(camera.layers)
            ),
            key=lambda mesh: (mesh.render_order, mesh.id),
        )
        for mesh in meshes:
            self._draw_mesh(mesh, camera, target)
        target.texture.touch()
        target.writes += 1

    def draw_fullscreen(self, shader: FullscreenShader) -> None:
        """Replace the current target's pixels with the shader's output."""
        target = self.current_target
        width, height = target.size
        ys, xs = np.mgrid[0:height, 0:width]
        inputs = FullscreenInputs(
            u=(xs + 0.5) / width, v=(ys + 0.5) / height, width=width, height=height
        )
        output = np.asarray(shader(inputs), dtype=np.float32)
        target.pixels[...] = to_bytes(output)
        target.texture.touch()
        target.writes += 1
        self.draw_calls += 1

    def blit(self, texture: Texture) -> None:
        """Copy ``texture`` into the current target, resampling if sizes differ."""
        target = self.current_target
        if texture.size == target.size and texture.data.dtype == np.uint8:
            target.pixels[...] = texture.data
            target.texture.touch()
            target.writes += 1
            self.draw_calls += 1
            return
        self.draw_fullscreen(lambda f: sample_texture(texture, f.u, f.v))

    def _draw_mesh(self, mesh: Mesh, camera: Camera, target: RenderTarget) -> None:
        width, height = target.size
        corners = mesh.transform.corners()
        nx, ny = camera.world_to_ndc(corners[:, 0], corners[:, 1])
        px = (nx + 1.0) * 0.5 * width
        py = (ny + 1.0) * 0.5 * height

        x0 = max(0, math.floor(float(px.min())))
        x1 = min(width, math.ceil(float(px.max())))
        y0 = max(0, math.floor(float(py.min())))
        y1 = min(height, math.ceil(float(py.max())))
        if x0 >= x1 or y0 >= y1:
            return

        ys, xs = np.mgrid[y0:y1, x0:x1]
        su = (xs + 0.5) / width
        sv = (ys + 0.5) / height
        wx, wy = camera.screen_uv_to_world(su, sv)
        u, v = mesh.transform.world_to_local(wx, wy)
        inside = (u >= 0.0) & (u <= 1.0) & (v >= 0.0) & (v <= 1.0)
        if not inside.any():
            return

        yi, xi = ys[inside], xs[inside]
        u, v = u[inside], v[inside]
        material = mesh.material

        if material.texture is not None:
            color = sample_texture(material.texture, u, v)
        else:
            color = np.ones((len(u), 4), dtype=np.float32)
        color[:, :3] *= np.asarray(material.color, dtype=np.float32)
        if material.flat_color is not None:
            color[:, :3] = np.asarray(material.flat_color, dtype=np.float32)

        if material.fragment is not None:
            color = np.asarray(
                material.fragment(
                    FragmentInputs(
                        u=u,
                        v=v,
                        screen_u=su[inside],
                        screen_v=sv[inside],
                        world_x=wx[inside],
                        world_y=wy[inside],
                        base=color,
                        uniforms=material.uniforms,
                        target_size=(width, height),
                    )
                ),
                dtype=np.float32,
            )

        color[:, 3] = np.clip(color[:, 3] * material.opacity, 0.0, 1.0)
        dst = target.pixels[yi, xi].astype(np.float32) / 255.0
        target.pixels[yi, xi] = to_bytes(blend_over(dst, color))
        self.draw_calls += 1
