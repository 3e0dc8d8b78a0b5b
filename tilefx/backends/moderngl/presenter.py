"""Presents the compositor's default framebuffer on a GL surface."""

from __future__ import annotations

import logging
from pathlib import Path

import moderngl
import numpy as np

from tilefx.render.rasterizer import RasterRenderer
from tilefx.render.textures import Texture

from .resource_manager import ModernGLResourceManager

logger = logging.getLogger(__name__)

GLSL_DIR = Path(__file__).parent / "glsl"

# Two triangles covering clip space
_FULLSCREEN_QUAD = np.array(
    [-1.0, -1.0, 1.0, -1.0, -1.0, 1.0, 1.0, -1.0, 1.0, 1.0, -1.0, 1.0],
    dtype="f4",
)


def compile_program(
    mgl_context: moderngl.Context, name: str, shader_dir: Path = GLSL_DIR
) -> moderngl.Program:
    """Compile ``<name>.vert`` and ``<name>.frag`` from ``shader_dir``.

    Raises:
        FileNotFoundError: A stage source is missing.
        RuntimeError: The driver rejected the program.
    """
    sources = {}
    for stage in ("vert", "frag"):
        path = shader_dir / f"{name}.{stage}"
        if not path.exists():
            raise FileNotFoundError(f"Shader file not found: {path}")
        sources[stage] = path.read_text(encoding="utf-8")

    try:
        program = mgl_context.program(
            vertex_shader=sources["vert"], fragment_shader=sources["frag"]
        )
    except Exception as e:
        logger.error(f"Failed to compile shader program '{name}': {e}")
        raise RuntimeError(f"Shader program '{name}' failed to compile: {e}") from e
    logger.debug(f"Compiled shader program '{name}'")
    return program


def set_uniform(program: moderngl.Program, name: str, value: object) -> None:
    """Assign a uniform, rejecting attributes and blocks with the same name.

    Raises:
        TypeError: ``name`` is not a plain uniform of ``program``.
    """
    member = program[name]
    if not isinstance(member, moderngl.Uniform):
        raise TypeError(f"{name} is not a Uniform, got {type(member).__name__}")
    member.value = value


class GLPresenter:
    """Uploads the renderer's screen target and draws it as a full-screen quad.

    Args:
        mgl_context: Context owning the destination framebuffer.
        resource_manager: Shared texture/FBO cache; one is created when omitted.
    """

    def __init__(
        self,
        mgl_context: moderngl.Context,
        resource_manager: ModernGLResourceManager | None = None,
    ) -> None:
        self.mgl_context = mgl_context
        self.resource_manager = resource_manager or ModernGLResourceManager(mgl_context)
        self.program = compile_program(mgl_context, "present")
        set_uniform(self.program, "u_image", 0)
        set_uniform(self.program, "u_opacity", 1.0)

        self.vbo = mgl_context.buffer(_FULLSCREEN_QUAD.tobytes())
        self.vao = mgl_context.vertex_array(
            self.program, [(self.vbo, "2f", "in_position")]
        )
        self.frames = 0

    def present_texture(
        self,
        texture: Texture,
        framebuffer: moderngl.Framebuffer | None = None,
        opacity: float = 1.0,
    ) -> None:
        """Draw ``texture`` stretched over ``framebuffer`` (the screen by default)."""
        target = framebuffer or self.mgl_context.screen
        gl_texture = self.resource_manager.upload(texture)
        target.use()
        self.mgl_context.viewport = (0, 0, *target.size)
        target.clear(0.0, 0.0, 0.0, 1.0)
        set_uniform(self.program, "u_opacity", float(opacity))
        gl_texture.use(location=0)
        self.vao.render(moderngl.TRIANGLES)
        self.frames += 1

    def present(
        self, renderer: RasterRenderer, framebuffer: moderngl.Framebuffer | None = None
    ) -> None:
        """Draw the renderer's default framebuffer."""
        self.present_texture(renderer.screen.texture, framebuffer)

    def read_back(self, framebuffer: moderngl.Framebuffer) -> np.ndarray:
        """Pixels of ``framebuffer`` as (H, W, 4) uint8, top row first."""
        width, height = framebuffer.size
        data = np.frombuffer(framebuffer.read(components=4), dtype=np.uint8)
        return data.reshape(height, width, 4)[::-1]

    def release(self) -> None:
        self.vao.release()
        self.vbo.release()
        self.program.release()
        self.resource_manager.release_all()
        logger.debug("GL presenter released")
