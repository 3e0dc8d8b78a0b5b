"""Effect contract shared by every compositor effect.

Three kinds of effect plug into the coordinator:

- ``SceneMeshEffect``: adds overlay meshes to tiles through the floor render
  bus; the bus draws them with the scene.
- ``PostProcessEffect``: a full-screen pass in the post-processing chain,
  reading an input texture and writing the next buffer or the screen.
- ``OverlayLayerEffect``: draws gizmo meshes on the overlay layer after the
  post chain, on top of the final image.

Cross-effect data (shadow factor, roof alpha, wind) is delivered through the
consumer protocols at the bottom of this module instead of lookups by name.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

from tilefx import config
from tilefx.errors import EffectStatus
from tilefx.render.rasterizer import FullscreenInputs, RasterRenderer, sample_texture
from tilefx.render.scene import Camera, Layers, Mesh, Scene
from tilefx.types import TimeInfo

from .schema import ControlSchema, ParameterBag

if TYPE_CHECKING:
    from tilefx.masks.registry import MaskRegistry
    from tilefx.providers import AssetBundle, SceneData
    from tilefx.render.floor_bus import FloorRenderBus
    from tilefx.render.shadow_capture import ShadowSettings
    from tilefx.render.targets import RenderTarget
    from tilefx.render.textures import Texture, TextureLoader
    from tilefx.wind import WindAdvection

logger = logging.getLogger(__name__)


class EffectState(Enum):
    CREATED = "created"
    INITIALIZED = "initialized"
    POPULATED = "populated"
    RUNNING = "running"
    DISPOSED = "disposed"


class RenderLayer(Enum):
    """Coarse ordering bucket; the post chain sorts by ``order`` first."""

    BASE = 0
    MATERIAL = 100
    SURFACE_EFFECTS = 200
    PARTICLES = 300
    ENVIRONMENTAL = 400
    POST_PROCESSING = 500

    @property
    def order(self) -> int:
        return self.value


class EffectBase(ABC):
    """Lifecycle, parameters and flags common to all effects.

    Lifecycle transitions only move forward (created -> initialized ->
    populated -> running -> disposed); only ``enabled`` toggles freely.
    ``initialize`` is idempotent and ``dispose`` is a no-op after the first
    call.
    """

    effect_type = "effect"
    default_render_layer = RenderLayer.BASE

    def __init__(
        self,
        name: str | None = None,
        *,
        priority: int = 0,
        enabled: bool = True,
        params: Mapping[str, Any] | None = None,
    ) -> None:
        self.name = name or self.effect_type
        self.priority = priority
        self.render_layer = self.default_render_layer
        self.always_render = False
        self.requires_continuous_render = False
        self.state = EffectState.CREATED
        self.status = EffectStatus.OK
        self.params = ParameterBag(self.get_control_schema(), self.name, params)

        self.renderer: RasterRenderer | None = None
        self.scene: Scene | None = None
        self.camera: Camera | None = None
        self.size: tuple[int, int] = (0, 0)
        self.base_mesh: Mesh | None = None
        self.asset_bundle: AssetBundle | None = None
        self._enabled = enabled

    # ------------------------------------------------------------------
    # Flags
    # ------------------------------------------------------------------
    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        value = bool(value)
        if value == self._enabled:
            return
        self._enabled = value
        self.on_enabled_changed(value)

    def on_enabled_changed(self, enabled: bool) -> None:
        """Hook run when ``enabled`` flips."""

    def is_active(self) -> bool:
        """Whether the effect currently has anything to show."""
        return self._enabled and self.state is not EffectState.DISPOSED

    @property
    def disposed(self) -> bool:
        return self.state is EffectState.DISPOSED

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self, renderer: RasterRenderer, scene: Scene, camera: Camera) -> None:
        if self.state is not EffectState.CREATED:
            return
        self.renderer = renderer
        self.scene = scene
        self.camera = camera
        self.size = renderer.get_drawing_buffer_size()
        self.on_initialize()
        self.state = EffectState.INITIALIZED
        logger.debug(f"Effect '{self.name}' initialized")

    def on_initialize(self) -> None:
        """Allocate resources; ``renderer``, ``scene`` and ``camera`` are set."""

    def set_base_mesh(self, mesh: Mesh | None, asset_bundle: AssetBundle | None) -> None:
        self.base_mesh = mesh
        self.asset_bundle = asset_bundle

    def mark_running(self) -> None:
        if self.state in (EffectState.INITIALIZED, EffectState.POPULATED):
            self.state = EffectState.RUNNING

    def update(self, time_info: TimeInfo) -> None:
        """Refresh uniforms for this frame; never issues draw calls."""

    @abstractmethod
    def render(self, renderer: RasterRenderer, scene: Scene, camera: Camera) -> None:
        """Issue this effect's draw calls."""

    def on_resize(self, width: int, height: int) -> None:
        self.size = (width, height)

    def dispose(self) -> None:
        if self.state is EffectState.DISPOSED:
            return
        self.on_dispose()
        self.state = EffectState.DISPOSED
        self.renderer = self.scene = self.camera = None
        self.base_mesh = None
        logger.debug(f"Effect '{self.name}' disposed")

    def on_dispose(self) -> None:
        """Release resources owned by the effect."""

    @classmethod
    def get_control_schema(cls) -> ControlSchema:
        return ControlSchema(cls.effect_type)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, state={self.state.value}, "
            f"enabled={self.enabled})"
        )


# =============================================================================
# EFFECT KINDS
# =============================================================================


class PostProcessEffect(EffectBase):
    """Full-screen pass reading ``input_texture`` into the write buffer.

    When ``render_to_screen`` is set the output goes to the default
    framebuffer instead.
    """

    default_render_layer = RenderLayer.POST_PROCESSING

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.input_texture: Texture | None = None
        self.read_buffer: RenderTarget | None = None
        self.write_buffer: RenderTarget | None = None
        self.render_to_screen = False

    def set_input_texture(self, texture: Texture | None) -> None:
        self.input_texture = texture

    def set_buffers(self, read: RenderTarget | None, write: RenderTarget | None) -> None:
        self.read_buffer = read
        self.write_buffer = write

    def set_render_to_screen(self, flag: bool) -> None:
        self.render_to_screen = bool(flag)

    def sample_input(self, u: np.ndarray, v: np.ndarray) -> np.ndarray:
        return sample_texture(self.input_texture, u, v)

    def render(self, renderer: RasterRenderer, scene: Scene, camera: Camera) -> None:
        if self.input_texture is None:
            return
        target = None if self.render_to_screen else self.write_buffer
        state = renderer.save_state()
        try:
            renderer.set_render_target(target)
            if self.enabled:
                renderer.draw_fullscreen(self.shade)
            else:
                renderer.blit(self.input_texture)
        finally:
            renderer.restore_state(state)

    @abstractmethod
    def shade(self, f: FullscreenInputs) -> np.ndarray:
        """Output colour for every pixel, (H, W, 4) straight RGBA floats."""

    def on_dispose(self) -> None:
        self.input_texture = None
        self.read_buffer = self.write_buffer = None


class SceneMeshEffect(EffectBase):
    """Effect whose output is overlay meshes bound to bus tiles.

    ``populate`` runs once the bus holds the scene's tiles. Disabling the
    effect hides its overlays through their materials, leaving floor
    visibility to the bus.
    """

    default_render_layer = RenderLayer.SURFACE_EFFECTS

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.bus: FloorRenderBus | None = None
        self.overlays: dict[str, Mesh] = {}
        self._detach_discard: Callable[[], None] | None = None

    def populate(
        self,
        bus: FloorRenderBus,
        scene_data: SceneData,
        loader: TextureLoader | None = None,
    ) -> None:
        if self.state is EffectState.DISPOSED:
            return
        self.bus = bus
        if self._detach_discard is None:
            self._detach_discard = bus.on_overlay_discarded(self._overlay_discarded)
        self.on_populate(bus, scene_data, loader)
        if self.state is EffectState.INITIALIZED:
            self.state = EffectState.POPULATED

    @abstractmethod
    def on_populate(
        self,
        bus: FloorRenderBus,
        scene_data: SceneData,
        loader: TextureLoader | None,
    ) -> None:
        """Create and bind this effect's overlays."""

    def _overlay_discarded(self, mesh: Mesh) -> None:
        for tile_id, overlay in list(self.overlays.items()):
            if overlay is mesh:
                del self.overlays[tile_id]
                logger.debug(f"{self.name}: overlay on tile '{tile_id}' discarded")

    def on_enabled_changed(self, enabled: bool) -> None:
        for overlay in self.overlays.values():
            overlay.material.visible = enabled

    def render(self, renderer: RasterRenderer, scene: Scene, camera: Camera) -> None:
        """Overlays are drawn by the floor bus."""

    def on_dispose(self) -> None:
        if self._detach_discard is not None:
            self._detach_discard()
            self._detach_discard = None
        if self.bus is not None:
            for overlay in self.overlays.values():
                self.bus.remove_effect_overlay(overlay)
        self.overlays.clear()
        self.bus = None


class OverlayLayerEffect(EffectBase):
    """Draws its own scene on the overlay layer over the final image."""

    default_render_layer = RenderLayer.ENVIRONMENTAL

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.overlay_scene = Scene(f"{self.name}-overlay")

    def on_enabled_changed(self, enabled: bool) -> None:
        for mesh in self.overlay_scene:
            mesh.material.visible = enabled

    def render(self, renderer: RasterRenderer, scene: Scene, camera: Camera) -> None:
        if not self.enabled or len(self.overlay_scene) == 0:
            return
        previous = camera.layers
        camera.layers = Layers(config.OVERLAY_LAYER)
        try:
            renderer.render(self.overlay_scene, camera)
        finally:
            camera.layers = previous

    def on_dispose(self) -> None:
        self.overlay_scene.clear()


# =============================================================================
# CONSUMER PROTOCOLS
# =============================================================================


@runtime_checkable
class ShadowFactorConsumer(Protocol):
    """Receives the shadow factor texture the coordinator captured."""

    def shadow_settings(self) -> ShadowSettings: ...

    def set_shadow_factor(
        self, texture: Texture | None, uv_remap: tuple[float, float]
    ) -> None: ...


@runtime_checkable
class RoofAlphaConsumer(Protocol):
    """Receives the captured roof alpha, sampled through ``uv_remap``."""

    def set_roof_alpha(
        self, texture: Texture | None, uv_remap: tuple[float, float]
    ) -> None: ...


@runtime_checkable
class WindConsumer(Protocol):
    """Gets its own wind integrator, advanced by the coordinator before updates.

    ``wind_options`` returns keyword arguments for ``WindAdvection``.
    """

    def wind_options(self) -> dict[str, Any]: ...

    def attach_wind(self, wind: WindAdvection) -> None: ...


@runtime_checkable
class MaskConsumer(Protocol):
    """Subscribes to derived fields in the mask registry."""

    def bind_masks(self, registry: MaskRegistry) -> None: ...


@runtime_checkable
class BusConsumer(Protocol):
    """Reads tile placement from the floor render bus without owning overlays."""

    def attach_bus(self, bus: FloorRenderBus) -> None: ...
