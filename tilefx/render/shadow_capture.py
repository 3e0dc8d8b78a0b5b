"""Overhead shadow capture: multi-pass alpha capture and shadow-factor composite.

Each frame, with the camera temporarily widened by a guard band so taps just
outside the viewport still find casters:

1. Fluid-roof capture: fluid overlays on the roof layer, at full tile opacity
   and with their roof occlusion switched off.
2. Roof capture: every other roof-layer mesh at full opacity.
3. Optional tile projection: receiver alpha, receiver sort, contributor alpha
   and contributor sort passes. Sort passes write each tile's normalized sort
   key as colour, so ``sort = sortTarget.r / alphaTarget.a``.
4. Composite: a full-screen pass projecting taps along the sun direction,
   blurring them, classifying indoor/outdoor receivers, and writing
   ``(shadowFactor, shadowFactor, shadowFactor, tileShadowFactor)``.

Every temporary change (camera frustum and layers, mesh visibility, material
opacity and colour, uniforms, renderer target) is made through an
``OverrideStack`` and undone on every exit path.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

import numpy as np

from tilefx import config
from tilefx.masks.surface_model import SurfaceField
from tilefx.providers import DepthPassProvider, SceneDimensions
from tilefx.types import Heading, TileId

from .floor_bus import FloorRenderBus
from .overrides import OverrideStack
from .rasterizer import FullscreenInputs, RasterRenderer, sample_bilinear, sample_texture
from .scene import Camera, Layers, Mesh, TileInfo
from .targets import RenderTarget, RenderTargetPool
from .textures import Texture

logger = logging.getLogger(__name__)

_EPSILON = 1e-4


@dataclass(frozen=True)
class ShadowSettings:
    """Parameters of one shadow capture, usually owned by the shadow effect."""

    opacity: float = config.SHADOW_DEFAULT_OPACITY
    length: float = config.SHADOW_DEFAULT_LENGTH
    softness: float = config.SHADOW_DEFAULT_SOFTNESS
    sun_latitude: float = config.SHADOW_DEFAULT_SUN_LATITUDE
    indoor_darkness: float = config.SHADOW_DEFAULT_INDOOR_DARKNESS
    tile_projection: bool = False
    tile_strength: float = config.SHADOW_DEFAULT_TILE_STRENGTH
    sort_bias: float = config.SHADOW_DEFAULT_SORT_BIAS
    min_guard_px: float = config.SHADOW_MIN_GUARD_PX


@dataclass(frozen=True)
class ShadowCaptureResult:
    """Textures and parameters produced by one capture.

    Attributes:
        shadow_factor: RGB = roof/indoor shadow factor, A = tile shadow factor.
        uv_remap: Multiply ``(uv - 0.5)`` by this to sample the captured targets.
    """

    shadow_factor: Texture
    roof_alpha: Texture
    fluid_alpha: Texture
    uv_remap: tuple[float, float]
    guard_px: float
    pixel_len: float
    sun_direction: Heading
    tile_projection: bool
    depth_gated: bool


# =============================================================================
# PURE HELPERS
# =============================================================================


def sun_direction(time_of_day: float, latitude: float) -> Heading:
    """Screen-space sun direction from the hour of day alone.

    Noon points straight along +Y scaled by ``latitude``; morning and evening
    swing toward -X / +X.
    """
    t = (float(time_of_day) % 24.0) / 24.0
    azimuth = (t - 0.5) * math.pi
    return -math.sin(azimuth), math.cos(azimuth) * float(latitude)


def projection_pixels(length: float, zoom: float) -> float:
    """Shadow length in screen pixels at ``zoom``."""
    return float(length) * config.SHADOW_REFERENCE_HEIGHT_PX * max(
        float(zoom), config.SHADOW_MIN_ZOOM
    )


def guard_band(
    viewport: tuple[int, int], projection_px: float, blur_px: float, min_guard_px: float
) -> tuple[float, float, float]:
    """Guard size in pixels and the per-axis frustum scale that includes it.

    Returns:
        (guard_px, scale_x, scale_y) with ``scale = 1 + 2 * guard_px / dim``.
    """
    guard_px = max(float(min_guard_px), projection_px + blur_px + 2.0)
    width, height = max(1, viewport[0]), max(1, viewport[1])
    return guard_px, 1.0 + 2.0 * guard_px / width, 1.0 + 2.0 * guard_px / height


def to_captured_uv(
    u: np.ndarray, v: np.ndarray, uv_remap: tuple[float, float]
) -> tuple[np.ndarray, np.ndarray]:
    """Map screen UV into the guard-banded capture."""
    return 0.5 + (u - 0.5) * uv_remap[0], 0.5 + (v - 0.5) * uv_remap[1]


def normalized_sort_keys(meshes: Iterable[Mesh]) -> dict[int, float]:
    """Dense rank of render order mapped to [0, 1] (lowest 0, highest 1).

    A single distinct order maps to 0.
    """
    meshes = list(meshes)
    orders = sorted({mesh.render_order for mesh in meshes})
    if len(orders) <= 1:
        return {mesh.id: 0.0 for mesh in meshes}
    rank = {order: i / (len(orders) - 1) for i, order in enumerate(orders)}
    return {mesh.id: rank[mesh.render_order] for mesh in meshes}


def sort_rank_step(sorts: Mapping[int, float]) -> float:
    """Gap between adjacent normalized sort keys; 1.0 with fewer than two ranks."""
    ranks = len(set(sorts.values()))
    return 1.0 if ranks < 2 else 1.0 / (ranks - 1)


def tile_projection_gate(
    caster_sort: np.ndarray,
    receiver_sort: np.ndarray,
    bias: float,
    rank_step: float = 1.0,
) -> np.ndarray:
    """1 where a caster tap may shadow the receiver, else 0.

    Casters at or above the receiver pass; ties pass. ``bias`` only absorbs
    encoding error and is capped below half a rank step, so a caster one rank
    below the receiver is always rejected.
    """
    tolerance = np.float32(min(max(0.0, bias), 0.5 * rank_step))
    caster = np.asarray(caster_sort, dtype=np.float32)
    receiver = np.asarray(receiver_sort, dtype=np.float32)
    return (caster + tolerance >= receiver).astype(np.float32)


def linearize_depth(device_depth: np.ndarray, near: float, far: float) -> np.ndarray:
    """Perspective device depth [0, 1] -> linear eye-space distance."""
    z_ndc = np.asarray(device_depth, dtype=np.float64) * 2.0 - 1.0
    return (2.0 * near * far) / (far + near - z_ndc * (far - near))


def smoothstep(edge0: float, edge1: float, x: np.ndarray) -> np.ndarray:
    t = np.clip((np.asarray(x) - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def blur3x3(
    pixels: np.ndarray,
    u: np.ndarray,
    v: np.ndarray,
    step: tuple[float, float],
    channel: int = 3,
) -> np.ndarray:
    """3x3 tap blur of one channel with the centre tap weighted double."""
    center = config.SHADOW_BLUR_CENTER_WEIGHT
    total = np.zeros(np.shape(u), dtype=np.float32)
    weight_sum = 0.0
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            weight = center if dx == 0 and dy == 0 else 1.0
            tap = sample_bilinear(pixels, u + dx * step[0], v + dy * step[1])
            total += weight * tap[..., channel]
            weight_sum += weight
    return total / weight_sum


def is_fluid_overlay(mesh: Mesh) -> bool:
    """Fluid overlays are the roof-layer meshes exposing a roof-occlusion uniform."""
    return (
        "u_roof_occlusion_enabled" in mesh.material.uniforms
        and mesh.layers.is_enabled(config.ROOF_LAYER)
    )


# =============================================================================
# PIPELINE
# =============================================================================


class ShadowCapturePipeline:
    """Runs the capture passes and the composite into pool-owned targets."""

    def __init__(self, pool: RenderTargetPool) -> None:
        self.pool = pool
        self.last_result: ShadowCaptureResult | None = None
        self.owner: str | None = None
        self._depth_warned = False
        self._rank_step = 1.0

    def _target(self, name: str) -> RenderTarget:
        return self.pool.acquire(name, owner=self.owner)

    def capture(
        self,
        renderer: RasterRenderer,
        bus: FloorRenderBus,
        camera: Camera,
        *,
        settings: ShadowSettings,
        time_of_day: float,
        zoom: float,
        projection_tile_ids: Iterable[TileId] = (),
        outdoors: SurfaceField | None = None,
        dimensions: SceneDimensions | None = None,
        depth: DepthPassProvider | None = None,
    ) -> ShadowCaptureResult | None:
        """Capture this frame's shadow factor.

        Returns:
            None when the drawing buffer has zero area (nothing is rendered).
        """
        width, height = renderer.get_drawing_buffer_size()
        if width <= 0 or height <= 0:
            return None

        pixel_len = projection_pixels(settings.length, zoom)
        blur_px = math.ceil(max(0.0, settings.softness))
        guard_px, scale_x, scale_y = guard_band(
            (width, height), pixel_len, blur_px, settings.min_guard_px
        )
        uv_remap = (1.0 / scale_x, 1.0 / scale_y)
        sun = sun_direction(time_of_day, settings.sun_latitude)
        projection_ids = set(projection_tile_ids) if settings.tile_projection else set()

        fluid_target = self._target(config.SHADOW_FLUID_TARGET)
        roof_target = self._target(config.SHADOW_ROOF_TARGET)
        projection_targets: tuple[RenderTarget, ...] | None = None

        state = renderer.save_state()
        with OverrideStack() as overrides:
            overrides.push(lambda: renderer.restore_state(state))
            base_x, base_y = camera.frustum_scale
            overrides.set_attr(
                camera, "frustum_scale", (base_x * scale_x, base_y * scale_y)
            )
            overrides.set_attr(camera, "layers", Layers(config.ROOF_LAYER))
            bus.sync_overlays()

            self._render_pass(
                renderer, bus, camera, fluid_target,
                select=is_fluid_overlay,
                configure=self._configure_fluid,
            )
            self._render_pass(
                renderer, bus, camera, roof_target,
                select=lambda m: m.layers.is_enabled(config.ROOF_LAYER)
                and not is_fluid_overlay(m),
                configure=lambda m, o: o.set_attr(m.material, "opacity", 1.0),
            )

            if projection_ids:
                camera.layers = Layers(config.DEFAULT_LAYER)
                projection_targets = self._capture_tile_projection(
                    renderer, bus, camera, projection_ids
                )

        depth_texture = self._depth_texture(depth) if projection_targets else None
        shadow_target = self._target(config.SHADOW_FACTOR_TARGET)
        composite = _Composite(
            settings=settings,
            camera=camera,
            uv_remap=uv_remap,
            offset_px=(sun[0] * pixel_len, sun[1] * pixel_len),
            roof=roof_target.texture,
            fluid=fluid_target.texture,
            projection=projection_targets,
            outdoors=outdoors,
            dimensions=dimensions,
            depth_texture=depth_texture,
            rank_step=self._rank_step,
            depth_range=(depth.get_depth_near(), depth.get_depth_far())
            if depth_texture is not None and depth is not None
            else (1.0, 1.0),
        )
        try:
            renderer.set_render_target(shadow_target)
            renderer.draw_fullscreen(composite.shade)
        finally:
            renderer.restore_state(state)

        self.last_result = ShadowCaptureResult(
            shadow_factor=shadow_target.texture,
            roof_alpha=roof_target.texture,
            fluid_alpha=fluid_target.texture,
            uv_remap=uv_remap,
            guard_px=guard_px,
            pixel_len=pixel_len,
            sun_direction=sun,
            tile_projection=projection_targets is not None,
            depth_gated=depth_texture is not None,
        )
        return self.last_result

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------
    @staticmethod
    def _configure_fluid(mesh: Mesh, overrides: OverrideStack) -> None:
        overrides.set_item(mesh.material.uniforms, "u_tile_opacity", 1.0)
        overrides.set_item(mesh.material.uniforms, "u_roof_occlusion_enabled", False)

    def _render_pass(
        self,
        renderer: RasterRenderer,
        bus: FloorRenderBus,
        camera: Camera,
        target: RenderTarget,
        *,
        select: Callable[[Mesh], bool],
        configure: Callable[[Mesh, OverrideStack], None] | None = None,
    ) -> None:
        """Render only the selected meshes into ``target``, undoing overrides after."""
        with OverrideStack() as overrides:
            for mesh in bus.scene:
                if not select(mesh):
                    if mesh.visible:
                        overrides.set_attr(mesh, "visible", False)
                elif configure is not None:
                    configure(mesh, overrides)
            renderer.set_render_target(target)
            renderer.clear((0.0, 0.0, 0.0, 0.0))
            renderer.render(bus.scene, camera)

    def _capture_tile_projection(
        self,
        renderer: RasterRenderer,
        bus: FloorRenderBus,
        camera: Camera,
        projection_ids: set[TileId],
    ) -> tuple[RenderTarget, RenderTarget, RenderTarget, RenderTarget]:
        tiles = [m for m in bus.tiles() if m.visible]
        sorts = normalized_sort_keys(tiles)
        self._rank_step = sort_rank_step(sorts)

        def is_tile(mesh: Mesh) -> bool:
            return isinstance(mesh.metadata, TileInfo)

        def is_contributor(mesh: Mesh) -> bool:
            return is_tile(mesh) and mesh.metadata.tile_id in projection_ids

        def encode_sort(mesh: Mesh, overrides: OverrideStack) -> None:
            s = sorts.get(mesh.id, 0.0)
            overrides.set_attr(mesh.material, "flat_color", (s, s, s))

        def full_opacity(mesh: Mesh, overrides: OverrideStack) -> None:
            overrides.set_attr(mesh.material, "opacity", 1.0)

        def full_opacity_sort(mesh: Mesh, overrides: OverrideStack) -> None:
            full_opacity(mesh, overrides)
            encode_sort(mesh, overrides)

        receiver_alpha = self._target(config.SHADOW_RECEIVER_ALPHA_TARGET)
        receiver_sort = self._target(config.SHADOW_RECEIVER_SORT_TARGET)
        contributor_alpha = self._target(config.SHADOW_CONTRIBUTOR_ALPHA_TARGET)
        contributor_sort = self._target(config.SHADOW_CONTRIBUTOR_SORT_TARGET)

        self._render_pass(renderer, bus, camera, receiver_alpha, select=is_tile)
        self._render_pass(
            renderer, bus, camera, receiver_sort, select=is_tile, configure=encode_sort
        )
        self._render_pass(
            renderer, bus, camera, contributor_alpha,
            select=is_contributor, configure=full_opacity,
        )
        self._render_pass(
            renderer, bus, camera, contributor_sort,
            select=is_contributor, configure=full_opacity_sort,
        )
        return receiver_alpha, receiver_sort, contributor_alpha, contributor_sort

    def _depth_texture(self, depth: DepthPassProvider | None) -> Texture | None:
        texture = None
        if depth is not None and depth.is_enabled():
            texture = depth.get_depth_texture()
        if texture is None and not self._depth_warned:
            self._depth_warned = True
            logger.info("No depth pass available; tile shadows are not depth gated")
        return texture

    def dispose(self) -> None:
        for name in (
            config.SHADOW_FLUID_TARGET,
            config.SHADOW_ROOF_TARGET,
            config.SHADOW_RECEIVER_ALPHA_TARGET,
            config.SHADOW_RECEIVER_SORT_TARGET,
            config.SHADOW_CONTRIBUTOR_ALPHA_TARGET,
            config.SHADOW_CONTRIBUTOR_SORT_TARGET,
            config.SHADOW_FACTOR_TARGET,
        ):
            self.pool.dispose(name)
        self.last_result = None


@dataclass
class _Composite:
    """Full-screen shader writing the shadow factor texture."""

    settings: ShadowSettings
    camera: Camera
    uv_remap: tuple[float, float]
    offset_px: tuple[float, float]
    roof: Texture
    fluid: Texture
    projection: tuple[RenderTarget, RenderTarget, RenderTarget, RenderTarget] | None
    outdoors: SurfaceField | None
    dimensions: SceneDimensions | None
    depth_texture: Texture | None
    rank_step: float
    depth_range: tuple[float, float]

    def _outdoors_at(self, su: np.ndarray, sv: np.ndarray) -> np.ndarray:
        """1.0 where the screen position is outdoors; everywhere when no mask."""
        if self.outdoors is None or self.dimensions is None:
            return np.ones(np.shape(su), dtype=np.float32)
        wx, wy = self.camera.screen_uv_to_world(su, sv)
        mu, mv = self.dimensions.world_to_scene_uv(wx, wy)
        raw = self.outdoors.raw.astype(np.float32)[..., None] / 255.0
        value = sample_bilinear(raw, mu, mv)[..., 0]
        return (value >= config.SHADOW_OUTDOORS_THRESHOLD).astype(np.float32)

    def shade(self, f: FullscreenInputs) -> np.ndarray:
        s = self.settings
        su, sv = f.u, f.v
        tap_u = su + self.offset_px[0] / f.width
        tap_v = sv + self.offset_px[1] / f.height
        cap_u, cap_v = to_captured_uv(tap_u, tap_v, self.uv_remap)
        step = (max(0.0, s.softness) / f.width, max(0.0, s.softness) / f.height)

        roof = blur3x3(self.roof.as_float(), cap_u, cap_v, step)
        fluid = blur3x3(self.fluid.as_float(), cap_u, cap_v, step)
        caster = np.maximum(roof, fluid)

        receiver_outdoors = self._outdoors_at(su, sv)
        roof_shadow = caster * s.opacity * receiver_outdoors
        indoor = (1.0 - receiver_outdoors) * s.indoor_darkness
        shadow_factor = 1.0 - np.clip(roof_shadow + indoor, 0.0, 1.0)

        tile_factor = np.ones_like(shadow_factor)
        if self.projection is not None:
            tile = self._tile_projection(su, sv, tap_u, tap_v, cap_u, cap_v, step)
            tile = tile * receiver_outdoors_sameness(
                receiver_outdoors, self._outdoors_at(tap_u, tap_v)
            )
            tile_factor = 1.0 - np.clip(tile * s.tile_strength * s.opacity, 0.0, 1.0)

        return np.stack(
            [shadow_factor, shadow_factor, shadow_factor, tile_factor], axis=-1
        )

    def _tile_projection(
        self,
        su: np.ndarray,
        sv: np.ndarray,
        tap_u: np.ndarray,
        tap_v: np.ndarray,
        cap_u: np.ndarray,
        cap_v: np.ndarray,
        step: tuple[float, float],
    ) -> np.ndarray:
        receiver_alpha, receiver_sort, contributor_alpha, contributor_sort = (
            self.projection
        )
        rec_u, rec_v = to_captured_uv(su, sv, self.uv_remap)
        r_alpha = sample_texture(receiver_alpha.texture, rec_u, rec_v)[..., 3]
        r_sort = sample_texture(receiver_sort.texture, rec_u, rec_v)[..., 0]
        receiver = np.where(
            r_alpha > _EPSILON, r_sort / np.maximum(r_alpha, _EPSILON), 0.0
        )

        c_alpha_exact = sample_texture(contributor_alpha.texture, cap_u, cap_v)[..., 3]
        c_sort = sample_texture(contributor_sort.texture, cap_u, cap_v)[..., 0]
        caster = np.where(
            c_alpha_exact > _EPSILON,
            c_sort / np.maximum(c_alpha_exact, _EPSILON),
            0.0,
        )
        c_alpha = blur3x3(contributor_alpha.texture.as_float(), cap_u, cap_v, step)

        tile = c_alpha * tile_projection_gate(
            caster, receiver, self.settings.sort_bias, self.rank_step
        )
        if self.depth_texture is not None:
            tile = tile * self._depth_gate(su, sv, tap_u, tap_v)
        return tile

    def _depth_gate(
        self, su: np.ndarray, sv: np.ndarray, tap_u: np.ndarray, tap_v: np.ndarray
    ) -> np.ndarray:
        """Fade out taps whose caster sits below the receiver."""
        near, far = self.depth_range
        receiver = linearize_depth(
            sample_texture(self.depth_texture, su, sv)[..., 0], near, far
        )
        caster = linearize_depth(
            sample_texture(self.depth_texture, tap_u, tap_v)[..., 0], near, far
        )
        # Closer to the camera means higher above the map
        height_delta = receiver - caster
        softness = config.SHADOW_DEPTH_GATE_SOFTNESS
        return smoothstep(-softness, 0.0, height_delta).astype(np.float32)


def receiver_outdoors_sameness(
    receiver_outdoors: np.ndarray, caster_outdoors: np.ndarray
) -> np.ndarray:
    """1 where caster and receiver are in the same indoor/outdoor region."""
    return (receiver_outdoors == caster_outdoors).astype(np.float32)
