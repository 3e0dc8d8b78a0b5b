"""Effect coordinator: the per-frame orchestrator of the compositor.

Each ``render(time_info)``:

0. Pump the texture loader so finished loads install on this thread.
1. On the first frame with scene content, populate the floor bus, build and
   publish the derived mask fields, and let overlay effects bind overlays.
2. Apply floor visibility from the floor provider (also after a level context
   change); a floor change lets the mask registry drop floor-specific fields.
3. Advance wind integrators, then update every usable effect in priority order.
4. Capture overhead shadows when an effect consumes the shadow factor or the
   roof alpha.
5. Bind the captured textures to their consumers.
6. Draw the bus into the scene target, route it through the post chain to the
   screen, then draw the overlay layer on top.

Every effect call is contained: an exception is logged with its traceback,
the effect is marked degraded for the rest of the session and skipped. The
coordinator itself never re-raises effect errors.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from contextlib import nullcontext
from dataclasses import dataclass, field

from tilefx import config
from tilefx.effects.base import (
    BusConsumer,
    EffectBase,
    EffectState,
    MaskConsumer,
    OverlayLayerEffect,
    PostProcessEffect,
    RoofAlphaConsumer,
    SceneMeshEffect,
    ShadowFactorConsumer,
    WindConsumer,
)
from tilefx.errors import (
    EffectCrashError,
    EffectStatus,
    NoImageDataError,
    ResourceExhaustedError,
)
from tilefx.events import EffectStatusChangedEvent, EventBus, LevelContextChangedEvent
from tilefx.masks.registry import MaskPolicy, MaskRegistry
from tilefx.masks.surface_model import SurfaceModelBuilder, SurfaceModelOptions
from tilefx.providers import (
    ActiveFloorProvider,
    AssetBundle,
    DepthPassProvider,
    MaskAsset,
    SceneData,
    SceneDimensions,
    WeatherSource,
    ZoomProvider,
)
from tilefx.render.floor_bus import FloorRenderBus
from tilefx.render.post_chain import PostProcessingChain
from tilefx.render.rasterizer import RasterRenderer
from tilefx.render.scene import Camera
from tilefx.render.shadow_capture import (
    ShadowCapturePipeline,
    ShadowCaptureResult,
    ShadowSettings,
)
from tilefx.render.targets import RenderTarget, RenderTargetPool
from tilefx.render.textures import TextureLoader
from tilefx.types import ColorRGBAf, FloorIndex, MaskId, TimeInfo
from tilefx.util.caching import CacheStats
from tilefx.util.live_vars import (
    MetricSpec,
    live_variable_registry,
    record_time_live_variable,
)
from tilefx.util.metrics import MetricSummary
from tilefx.wind import WindAdvection

logger = logging.getLogger(__name__)

OUTDOORS_MASK_ID = "outdoors"

_METRICS = [
    MetricSpec("time.fx.frame_ms", "Whole compositor frame", config.METRIC_SAMPLES),
    MetricSpec("time.fx.populate_ms", "Lazy scene population", config.METRIC_SAMPLES),
    MetricSpec("time.fx.update_ms", "Wind and effect updates", config.METRIC_SAMPLES),
    MetricSpec("time.fx.shadow_ms", "Shadow capture and composite", config.METRIC_SAMPLES),
    MetricSpec("time.fx.scene_ms", "Floor bus into the scene target", config.METRIC_SAMPLES),
    MetricSpec("time.fx.post_ms", "Post-processing chain", config.METRIC_SAMPLES),
    MetricSpec("time.fx.overlay_ms", "Overlay layer pass", config.METRIC_SAMPLES),
]

# Effect calls timed per effect under time.fx.effect.<name>.<phase>_ms
_TIMED_PHASES = ("update", "render")


def effect_metric_name(effect_name: str, phase: str) -> str:
    return f"time.fx.effect.{effect_name}.{phase}_ms"


@dataclass(frozen=True)
class EffectDiagnostics:
    """One registered effect as seen by the coordinator."""

    name: str
    effect_type: str
    status: EffectStatus
    state: EffectState
    enabled: bool
    priority: int
    update_ms: MetricSummary
    render_ms: MetricSummary
    last_error: str | None = None


@dataclass(frozen=True)
class CompositorDiagnostics:
    """Snapshot of the compositor's health and timing.

    Attributes:
        phases: Frame phase timings keyed by phase (``frame``, ``post``, ...).
        effects: Per-effect diagnostics in update order.
        caches: Counters of the surface-field, raw-mask and texture caches.
        render_targets: Live pool targets and their sizes.
    """

    frames: int
    phases: dict[str, MetricSummary]
    effects: dict[str, EffectDiagnostics]
    caches: dict[str, CacheStats]
    render_targets: dict[str, tuple[int, int]]
    continuous: bool


@dataclass
class CoordinatorDependencies:
    """Everything the coordinator talks to, passed in explicitly.

    Attributes:
        pool: Render-target pool; created at the drawing-buffer size when omitted.
        mask_options: Surface-model options per mask type (``MaskAsset.type``).
        clear_color: Colour the scene target is cleared to each frame.
    """

    renderer: RasterRenderer
    camera: Camera
    asset_bundle: AssetBundle
    scene_data: SceneData
    floor_provider: ActiveFloorProvider
    weather: WeatherSource
    dimensions: SceneDimensions
    zoom: ZoomProvider
    depth: DepthPassProvider | None = None
    events: EventBus = field(default_factory=EventBus)
    masks: MaskRegistry = field(default_factory=MaskRegistry)
    loader: TextureLoader = field(default_factory=TextureLoader)
    pool: RenderTargetPool | None = None
    surface_builder: SurfaceModelBuilder = field(default_factory=SurfaceModelBuilder)
    mask_options: Mapping[MaskId, SurfaceModelOptions] = field(default_factory=dict)
    clear_color: ColorRGBAf = (0.0, 0.0, 0.0, 1.0)


class EffectCoordinator:
    """Owns the floor bus, the shadow pipeline and the post chain for one view."""

    def __init__(self, deps: CoordinatorDependencies) -> None:
        self.deps = deps
        self.renderer = deps.renderer
        self.camera = deps.camera
        width, height = self.renderer.get_drawing_buffer_size()
        self.pool = deps.pool or RenderTargetPool(width, height)
        self.bus = FloorRenderBus(deps.loader)
        self.shadows = ShadowCapturePipeline(self.pool)
        self.post_chain = PostProcessingChain(self.pool)
        self.last_shadow: ShadowCaptureResult | None = None
        self.frames = 0
        self.disposed = False

        self._effects: dict[str, EffectBase] = {}
        self._errors: dict[str, str] = {}
        self._winds: dict[str, WindAdvection] = {}
        self._published_masks: set[MaskId] = set()
        self._populated = False
        self._active_floor: FloorIndex | None = None
        self._floor_dirty = True

        deps.events.subscribe(LevelContextChangedEvent, self._on_level_context_changed)
        live_variable_registry.register_metrics(_METRICS)

    # ------------------------------------------------------------------
    # Registration and status
    # ------------------------------------------------------------------
    def register(self, effect: EffectBase) -> None:
        """Add ``effect``, initialize it and wire it to the data it consumes.

        Raises:
            ValueError: An effect with the same name is already registered.
        """
        if effect.name in self._effects:
            raise ValueError(f"Effect '{effect.name}' is already registered")
        self._effects[effect.name] = effect
        live_variable_registry.register_metrics(
            [
                MetricSpec(
                    effect_metric_name(effect.name, phase),
                    f"{effect.name} {phase}",
                    config.METRIC_SAMPLES,
                )
                for phase in _TIMED_PHASES
            ]
        )

        if not self._guard(
            effect,
            "initialize",
            lambda: effect.initialize(self.renderer, self.bus.scene, self.camera),
        ):
            return
        effect.set_base_mesh(None, self.deps.asset_bundle)

        if isinstance(effect, WindConsumer):
            self._guard(effect, "wind setup", lambda: self._attach_wind(effect))
        if isinstance(effect, MaskConsumer):
            self._guard(effect, "mask binding", lambda: effect.bind_masks(self.deps.masks))
        if isinstance(effect, BusConsumer):
            self._guard(effect, "bus binding", lambda: effect.attach_bus(self.bus))
        if isinstance(effect, PostProcessEffect):
            self.post_chain.add(effect)
        if self._populated and isinstance(effect, SceneMeshEffect):
            self._populate_effect(effect)
        logger.debug(f"Registered effect {effect!r}")

    def _attach_wind(self, effect: WindConsumer) -> None:
        wind = WindAdvection(
            self.deps.weather, self.deps.dimensions, **effect.wind_options()
        )
        self._winds[effect.name] = wind
        effect.attach_wind(wind)

    def unregister(self, name: str) -> bool:
        """Dispose and remove the effect called ``name``; False if unknown."""
        effect = self._effects.pop(name, None)
        if effect is None:
            return False
        self._winds.pop(name, None)
        if isinstance(effect, PostProcessEffect):
            self.post_chain.remove(effect)
        self._guard(effect, "dispose", effect.dispose, force=True)
        self._errors.pop(name, None)
        live_variable_registry.unregister_prefix(f"time.fx.effect.{name}.")
        return True

    def effect(self, name: str) -> EffectBase | None:
        return self._effects.get(name)

    @property
    def effects(self) -> list[EffectBase]:
        """Registered effects in update order (priority, then registration)."""
        return sorted(self._effects.values(), key=lambda e: e.priority)

    def effect_status(self, name: str) -> EffectStatus | None:
        effect = self._effects.get(name)
        return None if effect is None else effect.status

    def effect_statuses(self) -> dict[str, EffectStatus]:
        return {name: effect.status for name, effect in self._effects.items()}

    def diagnostics(self) -> CompositorDiagnostics:
        """Snapshot of frame timings, per-effect health and cache counters."""
        phases = {
            spec.name.removeprefix("time.fx.").removesuffix("_ms"): (
                live_variable_registry.metric_summary(spec.name)
            )
            for spec in _METRICS
        }
        effects = {
            effect.name: EffectDiagnostics(
                name=effect.name,
                effect_type=effect.effect_type,
                status=effect.status,
                state=effect.state,
                enabled=effect.enabled,
                priority=effect.priority,
                update_ms=live_variable_registry.metric_summary(
                    effect_metric_name(effect.name, "update")
                ),
                render_ms=live_variable_registry.metric_summary(
                    effect_metric_name(effect.name, "render")
                ),
                last_error=self._errors.get(effect.name),
            )
            for effect in self.effects
        }
        caches = dict(self.deps.surface_builder.cache_stats())
        caches["textures"] = self.deps.loader.cache_stats()
        return CompositorDiagnostics(
            frames=self.frames,
            phases=phases,
            effects=effects,
            caches=caches,
            render_targets=self.pool.sizes(),
            continuous=self.wants_continuous_render(),
        )

    def set_effect_enabled(self, name: str, enabled: bool) -> bool:
        effect = self._effects.get(name)
        if effect is None:
            return False

        def apply() -> None:
            effect.enabled = enabled

        self._guard(effect, "enable", apply, force=True)
        self.post_chain.mark_dirty()
        return True

    # ------------------------------------------------------------------
    # Error containment
    # ------------------------------------------------------------------
    def _usable(self, effect: EffectBase) -> bool:
        return effect.status is EffectStatus.OK and not effect.disposed

    def _guard(
        self,
        effect: EffectBase,
        phase: str,
        call: Callable[[], object],
        *,
        force: bool = False,
    ) -> bool:
        """Run one effect call; on failure log it and degrade the effect.

        Args:
            force: Run even when the effect is already degraded (dispose, enable).

        Returns:
            True when the call completed.
        """
        if not force and effect.status is EffectStatus.DEGRADED:
            return False
        timing = (
            record_time_live_variable(effect_metric_name(effect.name, phase))
            if phase in _TIMED_PHASES
            else nullcontext()
        )
        try:
            with timing:
                call()
        except Exception as e:
            error = EffectCrashError(effect.name, phase, e)
            logger.exception(f"{error}")
            self._degrade(effect, str(error))
            return False
        return True

    def _degrade(self, effect: EffectBase, reason: str) -> None:
        self._errors.setdefault(effect.name, reason)
        if effect.status is EffectStatus.DEGRADED:
            return
        effect.status = EffectStatus.DEGRADED
        self.post_chain.mark_dirty()
        if isinstance(effect, SceneMeshEffect):
            for overlay in effect.overlays.values():
                overlay.material.visible = False
        self.deps.events.publish(
            EffectStatusChangedEvent(effect.name, EffectStatus.DEGRADED, reason)
        )

    # ------------------------------------------------------------------
    # Population
    # ------------------------------------------------------------------
    def _has_scene_content(self) -> bool:
        return self.deps.scene_data.tile_count() > 0 or bool(self.deps.asset_bundle.masks)

    def _current_floor(self) -> FloorIndex:
        active = self.deps.floor_provider.get_active_floor()
        if active is not None:
            return active.index
        # No active floor: everything is shown
        return max(self.bus.floors(), default=0)

    def _populate(self) -> None:
        self._populated = True
        try:
            self.bus.populate(self.deps.scene_data)
        except ValueError:
            logger.exception("Scene data could not be placed on the floor bus")
            self.bus.clear()

        floor = self._current_floor()
        for asset in self.deps.asset_bundle.masks:
            if asset.floor is not None:
                self.deps.masks.set_policy(
                    asset.type, MaskPolicy(preserve_across_floors=False)
                )
        self._publish_masks(floor)

        for effect in self.effects:
            if isinstance(effect, SceneMeshEffect):
                self._populate_effect(effect)
        logger.debug(
            f"Populated {self.deps.scene_data.tile_count()} tiles and "
            f"{len(self._published_masks)} mask fields"
        )

    def _populate_effect(self, effect: SceneMeshEffect) -> None:
        self._guard(
            effect,
            "populate",
            lambda: effect.populate(self.bus, self.deps.scene_data, self.deps.loader),
        )
        if self.bus.visible_max_floor is not None:
            self.bus.set_visible_floors(self.bus.visible_max_floor)

    def _mask_for_floor(self, mask_type: MaskId, floor: FloorIndex) -> MaskAsset | None:
        candidates = self.deps.asset_bundle.by_type(mask_type)
        exact = [m for m in candidates if m.floor == floor]
        shared = [m for m in candidates if m.floor is None]
        return (exact or shared or [None])[0]

    def _publish_masks(self, floor: FloorIndex, only: set[MaskId] | None = None) -> None:
        types = dict.fromkeys(m.type for m in self.deps.asset_bundle.masks)
        for mask_type in types:
            if only is not None and mask_type not in only:
                continue
            asset = self._mask_for_floor(mask_type, floor)
            if asset is None:
                if self.deps.masks.get(mask_type) is not None:
                    self.deps.masks.clear(mask_type)
                continue
            options = self.deps.mask_options.get(mask_type)
            try:
                surface = self.deps.surface_builder.build(asset.raster, options)
            except NoImageDataError as e:
                logger.warning(f"Mask '{asset.id}' ({mask_type}) skipped: {e}")
                continue
            self.deps.masks.publish(mask_type, surface)
            self._published_masks.add(mask_type)

    # ------------------------------------------------------------------
    # Floors
    # ------------------------------------------------------------------
    def _on_level_context_changed(self, event: LevelContextChangedEvent) -> None:
        self._floor_dirty = True

    def _sync_floor(self) -> None:
        floor = self._current_floor()
        if floor == self._active_floor and not self._floor_dirty:
            return
        self._floor_dirty = False
        self.bus.set_visible_floors(floor)
        if floor == self._active_floor:
            return

        self._active_floor = floor
        cleared = set(self.deps.masks.on_floor_change(floor))
        floor_specific = {
            m.type for m in self.deps.asset_bundle.masks if m.floor is not None
        }
        if self._populated and (cleared or floor_specific):
            self._publish_masks(floor, only=cleared | floor_specific)
        logger.debug(f"Active floor is now {floor}")

    # ------------------------------------------------------------------
    # Frame
    # ------------------------------------------------------------------
    def render(self, time_info: TimeInfo) -> None:
        """Compose one frame into the renderer's default framebuffer."""
        if self.disposed:
            return
        with record_time_live_variable("time.fx.frame_ms"):
            self._render_frame(time_info)
        self.frames += 1

    def _render_frame(self, time_info: TimeInfo) -> None:
        self.deps.loader.pump()

        if not self._populated and self._has_scene_content():
            with record_time_live_variable("time.fx.populate_ms"):
                self._populate()
        self._sync_floor()

        with record_time_live_variable("time.fx.update_ms"):
            self._update(time_info)

        width, height = self.renderer.get_drawing_buffer_size()
        if width <= 0 or height <= 0:
            return

        with record_time_live_variable("time.fx.shadow_ms"):
            self._capture_shadows()

        with record_time_live_variable("time.fx.scene_ms"):
            scene_target = self.pool.acquire(config.SCENE_TARGET_NAME)
            self.bus.render_to(
                self.renderer, self.camera, scene_target, self.deps.clear_color
            )
            self._render_scene_effects(scene_target)

        with record_time_live_variable("time.fx.post_ms"):
            self.post_chain.run(
                self.renderer,
                scene_target.texture,
                self.bus.scene,
                self.camera,
                runner=lambda effect, draw: self._guard(effect, "render", draw),
            )

        with record_time_live_variable("time.fx.overlay_ms"):
            self._render_overlay_layer()

    def _update(self, time_info: TimeInfo) -> None:
        for name, wind in self._winds.items():
            effect = self._effects.get(name)
            if effect is not None and self._usable(effect) and effect.enabled:
                self._guard(
                    effect,
                    "wind",
                    lambda w=wind, e=effect: self._advance_wind(w, e, time_info),
                )

        for effect in self.effects:
            if not self._usable(effect) or not (effect.enabled or effect.always_render):
                continue
            if self._guard(effect, "update", lambda e=effect: e.update(time_info)):
                effect.mark_running()

    @staticmethod
    def _advance_wind(wind: WindAdvection, effect: WindConsumer, time_info: TimeInfo) -> None:
        # Options follow live parameter edits
        wind.configure(**effect.wind_options())
        wind.update(time_info)

    def _capture_shadows(self) -> None:
        usable = [e for e in self.effects if self._usable(e) and e.enabled]
        shadow_consumers = [e for e in usable if isinstance(e, ShadowFactorConsumer)]
        roof_consumers = [e for e in usable if isinstance(e, RoofAlphaConsumer)]
        if not shadow_consumers and not roof_consumers:
            return

        owner = (shadow_consumers or roof_consumers)[0]
        self.shadows.owner = owner.name
        holder: list[ShadowCaptureResult | None] = [None]

        def capture() -> None:
            settings = (
                shadow_consumers[0].shadow_settings()
                if shadow_consumers
                else ShadowSettings()
            )
            holder[0] = self.shadows.capture(
                self.renderer,
                self.bus,
                self.camera,
                settings=settings,
                time_of_day=self.deps.weather.get_current_state().time_of_day,
                zoom=self.deps.zoom(),
                projection_tile_ids=self.deps.scene_data.projecting_tile_ids(),
                outdoors=self.deps.masks.get(OUTDOORS_MASK_ID),
                dimensions=self.deps.dimensions,
                depth=self.deps.depth,
            )

        if not self._guard(owner, "shadow capture", capture):
            return
        result = holder[0]
        if result is None:
            return
        self.last_shadow = result

        for consumer in shadow_consumers:
            self._guard(
                consumer,
                "shadow binding",
                lambda c=consumer: c.set_shadow_factor(result.shadow_factor, result.uv_remap),
            )
        for consumer in roof_consumers:
            self._guard(
                consumer,
                "roof binding",
                lambda c=consumer: c.set_roof_alpha(result.roof_alpha, result.uv_remap),
            )

    def _render_scene_effects(self, scene_target: RenderTarget) -> None:
        """Effects outside the three standard kinds draw into the scene target."""
        state = self.renderer.save_state()
        try:
            self.renderer.set_render_target(scene_target)
            for effect in self.effects:
                if isinstance(
                    effect, (PostProcessEffect, SceneMeshEffect, OverlayLayerEffect)
                ):
                    continue
                if self._usable(effect) and effect.enabled:
                    self._guard(
                        effect,
                        "render",
                        lambda e=effect: e.render(self.renderer, self.bus.scene, self.camera),
                    )
        finally:
            self.renderer.restore_state(state)

    def _render_overlay_layer(self) -> None:
        state = self.renderer.save_state()
        try:
            self.renderer.set_render_target(None)
            for effect in self.effects:
                if isinstance(effect, OverlayLayerEffect) and self._usable(effect):
                    self._guard(
                        effect,
                        "render",
                        lambda e=effect: e.render(self.renderer, self.bus.scene, self.camera),
                    )
        finally:
            self.renderer.restore_state(state)

    def wants_continuous_render(self) -> bool:
        """True while an active, healthy effect animates on its own."""
        return any(
            effect.enabled
            and self._usable(effect)
            and effect.requires_continuous_render
            and effect.is_active()
            for effect in self._effects.values()
        )

    # ------------------------------------------------------------------
    # Size and teardown
    # ------------------------------------------------------------------
    def resize(self, width: int, height: int) -> None:
        """Propagate a drawing-buffer resize to the renderer, pool and effects."""
        self.renderer.set_size(width, height)
        self.camera.set_viewport(width, height)
        try:
            self.pool.resize(width, height)
        except ResourceExhaustedError as e:
            logger.warning(f"Render targets not resized: {e}")
            self._release_stranded(e.stranded)
        for effect in self.effects:
            self._guard(
                effect, "resize", lambda e=effect: e.on_resize(width, height)
            )

    def _release_stranded(self, names: Iterable[str]) -> None:
        """Drop targets a failed resize left at the wrong size.

        The pool recreates them lazily at its own size; the effects that owned
        them are degraded.
        """
        for name in names:
            owner = self._effects.get(self.pool.owner_of(name) or "")
            self.pool.dispose(name)
            if owner is not None:
                self._degrade(
                    owner, f"Render target '{name}' could not be restored after a resize"
                )

    def dispose(self) -> None:
        """Dispose every effect and owned resource; safe to call repeatedly."""
        if self.disposed:
            return
        self.disposed = True
        for effect in list(self._effects.values()):
            self._guard(effect, "dispose", effect.dispose, force=True)
            live_variable_registry.unregister_prefix(f"time.fx.effect.{effect.name}.")
        self._effects.clear()
        self._errors.clear()
        self._winds.clear()
        self.post_chain.clear()
        self.shadows.dispose()
        self.bus.dispose()
        self.pool.dispose_all()
        for mask_id in self._published_masks:
            self.deps.masks.clear(mask_id)
        self._published_masks.clear()
        self.deps.events.unsubscribe(
            LevelContextChangedEvent, self._on_level_context_changed
        )
        logger.debug("Effect coordinator disposed")
