"""Post-processing chain: routes the scene colour through ping-pong buffers.

The chain only routes textures. For the ordered list of active post effects
(enabled, or flagged ``always_render``) it hands each effect its input texture
and output buffer, alternating between the pool targets ``post_a`` and
``post_b``; the last effect renders to the default framebuffer.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from itertools import count
from typing import TYPE_CHECKING

from tilefx import config
from tilefx.errors import EffectStatus

from .rasterizer import RasterRenderer
from .scene import Camera, Scene
from .targets import RenderTargetPool
from .textures import Texture

if TYPE_CHECKING:
    from tilefx.effects.base import PostProcessEffect

logger = logging.getLogger(__name__)

# Invoked per effect; the coordinator uses it to contain crashes.
type EffectRunner = Callable[[PostProcessEffect, Callable[[], None]], bool]


def _run_directly(effect: PostProcessEffect, render: Callable[[], None]) -> bool:
    render()
    return True


class PostProcessingChain:
    """Ordered post effects with dirty-flag re-sorting."""

    def __init__(self, pool: RenderTargetPool) -> None:
        self.pool = pool
        self._effects: list[PostProcessEffect] = []
        self._insertion: dict[int, int] = {}
        self._counter = count()
        self._ordered: list[PostProcessEffect] = []
        self._dirty = True

    def add(self, effect: PostProcessEffect) -> None:
        if effect in self._effects:
            return
        self._effects.append(effect)
        self._insertion[id(effect)] = next(self._counter)
        self._dirty = True

    def remove(self, effect: PostProcessEffect) -> None:
        if effect in self._effects:
            self._effects.remove(effect)
            self._insertion.pop(id(effect), None)
            self._dirty = True

    def mark_dirty(self) -> None:
        """Recompute the order on the next run (priorities or flags changed)."""
        self._dirty = True

    def set_enabled(self, effect: PostProcessEffect, enabled: bool) -> None:
        effect.enabled = enabled
        self._dirty = True

    @property
    def effects(self) -> list[PostProcessEffect]:
        return list(self._effects)

    def active_effects(self) -> list[PostProcessEffect]:
        """Effects that take part in this frame, in execution order."""
        if self._dirty:
            self._ordered = sorted(
                self._effects,
                key=lambda e: (e.render_layer.order, e.priority, self._insertion[id(e)]),
            )
            self._dirty = False
        return [
            e
            for e in self._ordered
            if (e.enabled or e.always_render) and not e.disposed
            and e.status is EffectStatus.OK
        ]

    def run(
        self,
        renderer: RasterRenderer,
        scene_texture: Texture,
        scene: Scene,
        camera: Camera,
        runner: EffectRunner = _run_directly,
    ) -> list[PostProcessEffect]:
        """Route ``scene_texture`` through every active effect to the screen.

        With no active effect the scene colour is copied to the screen.

        Returns:
            The effects that were asked to render, in order.
        """
        active = self.active_effects()
        state = renderer.save_state()
        try:
            if not active:
                renderer.set_render_target(None)
                renderer.blit(scene_texture)
                return []

            buffers = (
                self.pool.acquire(config.POST_TARGET_A),
                self.pool.acquire(config.POST_TARGET_B),
            )
            source = scene_texture
            read = None
            last = len(active) - 1
            for i, effect in enumerate(active):
                write = buffers[i % 2]
                effect.set_input_texture(source)
                effect.set_buffers(read, None if i == last else write)
                effect.set_render_to_screen(i == last)
                renderer.set_render_target(None if i == last else write)
                if not runner(effect, lambda e=effect: e.render(renderer, scene, camera)):
                    # A crashed pass leaves its buffer unwritten; pass the input on.
                    if i == last:
                        renderer.set_render_target(None)
                        renderer.blit(source)
                    else:
                        renderer.set_render_target(write)
                        renderer.blit(source)
                if i != last:
                    read = write
                    source = write.texture
            return active
        finally:
            renderer.restore_state(state)

    def clear(self) -> None:
        self._effects.clear()
        self._insertion.clear()
        self._ordered.clear()
        self._dirty = True
