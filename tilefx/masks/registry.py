"""Registry of derived mask fields with publish/subscribe delivery.

Producers publish a field (or ``None`` to clear) under a mask id; every
subscriber of that id is called synchronously, in subscription order, with
the new value. Publishing the same object twice broadcasts twice: consumers
that care must de-duplicate themselves.

Subscribers receive a ``Subscription`` handle and keep only that. The handle
holds a weak reference back to the registry, so a subscriber never keeps a
disposed registry alive.
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from itertools import count

from tilefx.types import FloorIndex, MaskId

from .surface_model import SurfaceField

logger = logging.getLogger(__name__)

type MaskCallback = Callable[[SurfaceField | None], None]


@dataclass(frozen=True)
class MaskPolicy:
    """Per-mask behaviour across floor transitions.

    Attributes:
        preserve_across_floors: Keep the published field when the active floor
            changes. When False the mask is cleared (subscribers get ``None``)
            and the host republishes the field for the new floor.
    """

    preserve_across_floors: bool = True


class Subscription:
    """Handle returned by ``MaskRegistry.subscribe``."""

    def __init__(self, registry: MaskRegistry, mask_id: MaskId, token: int) -> None:
        self._registry = weakref.ref(registry)
        self.mask_id = mask_id
        self.token = token
        self.active = True

    def unsubscribe(self) -> None:
        """Detach the callback. Safe to call more than once."""
        registry = self._registry()
        if registry is not None:
            registry.unsubscribe(self)
        self.active = False

    def __repr__(self) -> str:
        return f"Subscription(mask_id={self.mask_id!r}, active={self.active})"


class MaskRegistry:
    """Current derived field per mask id plus observers of each id."""

    def __init__(self) -> None:
        self._fields: dict[MaskId, SurfaceField | None] = {}
        self._subscribers: dict[MaskId, dict[int, MaskCallback]] = {}
        self._policies: dict[MaskId, MaskPolicy] = {}
        self._tokens = count(1)
        self.active_floor: FloorIndex | None = None

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------
    def get(self, mask_id: MaskId) -> SurfaceField | None:
        return self._fields.get(mask_id)

    def ids(self) -> list[MaskId]:
        """Ids that currently hold a field."""
        return [mask_id for mask_id, f in self._fields.items() if f is not None]

    def publish(self, mask_id: MaskId, field: SurfaceField | None) -> None:
        """Store ``field`` for ``mask_id`` and notify its subscribers in order."""
        self._fields[mask_id] = field
        # Copy so callbacks may subscribe/unsubscribe during delivery
        for callback in list(self._subscribers.get(mask_id, {}).values()):
            try:
                callback(field)
            except Exception:
                logger.exception(f"Mask subscriber for '{mask_id}' failed")

    def clear(self, mask_id: MaskId) -> None:
        """Publish ``None`` for ``mask_id``."""
        self.publish(mask_id, None)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(
        self, mask_id: MaskId, callback: MaskCallback, *, replay: bool = False
    ) -> Subscription:
        """Register ``callback`` for future publishes of ``mask_id``.

        Args:
            mask_id: The mask to observe.
            callback: Called with the new field, or ``None`` when cleared.
            replay: Immediately deliver the current field, if one is held.
        """
        token = next(self._tokens)
        self._subscribers.setdefault(mask_id, {})[token] = callback
        handle = Subscription(self, mask_id, token)
        if replay and self._fields.get(mask_id) is not None:
            callback(self._fields[mask_id])
        return handle

    def unsubscribe(self, handle: Subscription) -> None:
        subscribers = self._subscribers.get(handle.mask_id)
        if subscribers is not None:
            subscribers.pop(handle.token, None)
            if not subscribers:
                del self._subscribers[handle.mask_id]
        handle.active = False

    def subscriber_count(self, mask_id: MaskId) -> int:
        return len(self._subscribers.get(mask_id, {}))

    # ------------------------------------------------------------------
    # Policies and floor transitions
    # ------------------------------------------------------------------
    def set_policy(self, mask_id: MaskId, policy: MaskPolicy) -> None:
        self._policies[mask_id] = policy

    def policy(self, mask_id: MaskId) -> MaskPolicy:
        return self._policies.get(mask_id, MaskPolicy())

    def on_floor_change(self, floor: FloorIndex) -> list[MaskId]:
        """Clear every mask whose policy does not survive a floor change.

        Returns:
            The ids that were cleared, so the caller can republish them.
        """
        if floor == self.active_floor:
            return []
        previous = self.active_floor
        self.active_floor = floor
        if previous is None:
            return []

        cleared = [
            mask_id
            for mask_id in self.ids()
            if not self.policy(mask_id).preserve_across_floors
        ]
        for mask_id in cleared:
            self.clear(mask_id)
        if cleared:
            logger.debug(f"Floor {previous} -> {floor}: cleared masks {cleared}")
        return cleared

    def dispose(self) -> None:
        """Drop all fields and subscribers without notifying anyone."""
        self._fields.clear()
        self._subscribers.clear()
        self._policies.clear()
