"""Event bus for cross-system notifications around the compositor.

The bus carries notifications the host raises (level/floor context changes)
and notifications the compositor raises (effect status changes). It is
fire-and-forget: handlers run synchronously, return nothing, and a failing
handler is logged without affecting the others.

Unlike a process-wide singleton, the compositor receives its bus explicitly
through its dependency record, so several compositors can coexist.

DO NOT USE FOR:
- Per-frame data flow (render targets, textures, wind state)
- Mask field delivery (use MaskRegistry subscriptions)
"""

import logging
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from tilefx.errors import EffectStatus

logger = logging.getLogger(__name__)


@dataclass
class CompositorEvent:
    """Base class for all compositor events."""

    pass


@dataclass
class LevelContextChangedEvent(CompositorEvent):
    """The host's active level or floor context changed.

    Attributes:
        payload: Host-defined details. The compositor only uses it as a signal
            to re-read the active floor from its floor provider.
    """

    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class EffectStatusChangedEvent(CompositorEvent):
    """An effect changed health, e.g. became degraded after a crash."""

    effect_name: str
    status: EffectStatus
    reason: str = ""


class EventBus:
    """Simple event bus for publish/subscribe pattern."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable]] = {}

    def subscribe(self, event_type: type, handler: Callable) -> None:
        """Subscribe a handler to an event type."""
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: Callable) -> None:
        """Unsubscribe a handler from an event type."""
        if event_type in self._handlers:
            with suppress(ValueError):
                self._handlers[event_type].remove(handler)

    def publish(self, event: CompositorEvent) -> None:
        """Publish an event to all subscribed handlers."""
        event_type = type(event)
        if event_type in self._handlers:
            # Copy the handler list to allow safe subscribe/unsubscribe during dispatch
            for handler in list(self._handlers[event_type]):
                try:
                    handler(event)
                except Exception:
                    logger.exception(f"Error handling event {event_type.__name__}")

    def handler_count(self, event_type: type) -> int:
        """Number of handlers currently subscribed to ``event_type``."""
        return len(self._handlers.get(event_type, ()))
