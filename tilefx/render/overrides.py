"""Stacked-restore guard for temporary scene overrides.

Capture passes temporarily change camera frustums, mesh visibility, layer
masks, material opacity and shader uniforms. Every change goes through an
``OverrideStack`` which records how to undo it; leaving the ``with`` block
undoes all changes in reverse order, whether the block finished normally or
raised.

    with OverrideStack() as overrides:
        overrides.set_attr(camera, "frustum_scale", (sx, sy))
        overrides.set_item(material.uniforms, "u_tile_opacity", 1.0)
        renderer.render(scene, camera)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, MutableMapping
from types import TracebackType
from typing import Any

logger = logging.getLogger(__name__)

_MISSING = object()


class OverrideStack:
    """Records reversible assignments and undoes them in LIFO order."""

    def __init__(self) -> None:
        self._undo: list[Callable[[], None]] = []

    @property
    def depth(self) -> int:
        """Number of overrides currently applied."""
        return len(self._undo)

    def set_attr(self, obj: object, name: str, value: Any) -> None:
        """Set ``obj.name = value`` until the stack is restored."""
        previous = getattr(obj, name)
        self._undo.append(lambda: setattr(obj, name, previous))
        setattr(obj, name, value)

    def set_item(self, mapping: MutableMapping, key: Any, value: Any) -> None:
        """Set ``mapping[key] = value``; a key that was absent is removed again."""
        previous = mapping.get(key, _MISSING)

        def undo() -> None:
            if previous is _MISSING:
                mapping.pop(key, None)
            else:
                mapping[key] = previous

        self._undo.append(undo)
        mapping[key] = value

    def push(self, undo: Callable[[], None]) -> None:
        """Register an arbitrary undo callback."""
        self._undo.append(undo)

    def restore(self) -> None:
        """Undo every override, most recent first.

        Every undo runs even when an earlier one fails; the first failure is
        re-raised once the stack is empty.
        """
        first_error: Exception | None = None
        while self._undo:
            undo = self._undo.pop()
            try:
                undo()
            except Exception as e:
                logger.exception("Failed to restore a render override")
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def __enter__(self) -> OverrideStack:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is None:
            self.restore()
            return
        # Keep the original exception as the one that propagates
        try:
            self.restore()
        except Exception:
            logger.debug("Suppressed restore failure while unwinding an exception")
