from __future__ import annotations

from collections.abc import Iterator

import pytest

from tilefx.util.live_vars import live_variable_registry


@pytest.fixture(autouse=True)
def clear_live_variable_registry() -> Iterator[None]:
    """Clear the global live variable registry before and after each test.

    Strict mode is switched off so timing scopes keep working on an emptied
    registry; tests that need strict mode turn it back on themselves.
    """
    previous_strict = live_variable_registry.strict
    live_variable_registry._variables.clear()
    live_variable_registry.strict = False
    yield
    live_variable_registry._variables.clear()
    live_variable_registry.strict = previous_strict
