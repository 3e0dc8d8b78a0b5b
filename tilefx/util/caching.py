from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

from .live_vars import live_variable_registry

KeyType = TypeVar("KeyType")
ValueType = TypeVar("ValueType")


@dataclass
class CacheStats:
    """Hit, miss and eviction counters of one ResourceCache."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def total_lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        if self.total_lookups == 0:
            return 0.0
        return (self.hits / self.total_lookups) * 100.0

    def __repr__(self) -> str:
        return (
            f"{self.hits} hits, {self.misses} misses, {self.evictions} evicted "
            f"({self.hit_rate:.1f}% hit rate)"
        )


class ResourceCache[KeyType, ValueType]:
    """
    A size-limited Least Recently Used (LRU) cache for derived compositor data.

    Surface fields, raw masks and decoded textures are expensive to rebuild
    and are looked up by keys derived from their source (raster identity,
    version and options, or the texture source string). Lookups refresh an
    entry; storing past ``max_size`` evicts the least recently used one.

    The cache publishes its counters as the ``cache.<name>.stats`` live
    variable. A newer cache with the same name takes over the variable.

    Args:
        on_evict: Called with every value leaving the cache, whether evicted,
            discarded or cleared.
    """

    def __init__(
        self,
        name: str,
        max_size: int = 16,
        on_evict: Callable[[ValueType], None] | None = None,
    ) -> None:
        if max_size <= 0:
            raise ValueError("Cache max_size must be a positive integer.")
        self.name = name
        self.max_size = max_size
        self.on_evict = on_evict
        self.stats = CacheStats()
        self._cache: OrderedDict[KeyType, ValueType] = OrderedDict()

        live_variable_registry.register(
            f"cache.{self.name}.stats",
            lambda: str(self.stats),
            description=f"Live stats for the {self.name} cache.",
            replace=True,
        )

    def get(self, key: KeyType) -> ValueType | None:
        """Return the cached value and mark it recently used, or None."""
        if key not in self._cache:
            self.stats.misses += 1
            return None

        self._cache.move_to_end(key)
        self.stats.hits += 1
        return self._cache[key]

    def peek(self, key: KeyType) -> ValueType | None:
        """Like ``get`` but leaves recency and stats untouched."""
        return self._cache.get(key)

    def store(self, key: KeyType, value: ValueType) -> None:
        """Store ``value``, evicting the least recently used entries past max_size."""
        self._cache[key] = value
        self._cache.move_to_end(key)

        while len(self._cache) > self.max_size:
            _evicted_key, evicted_value = self._cache.popitem(last=False)
            self.stats.evictions += 1
            if self.on_evict:
                self.on_evict(evicted_value)

    def discard_where(self, predicate: Callable[[KeyType], bool]) -> int:
        """Drop every entry whose key matches ``predicate``.

        Returns:
            The number of entries dropped.
        """
        doomed = [key for key in self._cache if predicate(key)]
        for key in doomed:
            value = self._cache.pop(key)
            if self.on_evict:
                self.on_evict(value)
        return len(doomed)

    def clear(self) -> None:
        """Drop every entry and reset stats."""
        if self.on_evict:
            for value in self._cache.values():
                self.on_evict(value)

        self._cache.clear()
        self.stats = CacheStats()

    def __contains__(self, key: object) -> bool:
        return key in self._cache

    def __iter__(self) -> Iterator[KeyType]:
        return iter(list(self._cache))

    def __len__(self) -> int:
        return len(self._cache)

    def __str__(self) -> str:
        return (
            f"{self.name} Cache: {len(self)}/{self.max_size} entries, "
            f"{self.stats!r}"
        )

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} '{self.name}' "
            f"size={len(self)}/{self.max_size}, stats={self.stats!r}>"
        )
