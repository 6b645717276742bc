"""CacheRegistry - shared freshness caches keyed by name.

Usage:
    from kubestack.utils.cache_manager import CacheRegistry

    registry = CacheRegistry(store)

    # Create (and start) a cache on first use, read its state afterwards
    state = await registry.get("pods:all:default", options)

    # Force the next read to refetch
    await registry.invalidate("pods:all:default")

    # Get cache statistics
    stats = registry.stats()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from kubestack.constants.defaults import CACHE_KEY_PREFIX
from kubestack.models.cache.freshness_cache import CacheOptions, CacheState, FreshnessCache
from kubestack.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

_ALL_CLUSTERS_MARKER = ":all:"


class CacheRegistry:
    """Owns one ``FreshnessCache`` per key.

    Caches are created lazily on first use and live until ``evict`` or
    ``clear_all``. Registries are explicit objects; share one by passing
    it to whoever needs it.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock
        self._caches: dict[str, FreshnessCache[Any]] = {}
        self._started: set[str] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._caches

    def __len__(self) -> int:
        return len(self._caches)

    def get_or_create(self, key: str, options: CacheOptions[Any]) -> FreshnessCache[Any]:
        """Return the cache for ``key``, creating it from ``options`` if needed.

        Options of an existing cache are not replaced.
        """
        cache = self._caches.get(key)
        if cache is None:
            cache = FreshnessCache(key, options, store=self._store, clock=self._clock)
            self._caches[key] = cache
            logger.debug("Created cache %s", key)
        return cache

    async def get(self, key: str, options: CacheOptions[Any]) -> CacheState[Any]:
        """Return the current state, creating and starting the cache on first use."""
        cache = self.get_or_create(key, options)
        if key not in self._started:
            self._started.add(key)
            cache.start()
        return cache.state

    def peek(self, key: str) -> FreshnessCache[Any] | None:
        return self._caches.get(key)

    async def refresh(self, key: str) -> None:
        cache = self._caches.get(key)
        if cache is None:
            logger.warning("Cache not found for refresh: %s", key)
            return
        await cache.refresh()

    async def invalidate(self, key: str) -> None:
        """Clear a cache's value and stored record so the next refresh starts cold."""
        cache = self._caches.get(key)
        if cache is not None:
            await cache.clear()
            logger.debug("Invalidated cache: %s", key)
            return
        if self._store is not None:
            self._store.remove_item(f"{CACHE_KEY_PREFIX}{key}")
        logger.warning("Cache not found for invalidation: %s", key)

    async def evict(self, key: str) -> None:
        """Stop and forget a cache. Its stored record is kept."""
        cache = self._caches.pop(key, None)
        self._started.discard(key)
        if cache is not None:
            await cache.stop()

    async def clear_all(self) -> None:
        """Stop every cache and drop its stored record."""
        caches = list(self._caches.values())
        self._caches.clear()
        self._started.clear()
        for cache in caches:
            await cache.stop()
            await cache.clear()
        logger.info("Cleared %d cache(s)", len(caches))

    def reset_failures_for_cluster(self, cluster: str) -> int:
        """Reset failure counters of caches tied to a cluster.

        Matches keys containing the cluster name and keys spanning all
        clusters. Returns how many caches were reset.
        """
        reset = 0
        for key, cache in self._caches.items():
            if cluster in key or _ALL_CLUSTERS_MARKER in key:
                if cache.consecutive_failures:
                    reset += 1
                cache.reset_failures()
        return reset

    def reset_all_failures(self) -> None:
        for cache in self._caches.values():
            cache.reset_failures()

    def stats(self) -> dict[str, Any]:
        """Summarise registered caches."""
        states = {key: cache.state for key, cache in self._caches.items()}
        return {
            "entries": len(states),
            "keys": sorted(states),
            "failed": sorted(k for k, s in states.items() if s.is_failed),
            "loading": sorted(k for k, s in states.items() if s.is_loading),
            "demo_fallback": sorted(k for k, s in states.items() if s.is_demo_fallback),
        }

    async def stop_all(self) -> None:
        for cache in list(self._caches.values()):
            await cache.stop()


__all__ = ["CacheRegistry"]
