"""Stale-while-revalidate cache with failure tracking and demo fallback.

A ``FreshnessCache`` wraps one async fetcher. Readers always receive a
``CacheState`` carrying a usable value: the last good result, the initial
value while nothing has loaded yet, or the demo value once the source is
deemed unusable. The stored value only ever changes on a successful,
non-empty fetch, and only such results are persisted.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sized
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from kubestack.constants.defaults import (
    CACHE_KEY_PREFIX,
    CACHE_VERSION,
    FAILURE_BACKOFF_MAX_EXPONENT,
    FAILURE_BACKOFF_MULTIPLIER,
    MAX_CONSECUTIVE_FAILURES,
    REFRESH_RATES,
)
from kubestack.constants.timeouts import MAX_BACKOFF_INTERVAL
from kubestack.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

Fetcher = Callable[[], Awaitable[T]]
StateCallback = Callable[["CacheState[Any]"], None]


def effective_interval(base_interval: float, consecutive_failures: int) -> float:
    """Apply exponential failure backoff to a refresh interval."""
    if consecutive_failures <= 0:
        return base_interval
    exponent = min(consecutive_failures, FAILURE_BACKOFF_MAX_EXPONENT)
    return min(base_interval * FAILURE_BACKOFF_MULTIPLIER**exponent, MAX_BACKOFF_INTERVAL)


@dataclass(frozen=True)
class CacheState(Generic[T]):
    """Immutable snapshot of what a cache reports to readers."""

    value: T
    is_loading: bool
    is_refreshing: bool
    is_failed: bool
    consecutive_failures: int
    is_demo_fallback: bool
    last_fetched_at: float | None = None


@dataclass
class CacheOptions(Generic[T]):
    """Options describing how a cache key is fetched and presented.

    ``demo_value`` defaults to ``initial_value``. ``refresh_interval`` (in
    seconds) takes precedence over ``category``; with neither, the cache
    only refreshes eagerly on start and on demand.
    """

    fetcher: Fetcher[T]
    initial_value: T
    demo_value: T | None = None
    ttl_seconds: float | None = None
    should_persist: bool = True
    demo_when_empty: bool = False
    refresh_interval: float | None = None
    category: str | None = None
    value_type: Any = None
    enabled: bool = True

    def resolved_interval(self) -> float | None:
        if self.refresh_interval is not None:
            return self.refresh_interval
        if self.category is not None:
            return REFRESH_RATES.get(self.category, REFRESH_RATES["default"])
        return None


class _StoredRecord(BaseModel):
    value: Any
    timestamp: float
    version: int


class FreshnessCache(Generic[T]):
    """Cache entry for a single key.

    At most one fetch runs at a time; a refresh requested while one is in
    flight is dropped. Fetch exceptions are converted into state and never
    reach the caller.
    """

    def __init__(
        self,
        key: str,
        options: CacheOptions[T],
        store: KeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._key = key
        self._fetcher = options.fetcher
        self._initial_value = options.initial_value
        self._demo_value = (
            options.demo_value if options.demo_value is not None else options.initial_value
        )
        self._ttl_seconds = options.ttl_seconds
        self._should_persist = options.should_persist and store is not None
        self._demo_when_empty = options.demo_when_empty
        self._refresh_interval = options.resolved_interval()
        self._enabled = options.enabled
        self._adapter: TypeAdapter[Any] = TypeAdapter(options.value_type or Any)
        self._store = store
        self._clock = clock

        self._value: T = options.initial_value
        self._has_data = False
        self._last_fetched_at: float | None = None
        self._consecutive_failures = 0
        self._is_fetching = False
        self._is_loading = self._enabled
        self._is_refreshing = False
        self._empty_fallback = False

        self._subscribers: list[StateCallback] = []
        self._task: asyncio.Task[None] | None = None

        if self._should_persist:
            self._rehydrate()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def key(self) -> str:
        return self._key

    @property
    def value(self) -> T:
        """The stored last-good value (never the demo substitute)."""
        return self._value

    @property
    def demo_value(self) -> T:
        return self._demo_value

    @property
    def is_fetching(self) -> bool:
        return self._is_fetching

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def state(self) -> CacheState[T]:
        """Current reader-facing state."""
        if not self._enabled:
            return CacheState(
                value=self._demo_value,
                is_loading=False,
                is_refreshing=False,
                is_failed=False,
                consecutive_failures=0,
                is_demo_fallback=True,
                last_fetched_at=self._last_fetched_at,
            )

        is_failed = self._consecutive_failures >= MAX_CONSECUTIVE_FAILURES
        use_demo = is_failed or self._empty_fallback
        return CacheState(
            value=self._demo_value if use_demo else self._value,
            is_loading=self._is_loading,
            is_refreshing=self._is_refreshing,
            is_failed=is_failed,
            consecutive_failures=self._consecutive_failures,
            is_demo_fallback=use_demo,
            last_fetched_at=self._last_fetched_at,
        )

    def effective_interval(self) -> float | None:
        """Refresh interval after failure backoff, or None without a schedule."""
        if self._refresh_interval is None:
            return None
        return effective_interval(self._refresh_interval, self._consecutive_failures)

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh(self) -> None:
        """Fetch once unless a fetch is already in flight."""
        if self._is_fetching or not self._enabled:
            return

        self._is_fetching = True
        self._is_loading = not self._has_data
        self._is_refreshing = self._has_data
        self._notify()

        try:
            result = await self._fetcher()
        except asyncio.CancelledError:
            self._is_fetching = False
            self._is_refreshing = False
            raise
        except Exception as exc:
            self._is_fetching = False
            self._record_failure(exc)
        else:
            self._is_fetching = False
            self.accept(result)

    def accept(self, result: T) -> None:
        """Apply a successful result as if the fetcher had returned it."""
        self._consecutive_failures = 0
        self._last_fetched_at = self._clock()
        self._is_loading = False
        self._is_refreshing = False

        if self._demo_when_empty and _is_empty(result):
            self._empty_fallback = True
            logger.debug("Cache %s fetched an empty result, showing demo data", self._key)
            self._notify()
            return

        self._empty_fallback = False
        self._value = result
        self._has_data = True
        if self._should_persist:
            self._persist(result)
        self._notify()

    def _record_failure(self, exc: Exception) -> None:
        self._consecutive_failures += 1
        reached_max = self._consecutive_failures >= MAX_CONSECUTIVE_FAILURES
        self._is_loading = not self._has_data and not reached_max
        self._is_refreshing = False

        if self._consecutive_failures == MAX_CONSECUTIVE_FAILURES:
            logger.warning(
                "Cache %s failed %d times in a row, falling back to demo data: %s",
                self._key,
                self._consecutive_failures,
                exc,
            )
        else:
            logger.debug(
                "Cache %s fetch failed (%d consecutive): %s",
                self._key,
                self._consecutive_failures,
                exc,
            )
        self._notify()

    def reset_failures(self) -> None:
        """Forget consecutive failures, e.g. after a manual refresh request."""
        if self._consecutive_failures == 0:
            return
        self._consecutive_failures = 0
        self._notify()

    async def clear(self) -> None:
        """Drop the stored record and return to the initial loading state."""
        if self._store is not None:
            try:
                self._store.remove_item(self._storage_key)
            except Exception as exc:
                logger.warning("Cache %s could not remove stored record: %s", self._key, exc)
        self._value = self._initial_value
        self._has_data = False
        self._empty_fallback = False
        self._consecutive_failures = 0
        self._last_fetched_at = None
        self._is_loading = self._enabled
        self._is_refreshing = False
        self._notify()

    # =========================================================================
    # Scheduling
    # =========================================================================

    def start(self) -> None:
        """Schedule the eager first fetch and the interval loop."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=f"cache:{self._key}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        await self.refresh()
        while True:
            interval = self.effective_interval()
            if interval is None:
                return
            await asyncio.sleep(interval)
            await self.refresh()

    # =========================================================================
    # Subscribers
    # =========================================================================

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """Register a state callback and return a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        if not self._subscribers:
            return
        state = self.state
        for callback in list(self._subscribers):
            try:
                callback(state)
            except Exception:
                logger.exception("Cache %s subscriber failed", self._key)

    # =========================================================================
    # Persistence
    # =========================================================================

    @property
    def _storage_key(self) -> str:
        return f"{CACHE_KEY_PREFIX}{self._key}"

    def _persist(self, value: T) -> None:
        if self._store is None:
            return
        try:
            record = {
                "value": self._adapter.dump_python(value, mode="json"),
                "timestamp": self._last_fetched_at,
                "version": CACHE_VERSION,
            }
            payload = json.dumps(record)
        except (TypeError, ValueError) as exc:
            logger.warning("Cache %s value is not serialisable: %s", self._key, exc)
            return
        try:
            self._store.set_item(self._storage_key, payload)
        except Exception as exc:
            logger.warning("Cache %s could not be persisted: %s", self._key, exc)

    def _rehydrate(self) -> None:
        if self._store is None:
            return
        try:
            raw = self._store.get_item(self._storage_key)
        except Exception as exc:
            logger.warning("Cache %s could not read stored record: %s", self._key, exc)
            return
        if raw is None:
            return
        try:
            record = _StoredRecord.model_validate_json(raw)
            if record.version != CACHE_VERSION:
                logger.debug("Cache %s stored version %d ignored", self._key, record.version)
                return
            if self._ttl_seconds is not None and self._clock() - record.timestamp > self._ttl_seconds:
                logger.debug("Cache %s stored record expired", self._key)
                return
            value = self._adapter.validate_python(record.value)
        except ValidationError as exc:
            logger.warning("Cache %s stored record is malformed: %s", self._key, exc.error_count())
            return

        self._value = value
        self._has_data = True
        self._last_fetched_at = record.timestamp
        self._is_loading = False


def _is_empty(result: Any) -> bool:
    return isinstance(result, Sized) and not isinstance(result, (str, bytes)) and len(result) == 0


__all__ = [
    "CacheOptions",
    "CacheState",
    "FreshnessCache",
    "effective_interval",
]
