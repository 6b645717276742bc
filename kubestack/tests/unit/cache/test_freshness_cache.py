"""Tests for FreshnessCache.

This module tests:
- Stale-while-revalidate reads and last-good retention
- Demo fallback after repeated failures and on empty results
- Single-flight refresh
- Persistence, rehydration and record rejection
- Failure backoff and the disabled mode
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from kubestack.constants.defaults import CACHE_KEY_PREFIX, CACHE_VERSION
from kubestack.models.cache.freshness_cache import (
    CacheOptions,
    FreshnessCache,
    effective_interval,
)
from kubestack.storage.kv_store import KeyValueStore, MemoryKeyValueStore

DEMO = ["demo-a", "demo-b"]


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_cache(
    fetcher: AsyncMock,
    store: KeyValueStore | None = None,
    clock: FakeClock | None = None,
    **overrides: object,
) -> FreshnessCache[list[str]]:
    options: CacheOptions[list[str]] = CacheOptions(
        fetcher=fetcher,
        initial_value=[],
        demo_value=DEMO,
        value_type=list[str],
    )
    for name, value in overrides.items():
        setattr(options, name, value)
    return FreshnessCache("pods:all:default", options, store=store, clock=clock or FakeClock())


class TestInitialState:
    """Tests for a cache that has not fetched yet."""

    def test_reports_initial_value_while_loading(self) -> None:
        cache = make_cache(AsyncMock(return_value=["x"]))

        state = cache.state
        assert state.value == []
        assert state.is_loading is True
        assert state.is_refreshing is False
        assert state.is_failed is False
        assert state.is_demo_fallback is False
        assert state.last_fetched_at is None

    def test_demo_value_defaults_to_initial_value(self) -> None:
        options = CacheOptions(fetcher=AsyncMock(), initial_value=["seed"])
        cache = FreshnessCache("k", options)

        assert cache.demo_value == ["seed"]


class TestRefresh:
    """Tests for successful and failing refreshes."""

    @pytest.mark.asyncio
    async def test_success_replaces_value(self) -> None:
        clock = FakeClock(50.0)
        cache = make_cache(AsyncMock(return_value=["a", "b"]), clock=clock)

        await cache.refresh()

        state = cache.state
        assert state.value == ["a", "b"]
        assert state.is_loading is False
        assert state.consecutive_failures == 0
        assert state.last_fetched_at == 50.0

    @pytest.mark.asyncio
    async def test_failure_keeps_last_good_value(self) -> None:
        fetcher = AsyncMock(side_effect=[["good"], RuntimeError("boom")])
        cache = make_cache(fetcher)

        await cache.refresh()
        await cache.refresh()

        state = cache.state
        assert state.value == ["good"]
        assert state.consecutive_failures == 1
        assert state.is_failed is False
        assert state.is_demo_fallback is False

    @pytest.mark.asyncio
    async def test_second_refresh_is_reported_as_refreshing(self) -> None:
        gate = asyncio.Event()
        seen: list[tuple[bool, bool]] = []

        async def fetch() -> list[str]:
            await gate.wait()
            return ["v"]

        cache = make_cache(AsyncMock(side_effect=fetch))
        cache.subscribe(lambda s: seen.append((s.is_loading, s.is_refreshing)))

        gate.set()
        await cache.refresh()
        seen.clear()
        await cache.refresh()

        assert seen[0] == (False, True)
        assert seen[-1] == (False, False)

    @pytest.mark.asyncio
    async def test_refresh_never_raises_fetch_errors(self) -> None:
        cache = make_cache(AsyncMock(side_effect=ValueError("bad payload")))

        await cache.refresh()

        assert cache.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        async def never() -> list[str]:
            await asyncio.Event().wait()
            return []

        cache = make_cache(AsyncMock(side_effect=never))
        task = asyncio.create_task(cache.refresh())
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert cache.is_fetching is False
        assert cache.consecutive_failures == 0


class TestDemoFallback:
    """Tests for failure and empty-result demo substitution."""

    @pytest.mark.asyncio
    async def test_three_failures_switch_to_demo(self) -> None:
        cache = make_cache(AsyncMock(side_effect=RuntimeError("down")))

        for _ in range(3):
            await cache.refresh()

        state = cache.state
        assert state.is_failed is True
        assert state.is_demo_fallback is True
        assert state.value == DEMO
        assert state.is_loading is False

    @pytest.mark.asyncio
    async def test_further_failures_keep_demo(self) -> None:
        cache = make_cache(AsyncMock(side_effect=RuntimeError("down")))

        for _ in range(5):
            await cache.refresh()

        assert cache.state.value == DEMO
        assert cache.consecutive_failures == 5

    @pytest.mark.asyncio
    async def test_failures_hide_stale_value_behind_demo(self) -> None:
        fetcher = AsyncMock(side_effect=[["real"], OSError(), OSError(), OSError()])
        cache = make_cache(fetcher)

        for _ in range(4):
            await cache.refresh()

        assert cache.state.value == DEMO
        assert cache.value == ["real"]

    @pytest.mark.asyncio
    async def test_success_after_demo_restores_real_data(self) -> None:
        fetcher = AsyncMock(side_effect=[OSError(), OSError(), OSError(), ["back"]])
        cache = make_cache(fetcher)

        for _ in range(4):
            await cache.refresh()

        state = cache.state
        assert state.value == ["back"]
        assert state.is_demo_fallback is False
        assert state.is_failed is False

    @pytest.mark.asyncio
    async def test_empty_result_shows_demo_when_enabled(self) -> None:
        fetcher = AsyncMock(side_effect=[["real"], []])
        cache = make_cache(fetcher, demo_when_empty=True)

        await cache.refresh()
        await cache.refresh()

        state = cache.state
        assert state.value == DEMO
        assert state.is_demo_fallback is True
        assert state.is_failed is False
        assert cache.value == ["real"]

    @pytest.mark.asyncio
    async def test_empty_result_is_stored_without_demo_flag(self) -> None:
        fetcher = AsyncMock(side_effect=[["real"], []])
        cache = make_cache(fetcher)

        await cache.refresh()
        await cache.refresh()

        assert cache.state.value == []
        assert cache.state.is_demo_fallback is False


class TestSingleFlight:
    """Tests for at-most-one fetch in flight."""

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_fetch_once(self) -> None:
        gate = asyncio.Event()
        calls = 0

        async def fetch() -> list[str]:
            nonlocal calls
            calls += 1
            await gate.wait()
            return ["v"]

        cache = make_cache(AsyncMock(side_effect=fetch))

        first = asyncio.create_task(cache.refresh())
        await asyncio.sleep(0)
        assert cache.is_fetching is True

        await asyncio.gather(cache.refresh(), cache.refresh())
        gate.set()
        await first

        assert calls == 1
        assert cache.state.value == ["v"]

    @pytest.mark.asyncio
    async def test_refresh_allowed_after_previous_completes(self) -> None:
        fetcher = AsyncMock(return_value=["v"])
        cache = make_cache(fetcher)

        await cache.refresh()
        await cache.refresh()

        assert fetcher.await_count == 2


class TestPersistence:
    """Tests for storing and rehydrating last-good values."""

    @pytest.mark.asyncio
    async def test_success_is_persisted(self) -> None:
        store = MemoryKeyValueStore()
        cache = make_cache(AsyncMock(return_value=["a"]), store=store, clock=FakeClock(10.0))

        await cache.refresh()

        record = json.loads(store.get_item(f"{CACHE_KEY_PREFIX}pods:all:default") or "{}")
        assert record == {"value": ["a"], "timestamp": 10.0, "version": CACHE_VERSION}

    @pytest.mark.asyncio
    async def test_empty_demo_result_is_not_persisted(self) -> None:
        store = MemoryKeyValueStore()
        cache = make_cache(AsyncMock(return_value=[]), store=store, demo_when_empty=True)

        await cache.refresh()

        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_failures_are_not_persisted(self) -> None:
        store = MemoryKeyValueStore()
        cache = make_cache(AsyncMock(side_effect=RuntimeError()), store=store)

        await cache.refresh()

        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_new_cache_rehydrates_stored_value(self) -> None:
        store = MemoryKeyValueStore()
        clock = FakeClock(100.0)
        await make_cache(AsyncMock(return_value=["kept"]), store=store, clock=clock).refresh()

        clock.now = 130.0
        revived = make_cache(AsyncMock(), store=store, clock=clock, ttl_seconds=60.0)

        state = revived.state
        assert state.value == ["kept"]
        assert state.is_loading is False
        assert state.last_fetched_at == 100.0

    def test_expired_record_is_ignored(self) -> None:
        record = {"value": ["old"], "timestamp": 0.0, "version": CACHE_VERSION}
        store = MemoryKeyValueStore({f"{CACHE_KEY_PREFIX}pods:all:default": json.dumps(record)})

        cache = make_cache(AsyncMock(), store=store, clock=FakeClock(1_000.0), ttl_seconds=60.0)

        assert cache.state.value == []
        assert cache.state.is_loading is True

    def test_record_without_ttl_never_expires(self) -> None:
        record = {"value": ["old"], "timestamp": 0.0, "version": CACHE_VERSION}
        store = MemoryKeyValueStore({f"{CACHE_KEY_PREFIX}pods:all:default": json.dumps(record)})

        cache = make_cache(AsyncMock(), store=store, clock=FakeClock(10_000_000.0))

        assert cache.state.value == ["old"]

    def test_other_version_is_ignored(self) -> None:
        record = {"value": ["old"], "timestamp": 999.0, "version": CACHE_VERSION - 1}
        store = MemoryKeyValueStore({f"{CACHE_KEY_PREFIX}pods:all:default": json.dumps(record)})

        cache = make_cache(AsyncMock(), store=store)

        assert cache.state.value == []

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            json.dumps({"value": ["x"]}),
            json.dumps({"value": [1, {"a": 2}], "timestamp": 999.0, "version": CACHE_VERSION}),
        ],
    )
    def test_malformed_record_is_ignored(self, raw: str) -> None:
        store = MemoryKeyValueStore({f"{CACHE_KEY_PREFIX}pods:all:default": raw})

        cache = make_cache(AsyncMock(), store=store)

        assert cache.state.value == []
        assert cache.state.is_loading is True

    @pytest.mark.asyncio
    async def test_should_persist_false_skips_store(self) -> None:
        store = MemoryKeyValueStore()
        cache = make_cache(AsyncMock(return_value=["a"]), store=store, should_persist=False)

        await cache.refresh()

        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_clear_drops_record_and_value(self) -> None:
        store = MemoryKeyValueStore()
        cache = make_cache(AsyncMock(return_value=["a"]), store=store)
        await cache.refresh()

        await cache.clear()

        assert store.keys() == []
        assert cache.state.value == []
        assert cache.state.is_loading is True


class UnavailableStore:
    """Store whose every operation fails, like disabled or full storage."""

    def get_item(self, key: str) -> str | None:
        raise OSError("storage disabled")

    def set_item(self, key: str, value: str) -> None:
        raise OSError("quota exceeded")

    def remove_item(self, key: str) -> None:
        raise OSError("storage disabled")


class TestUnavailableStore:
    """Tests for caches whose durable store fails."""

    def test_construction_ignores_read_failure(self) -> None:
        cache = make_cache(AsyncMock(), store=UnavailableStore())

        assert cache.state.value == []
        assert cache.state.is_loading is True

    @pytest.mark.asyncio
    async def test_refresh_succeeds_when_write_fails(self) -> None:
        cache = make_cache(AsyncMock(return_value=["a"]), store=UnavailableStore())

        await cache.refresh()

        state = cache.state
        assert state.value == ["a"]
        assert state.consecutive_failures == 0
        assert state.is_loading is False

    @pytest.mark.asyncio
    async def test_clear_ignores_remove_failure(self) -> None:
        cache = make_cache(AsyncMock(return_value=["a"]), store=UnavailableStore())
        await cache.refresh()

        await cache.clear()

        assert cache.state.value == []

    @pytest.mark.asyncio
    async def test_interval_loop_keeps_running_when_write_fails(self) -> None:
        fetcher = AsyncMock(return_value=["a"])
        cache = make_cache(fetcher, store=UnavailableStore(), refresh_interval=0.01)

        cache.start()
        try:
            await asyncio.wait_for(_until(lambda: fetcher.await_count >= 3), 2.0)
            assert cache.is_running is True
        finally:
            await cache.stop()


async def _until(predicate: Callable[[], bool]) -> None:
    while not predicate():
        await asyncio.sleep(0.005)


class TestBackoff:
    """Tests for refresh interval backoff."""

    @pytest.mark.parametrize(
        ("base", "failures", "expected"),
        [
            (10.0, 0, 10.0),
            (10.0, 1, 20.0),
            (10.0, 3, 80.0),
            (10.0, 5, 320.0),
            (10.0, 9, 320.0),
            (100.0, 4, 600.0),
        ],
    )
    def test_effective_interval(self, base: float, failures: int, expected: float) -> None:
        assert effective_interval(base, failures) == expected

    @pytest.mark.asyncio
    async def test_cache_interval_follows_failures(self) -> None:
        cache = make_cache(AsyncMock(side_effect=RuntimeError()), refresh_interval=15.0)
        assert cache.effective_interval() == 15.0

        await cache.refresh()
        await cache.refresh()

        assert cache.effective_interval() == 60.0

        cache.reset_failures()
        assert cache.effective_interval() == 15.0

    def test_category_sets_interval(self) -> None:
        options = CacheOptions(fetcher=AsyncMock(), initial_value=[], category="pods")
        assert FreshnessCache("k", options).effective_interval() == 30.0

    def test_unknown_category_uses_default_rate(self) -> None:
        options = CacheOptions(fetcher=AsyncMock(), initial_value=[], category="nope")
        assert FreshnessCache("k", options).effective_interval() == 120.0

    def test_explicit_interval_wins_over_category(self) -> None:
        options = CacheOptions(
            fetcher=AsyncMock(), initial_value=[], category="pods", refresh_interval=5.0
        )
        assert FreshnessCache("k", options).effective_interval() == 5.0

    def test_no_schedule_without_interval(self) -> None:
        options = CacheOptions(fetcher=AsyncMock(), initial_value=[])
        assert FreshnessCache("k", options).effective_interval() is None


class TestDisabled:
    """Tests for a cache that must not fetch."""

    @pytest.mark.asyncio
    async def test_disabled_cache_serves_demo_without_fetching(self) -> None:
        fetcher = AsyncMock(return_value=["real"])
        cache = make_cache(fetcher, enabled=False)

        await cache.refresh()

        state = cache.state
        assert fetcher.await_count == 0
        assert state.value == DEMO
        assert state.is_demo_fallback is True
        assert state.is_loading is False


class TestSchedulingAndSubscribers:
    """Tests for start/stop and state callbacks."""

    @pytest.mark.asyncio
    async def test_start_fetches_eagerly(self) -> None:
        fetcher = AsyncMock(return_value=["now"])
        cache = make_cache(fetcher)

        cache.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await cache.stop()

        assert fetcher.await_count == 1
        assert cache.state.value == ["now"]
        assert cache.is_running is False

    @pytest.mark.asyncio
    async def test_start_twice_runs_one_loop(self) -> None:
        fetcher = AsyncMock(return_value=["now"])
        cache = make_cache(fetcher, refresh_interval=3600.0)

        cache.start()
        cache.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await cache.stop()

        assert fetcher.await_count == 1

    @pytest.mark.asyncio
    async def test_subscribers_receive_states_until_unsubscribed(self) -> None:
        cache = make_cache(AsyncMock(return_value=["a"]))
        callback = MagicMock()
        unsubscribe = cache.subscribe(callback)

        await cache.refresh()
        calls = callback.call_count
        unsubscribe()
        await cache.refresh()

        assert calls >= 2
        assert callback.call_count == calls
        assert callback.call_args.args[0].value == ["a"]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_refresh(self) -> None:
        cache = make_cache(AsyncMock(return_value=["a"]))
        cache.subscribe(MagicMock(side_effect=RuntimeError("ui gone")))

        await cache.refresh()

        assert cache.state.value == ["a"]
