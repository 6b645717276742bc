"""Streaming reconciler.

Adapts an append-only stream of batches to the same value/loading/demo
shape a ``FreshnessCache`` reports. Streamed items win over the cache's
value as soon as at least one item has arrived; until then, and whenever
the stream fails before delivering anything, the cache decides what
readers see.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import aclosing, suppress
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from kubestack.constants.enums import StreamState
from kubestack.models.cache.freshness_cache import FreshnessCache
from kubestack.transport.sse import (
    BATCH_EVENT,
    DONE_EVENT,
    ERROR_EVENT,
    StreamEvent,
    StreamTransport,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ReconciledState(Generic[T]):
    """What readers of a streamed query see."""

    value: Any
    is_loading: bool
    is_refreshing: bool
    is_failed: bool
    consecutive_failures: int
    is_demo_fallback: bool
    is_streaming: bool
    stream_progress: int
    stream_state: StreamState
    stream_error: str | None = None


class StreamingReconciler(Generic[T]):
    """Consume one stream per start and merge it with a freshness cache.

    ``start`` is idempotent until ``cancel`` is called; a later ``start``
    opens a new stream with a new, empty accumulation.
    """

    def __init__(
        self,
        cache: FreshnessCache[list[T]],
        transport_factory: Callable[[], StreamTransport],
        item_type: Any = None,
    ) -> None:
        self._cache = cache
        self._transport_factory = transport_factory
        self._batch_adapter: TypeAdapter[list[Any]] = TypeAdapter(list[item_type or Any])

        self._accumulated: list[T] = []
        self._stream_state = StreamState.IDLE
        self._stream_error: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._subscribers: list[Callable[[ReconciledState[T]], None]] = []
        self._unsubscribe_cache = cache.subscribe(lambda _state: self._notify())

    # =========================================================================
    # State
    # =========================================================================

    @property
    def accumulated(self) -> tuple[T, ...]:
        return tuple(self._accumulated)

    @property
    def progress(self) -> int:
        return len(self._accumulated)

    @property
    def stream_state(self) -> StreamState:
        return self._stream_state

    @property
    def state(self) -> ReconciledState[T]:
        cache_state = self._cache.state
        has_streamed = bool(self._accumulated)
        is_streaming = self._stream_state == StreamState.STREAMING
        return ReconciledState(
            value=tuple(self._accumulated) if has_streamed else cache_state.value,
            is_loading=cache_state.is_loading or (is_streaming and not has_streamed),
            is_refreshing=cache_state.is_refreshing,
            is_failed=cache_state.is_failed,
            consecutive_failures=cache_state.consecutive_failures,
            is_demo_fallback=False if has_streamed else cache_state.is_demo_fallback,
            is_streaming=is_streaming,
            stream_progress=len(self._accumulated),
            stream_state=self._stream_state,
            stream_error=self._stream_error,
        )

    def subscribe(self, callback: Callable[[ReconciledState[T]], None]) -> Callable[[], None]:
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
                logger.exception("Stream subscriber failed")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Open the stream unless one was already started."""
        if self._task is not None:
            return
        self._accumulated = []
        self._stream_error = None
        self._stream_state = StreamState.STREAMING
        self._task = asyncio.create_task(self._consume(), name=f"stream:{self._cache.key}")
        self._notify()

    async def wait(self) -> ReconciledState[T]:
        """Wait for the current stream to end and return the final state."""
        if self._task is not None:
            await asyncio.shield(self._task)
        return self.state

    async def cancel(self) -> None:
        """Abort the stream and discard what it accumulated."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._accumulated = []
        self._stream_error = None
        self._stream_state = StreamState.IDLE
        self._notify()

    def close(self) -> None:
        """Detach from the cache."""
        self._unsubscribe_cache()

    # =========================================================================
    # Stream consumption
    # =========================================================================

    async def _consume(self) -> None:
        error: str | None = None
        try:
            async with aclosing(self._transport_factory().events()) as events:
                async for event in events:
                    if event.name == BATCH_EVENT:
                        self._append_batch(event)
                    elif event.name == DONE_EVENT:
                        break
                    elif event.name == ERROR_EVENT:
                        error = event.data or "stream reported an error"
                        break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = str(exc) or type(exc).__name__

        if error is not None:
            await self._fail(error)
        else:
            self._finish()

    def _append_batch(self, event: StreamEvent) -> None:
        try:
            items = self._batch_adapter.validate_json(event.data)
        except ValidationError as exc:
            logger.warning(
                "Ignoring malformed batch on stream %s: %s",
                self._cache.key,
                exc.errors()[0]["msg"],
            )
            return
        self._accumulated.extend(items)
        self._notify()

    def _finish(self) -> None:
        self._stream_state = StreamState.DONE
        if self._accumulated:
            self._cache.accept(list(self._accumulated))
        logger.debug("Stream %s done with %d item(s)", self._cache.key, len(self._accumulated))
        self._notify()

    async def _fail(self, message: str) -> None:
        self._stream_state = StreamState.ERRORED
        self._stream_error = message
        logger.warning("Stream %s failed after %d item(s): %s", self._cache.key, len(self._accumulated), message)
        self._notify()
        if not self._accumulated:
            await self._cache.refresh()


__all__ = ["ReconciledState", "StreamingReconciler"]
