"""Base controller with async patterns for kubestack.

Controllers own a data source, expose immutable state snapshots, and report
background work through ``WorkerResult`` values instead of raising.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

S = TypeVar("S")


@dataclass
class WorkerResult:
    """Result wrapper for background operations."""

    success: bool
    data: Any | None = None
    error: str | None = None
    duration_ms: float = 0.0


class AsyncControllerMixin:
    """Mixin providing timed background-operation helpers for controllers."""

    def __init__(self) -> None:
        """Initialize the async controller mixin."""
        self._load_start_time: float | None = None

    async def run_timed(self, operation: Callable[[], Awaitable[Any]]) -> WorkerResult:
        """Run ``operation`` and wrap its outcome and duration."""
        self._load_start_time = time.monotonic()
        try:
            data = await operation()
        except Exception as exc:
            logger.debug("Background operation failed: %s", exc)
            return WorkerResult(success=False, error=str(exc), duration_ms=self._elapsed_ms())
        return WorkerResult(success=True, data=data, duration_ms=self._elapsed_ms())

    def _elapsed_ms(self) -> float:
        if self._load_start_time is None:
            return 0.0
        return (time.monotonic() - self._load_start_time) * 1000


class BaseController(AsyncControllerMixin, ABC, Generic[S]):
    """Base controller class publishing immutable state snapshots.

    Subclasses implement ``check_connection`` and ``state``; they call
    ``_publish`` whenever their state changes.
    """

    def __init__(self) -> None:
        super().__init__()
        self._subscribers: list[Callable[[S], None]] = []

    @abstractmethod
    async def check_connection(self) -> bool:
        """Check if the data source is available.

        Returns:
            True if connection is available, False otherwise
        """
        ...

    @property
    @abstractmethod
    def state(self) -> S:
        """Current immutable state snapshot."""
        ...

    def subscribe(self, callback: Callable[[S], None]) -> Callable[[], None]:
        """Register a state callback and return a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        state = self.state
        for callback in list(self._subscribers):
            try:
                callback(state)
            except Exception:
                logger.exception("%s subscriber failed", type(self).__name__)
