"""Persistence of the discovery engine's last-known-good stack snapshot."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from pydantic import BaseModel, ConfigDict, ValidationError

from kubestack.constants.defaults import STACK_SNAPSHOT_KEY, STACK_SNAPSHOT_TTL_SECONDS
from kubestack.models.stacks.stack_info import Stack
from kubestack.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


class StackSnapshot(BaseModel):
    """Stacks plus the wall-clock time they were saved."""

    model_config = ConfigDict(frozen=True)

    stacks: tuple[Stack, ...] = ()
    timestamp: float

    def age(self, now: float) -> float:
        return max(0.0, now - self.timestamp)

    def is_fresh(self, now: float, ttl_seconds: float = STACK_SNAPSHOT_TTL_SECONDS) -> bool:
        return self.age(now) < ttl_seconds


class StackSnapshotStore:
    """Load and save the stack snapshot through a key-value store."""

    def __init__(
        self,
        store: KeyValueStore,
        key: str = STACK_SNAPSHOT_KEY,
        ttl_seconds: float = STACK_SNAPSHOT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._key = key
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def load(self) -> StackSnapshot | None:
        """Return the stored snapshot, or None when absent, unreadable or malformed."""
        try:
            raw = self._store.get_item(self._key)
        except Exception as exc:
            logger.warning("Could not read stack snapshot: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return StackSnapshot.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding malformed stack snapshot: %s", exc.error_count())
            return None

    def save(self, stacks: Iterable[Stack]) -> StackSnapshot:
        """Write the snapshot; a failing store only logs."""
        snapshot = StackSnapshot(stacks=tuple(stacks), timestamp=self._clock())
        try:
            self._store.set_item(self._key, snapshot.model_dump_json())
        except Exception as exc:
            logger.warning("Could not write stack snapshot: %s", exc)
        return snapshot

    def is_fresh(self, snapshot: StackSnapshot) -> bool:
        return snapshot.is_fresh(self._clock(), self._ttl_seconds)

    def clear(self) -> None:
        try:
            self._store.remove_item(self._key)
        except Exception as exc:
            logger.warning("Could not remove stack snapshot: %s", exc)


__all__ = ["StackSnapshot", "StackSnapshotStore"]
