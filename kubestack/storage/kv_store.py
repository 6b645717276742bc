"""Key-value stores used for last-known-good persistence.

Stores never raise: an unavailable or corrupt backing store behaves as an
empty one and writes become no-ops.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal string key-value store."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """In-process store, used for tests and demo runs."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


class JsonFileKeyValueStore:
    """Store backed by a single JSON object on disk.

    The file is read lazily and rewritten on every mutation. Writes go to a
    temporary sibling first and are then renamed into place.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path).expanduser()
        self._items: dict[str, str] | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if self._items is not None:
            return self._items
        items: dict[str, str] = {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raw = {}
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable store %s: %s", self._path, exc)
            raw = {}
        if isinstance(raw, dict):
            items = {str(k): v for k, v in raw.items() if isinstance(v, str)}
        self._items = items
        return items

    def _flush(self, items: dict[str, str]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(items), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            logger.warning("Could not write store %s: %s", self._path, exc)

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            items = self._load()
            items[key] = value
            self._flush(items)

    def remove_item(self, key: str) -> None:
        with self._lock:
            items = self._load()
            if items.pop(key, None) is not None:
                self._flush(items)


__all__ = ["JsonFileKeyValueStore", "KeyValueStore", "MemoryKeyValueStore"]
