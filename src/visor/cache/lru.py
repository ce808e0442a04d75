"""Module implementing the bounded in-memory index of hot datasets."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Final

MEMORY_INDEX_DEFAULT_MAX_ENTRIES: Final[int] = 10

log = logging.getLogger("cache/lru")


@dataclass(kw_only=True)
class MemoryIndexEntry:
    """
    Entry of the memory index.

    Attributes:
        dataset_id: the dataset identifier.
        path: path of the converted store.
        size: size of the converted store in bytes.
    """

    dataset_id: str
    path: Path
    size: int


class MemoryIndex:
    """
    LRU index mapping dataset ids to converted-store paths.

    The index is bounded both by number of entries and by cumulative
    byte size. Both bounds are enforced after every `set`, evicting the
    least recently used entries first. A single lock serializes every
    read and write, since `get` also mutates the recency order.

    The index does not protect against stampedes: two callers missing
    the same key will both recompute it.
    """

    def __init__(
        self,
        max_bytes: int,
        *,
        max_entries: int = MEMORY_INDEX_DEFAULT_MAX_ENTRIES,
    ) -> None:
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        if max_bytes < 0:
            raise ValueError(f"max_bytes must not be negative, got {max_bytes}")
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self._entries: OrderedDict[str, MemoryIndexEntry] = OrderedDict()
        self._total_bytes = 0
        self._lock = threading.Lock()

    def get(self, dataset_id: str) -> Path | None:
        """Return the path for dataset_id promoting it, or None if absent."""
        with self._lock:
            entry = self._entries.get(dataset_id)
            if entry is None:
                return None
            self._entries.move_to_end(dataset_id, last=False)
            return entry.path

    def set(self, dataset_id: str, path: Path, size: int) -> list[str]:
        """
        Insert or update the entry for dataset_id, making it the most
        recently used one, then evict until both bounds hold.

        Returns:
            The ids of the evicted entries, least recently used first.
        """
        with self._lock:
            old = self._entries.pop(dataset_id, None)
            if old is not None:
                self._total_bytes -= old.size
            self._entries[dataset_id] = MemoryIndexEntry(
                dataset_id=dataset_id,
                path=path,
                size=size,
            )
            self._entries.move_to_end(dataset_id, last=False)
            self._total_bytes += size
            evicted = []
            while len(self._entries) > self.max_entries or self._total_bytes > self.max_bytes:
                evicted.append(self._evict_oldest())
        for key in evicted:
            log.debug("evicted %s from the memory index", key)
        return evicted

    def _evict_oldest(self) -> str:
        key, entry = self._entries.popitem(last=True)
        self._total_bytes -= entry.size
        return key

    def remove(self, dataset_id: str) -> bool:
        """Remove dataset_id and return whether it was present."""
        with self._lock:
            entry = self._entries.pop(dataset_id, None)
            if entry is None:
                return False
            self._total_bytes -= entry.size
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_bytes = 0

    def keys(self) -> list[str]:
        """Return the dataset ids, most recently used first."""
        with self._lock:
            return list(self._entries.keys())

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, dataset_id: object) -> bool:
        with self._lock:
            return dataset_id in self._entries
