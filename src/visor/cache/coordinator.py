"""Module implementing the CacheCoordinator type."""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any

from .disk import DiskStore
from .lru import MemoryIndex
from .result import NullResultCache, ResultCache

log = logging.getLogger("cache/coordinator")


def fingerprint(prefix: str, params: Any) -> str:
    """
    Compute the result-cache key for an operation.

    The params are serialized as canonical JSON with sorted keys, so
    structurally equal mappings produce the same key regardless of
    their insertion order. Sequences are hashed in the given order:
    `["A", "B"]` and `["B", "A"]` produce distinct keys. Values that
    JSON cannot represent are serialized using `str`.

    Returns:
        A key like `"{prefix}:{sha256 hex digest}"`.
    """
    encoded = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"


class CacheCoordinator:
    """
    Single entry point to the memory, disk, and result cache tiers.

    Write failures on the disk and result tiers are logged and never
    propagated: a request that could not populate the cache still
    succeeds with the data it computed.
    """

    def __init__(
        self,
        *,
        memory: MemoryIndex,
        disk: DiskStore,
        results: ResultCache | None = None,
    ) -> None:
        self.memory = memory
        self.disk = disk
        self.results: ResultCache = results if results is not None else NullResultCache()

    def get_memory(self, dataset_id: str) -> Path | None:
        """Return the hot store path for dataset_id, or None."""
        path = self.memory.get(dataset_id)
        if path is None:
            return None
        if not path.exists():
            log.info("dropping %s from memory: %s no longer exists", dataset_id, path)
            self.memory.remove(dataset_id)
            return None
        return path

    def set_memory(self, dataset_id: str, path: Path) -> None:
        """Mark path as the hot store of dataset_id, evicting as needed."""
        try:
            size = path.stat().st_size
        except OSError:
            size = 0
        self.memory.set(dataset_id, path, size)

    def get_disk(self, dataset_id: str) -> Path | None:
        """Return the on-disk store path for dataset_id, or None."""
        return self.disk.get(dataset_id)

    def set_disk(self, dataset_id: str, path: Path) -> Path | None:
        """
        Move path into the disk store, then enforce the disk budget.

        Returns:
            The destination path, or None when placing the file failed.
        """
        try:
            dest = self.disk.set(dataset_id, path)
        except OSError as exc:
            log.warning("caching %s on disk... failure: %s", dataset_id, exc)
            return None
        self.prune_disk(keep=(dataset_id,))
        return dest

    def prune_disk(self, keep: tuple[str, ...] = ()) -> list[str]:
        """Evict disk stores over budget and forget them in memory too."""
        evicted = self.disk.evict(keep=keep)
        for dataset_id in evicted:
            self.memory.remove(dataset_id)
        return evicted

    def is_cached(self, dataset_id: str) -> bool:
        """Return whether dataset_id has a converted store in memory or on disk."""
        return self.get_memory(dataset_id) is not None or self.get_disk(dataset_id) is not None

    def get_result(self, key: str) -> bytes | None:
        """Return the cached result for key, treating failures as misses."""
        try:
            return self.results.get(key)
        except Exception as exc:
            log.warning("reading result %s... failure: %s", key, exc)
            return None

    def set_result(self, key: str, value: bytes, ttl: timedelta) -> None:
        """Store a result for ttl; failures are logged and ignored."""
        try:
            self.results.set(key, value, ttl)
        except Exception as exc:
            log.warning("writing result %s... failure: %s", key, exc)

    def fingerprint(self, prefix: str, params: Any) -> str:
        """See the module-level `fingerprint` function."""
        return fingerprint(prefix, params)

    def close(self) -> None:
        self.results.close()
