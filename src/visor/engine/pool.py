"""Module implementing the HandlePool type."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..cache.coordinator import CacheCoordinator
from ..cache.disk import validate_dataset_id
from ..pipeline.pipeline import DatasetPipeline
from .handle import DatasetHandle, HandleError, HandleOptions

log = logging.getLogger("engine/pool")


class HandlePool:
    """
    Map from dataset id to an open DatasetHandle.

    Resolving a dataset tries, in order:

    1. a handle already in the pool;
    2. the memory index of the cache coordinator;
    3. the disk store (promoting the store into the memory index);
    4. a synchronous acquisition using the pipeline.

    A per-dataset lock ensures that concurrent resolutions of the same
    dataset open (and possibly acquire) it only once.
    """

    def __init__(
        self,
        *,
        coordinator: CacheCoordinator,
        pipeline: DatasetPipeline,
        options: HandleOptions | None = None,
    ):
        self.coordinator = coordinator
        self.pipeline = pipeline
        self.options = options if options is not None else HandleOptions()
        self._handles: dict[str, DatasetHandle] = {}
        self._key_locks: dict[str, tuple[threading.Lock, int]] = {}
        self._lock = threading.Lock()

    def resolve(self, dataset_id: str) -> DatasetHandle:
        """
        Return the handle for dataset_id, acquiring the dataset if needed.

        Raises:
            ValueError: if dataset_id is not a valid id.
            AcquisitionError: if the synchronous acquisition fails.
            HandleError: if the store cannot be opened.
        """
        validate_dataset_id(dataset_id)
        handle = self.get(dataset_id)
        if handle is not None:
            return handle

        with self._key_lock(dataset_id):
            handle = self.get(dataset_id)
            if handle is not None:
                return handle
            handle = self._open(dataset_id, self._locate(dataset_id))
            with self._lock:
                self._handles[dataset_id] = handle
            return handle

    def get(self, dataset_id: str) -> DatasetHandle | None:
        """Return the pooled handle for dataset_id without resolving it."""
        with self._lock:
            return self._handles.get(dataset_id)

    def __contains__(self, dataset_id: object) -> bool:
        with self._lock:
            return dataset_id in self._handles

    @contextmanager
    def _key_lock(self, dataset_id: str) -> Iterator[None]:
        """Hold the per-dataset lock, dropping it once no thread waits on it."""
        with self._lock:
            key_lock, users = self._key_locks.get(dataset_id, (threading.Lock(), 0))
            self._key_locks[dataset_id] = (key_lock, users + 1)
        try:
            with key_lock:
                yield
        finally:
            with self._lock:
                _, users = self._key_locks[dataset_id]
                if users <= 1:
                    del self._key_locks[dataset_id]
                else:
                    self._key_locks[dataset_id] = (key_lock, users - 1)

    def _locate(self, dataset_id: str) -> Path:
        # 1. the memory index
        path = self.coordinator.get_memory(dataset_id)
        if path is not None:
            log.info("dataset %s found in memory", dataset_id)
            return path

        # 2. the disk store
        path = self.coordinator.get_disk(dataset_id)
        if path is not None:
            log.info("dataset %s found on disk, promoting to memory", dataset_id)
            self.coordinator.set_memory(dataset_id, path)
            return path

        # 3. the catalog
        log.info("dataset %s not cached, acquiring it", dataset_id)
        store_path = self.pipeline.acquire(dataset_id)
        return self.pipeline.publish(self.coordinator, dataset_id, store_path)

    def _open(self, dataset_id: str, path: Path) -> DatasetHandle:
        handle = DatasetHandle(dataset_id, path, self.options)
        try:
            handle.ping()
        except HandleError:
            handle.close()
            raise
        log.info("opened handle for %s", dataset_id)
        return handle

    def close(self) -> None:
        """Close every pooled handle."""
        with self._lock:
            handles, self._handles = self._handles, {}
        for dataset_id, handle in handles.items():
            try:
                handle.close()
            except Exception as exc:
                log.warning("closing handle for %s... failure: %s", dataset_id, exc)
