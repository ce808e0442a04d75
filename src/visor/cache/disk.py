"""Module to manage the on-disk store of converted datasets."""

from __future__ import annotations

import logging
import os
import re
import shutil
import threading
from collections.abc import Collection
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from filelock import BaseFileLock, FileLock

# On-disk names
DISK_STORE_SUFFIX: Final[str] = ".duckdb"
DISK_STORE_LOCK_SUFFIX: Final[str] = ".lock"
DISK_STORE_STAGING_DIRNAME: Final[str] = ".staging"

_DATASET_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

log = logging.getLogger("cache/disk")


def validate_dataset_id(dataset_id: str) -> str:
    """
    Ensure the dataset id can be safely used as a file name.

    Raises:
        ValueError: if the id contains characters other than ASCII
            letters, digits, `_` and `-`.
    """
    if not _DATASET_ID_RE.match(dataset_id):
        raise ValueError(f"Invalid dataset id: {dataset_id!r}")
    return dataset_id


def cache_dir_or_default(cache_dir: str | Path | None) -> Path:
    """
    Return cache_dir as a Path if not empty. Otherwise return the
    default value for the cache dir (i.e., `./.visor` like git).
    """
    return Path.cwd() / ".visor" if cache_dir is None else Path(cache_dir)


@dataclass(frozen=True, kw_only=True)
class DiskStoreFile:
    """
    A converted store sitting in the disk store.

    Attributes:
        dataset_id: the dataset identifier.
        path: path of the store file.
        size: file size in bytes.
        mtime: last modification (or last access) time.
    """

    dataset_id: str
    path: Path
    size: int
    mtime: float


class DiskStore:
    """
    Directory of converted stores, one file per dataset, named after
    the dataset id, kept under a byte budget.

    Placing a file is idempotent: when the destination already exists
    we leave it untouched. This protects against two acquisitions of the
    same dataset completing concurrently.
    """

    def __init__(self, directory: str | Path | None, max_bytes: int) -> None:
        """
        Initialize the store, creating the directory if needed.

        Parameters:
            directory: where to keep the store files. If None,
                defaults to .visor/ in the current working directory.
            max_bytes: total byte budget enforced by `evict`.
        """
        self.directory = cache_dir_or_default(directory)
        self.max_bytes = max_bytes
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def staging_dir(self) -> Path:
        """Directory for in-progress conversions on the same filesystem."""
        path = self.directory / DISK_STORE_STAGING_DIRNAME
        path.mkdir(parents=True, exist_ok=True)
        return path

    def path_for(self, dataset_id: str) -> Path:
        """Return the path where the store for dataset_id lives."""
        return self.directory / f"{validate_dataset_id(dataset_id)}{DISK_STORE_SUFFIX}"

    def lock(self, dataset_id: str) -> BaseFileLock:
        """Return a FileLock locking the entry of dataset_id."""
        return FileLock(self.directory / f"{validate_dataset_id(dataset_id)}{DISK_STORE_LOCK_SUFFIX}")

    def get(self, dataset_id: str) -> Path | None:
        """Return the store path if it exists, refreshing its LRU time."""
        path = self.path_for(dataset_id)
        try:
            os.utime(path)
        except FileNotFoundError:
            return None
        except OSError as exc:
            if not path.is_file():
                return None
            log.warning("touching %s... failure: %s", path, exc)
        return path

    def set(self, dataset_id: str, source: Path) -> Path:
        """
        Move source into the store as the file for dataset_id.

        When the destination already exists this is a no-op and source
        is left where it is.

        Returns:
            The destination path.

        Raises:
            OSError: if moving the file fails.
        """
        dest = self.path_for(dataset_id)
        with self.lock(dataset_id):
            if dest.exists():
                log.info("placing %s... skipped (already on disk)", dataset_id)
                return dest
            shutil.move(os.fspath(source), os.fspath(dest))
        log.info("placing %s... ok", dataset_id)
        return dest

    def remove(self, dataset_id: str) -> bool:
        """Remove the store for dataset_id and return whether it existed."""
        path = self.path_for(dataset_id)
        with self.lock(dataset_id):
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        return True

    def files(self) -> list[DiskStoreFile]:
        """Return the stores on disk, least recently used first."""
        result = []
        for path in self.directory.glob(f"*{DISK_STORE_SUFFIX}"):
            dataset_id = path.name.removesuffix(DISK_STORE_SUFFIX)
            if not _DATASET_ID_RE.match(dataset_id):
                continue
            try:
                st = path.stat()
            except FileNotFoundError:
                continue
            result.append(
                DiskStoreFile(
                    dataset_id=dataset_id,
                    path=path,
                    size=st.st_size,
                    mtime=st.st_mtime,
                )
            )
        result.sort(key=lambda f: f.mtime)
        return result

    def usage(self) -> int:
        """Return the total size of the stores in bytes."""
        return sum(f.size for f in self.files())

    def evict(self, keep: Collection[str] = ()) -> list[str]:
        """
        Remove least recently used stores until the budget holds.

        Stores whose dataset id is in keep are never removed, so the
        budget may remain exceeded when they alone exceed it.

        Returns:
            The ids of the removed stores.
        """
        with self._lock:
            files = self.files()
            total = sum(f.size for f in files)
            evicted = []
            for f in files:
                if total <= self.max_bytes:
                    break
                if f.dataset_id in keep:
                    continue
                try:
                    removed = self.remove(f.dataset_id)
                except OSError as exc:
                    log.warning("evicting %s... failure: %s", f.dataset_id, exc)
                    continue
                if removed:
                    total -= f.size
                    evicted.append(f.dataset_id)
                    log.info("evicting %s... ok (%d bytes)", f.dataset_id, f.size)
            return evicted
