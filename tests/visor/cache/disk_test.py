"""Tests for the visor.cache.disk module."""

import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from filelock import BaseFileLock

from visor.cache.disk import DiskStore, cache_dir_or_default, validate_dataset_id


def _write(path: Path, size: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    return path


class TestValidateDatasetId:
    """Tests for validate_dataset_id."""

    @pytest.mark.parametrize("dataset_id", ["abc", "a-b_c", "0f1e2d3c-aaaa-bbbb-cccc-0123456789ab"])
    def test_valid(self, dataset_id: str):
        assert validate_dataset_id(dataset_id) == dataset_id

    @pytest.mark.parametrize("dataset_id", ["", "../etc", "a/b", "a b", "a.duckdb"])
    def test_invalid(self, dataset_id: str):
        with pytest.raises(ValueError, match="Invalid dataset id"):
            validate_dataset_id(dataset_id)


class TestCacheDirOrDefault:
    """Tests for cache_dir_or_default."""

    def test_none(self):
        assert cache_dir_or_default(None) == Path.cwd() / ".visor"

    def test_string(self, tmp_path: Path):
        assert cache_dir_or_default(str(tmp_path)) == tmp_path


class TestDiskStoreSet:
    """Tests for placing files in the store."""

    def test_set_moves_file(self, tmp_path: Path):
        store = DiskStore(tmp_path / "cache", 1000)
        src = _write(tmp_path / "src.duckdb", 10)
        dest = store.set("abc", src)
        assert dest == tmp_path / "cache" / "abc.duckdb"
        assert dest.read_bytes() == b"x" * 10
        assert not src.exists()

    def test_set_is_idempotent(self, tmp_path: Path):
        store = DiskStore(tmp_path / "cache", 1000)
        first = _write(tmp_path / "a.duckdb", 10)
        second = _write(tmp_path / "b.duckdb", 20)
        store.set("abc", first)
        dest = store.set("abc", second)
        assert dest.stat().st_size == 10
        assert second.exists()

    def test_get(self, tmp_path: Path):
        store = DiskStore(tmp_path / "cache", 1000)
        assert store.get("abc") is None
        store.set("abc", _write(tmp_path / "a.duckdb", 10))
        assert store.get("abc") == store.path_for("abc")

    def test_get_when_touch_is_denied(self, tmp_path: Path, caplog):
        store = DiskStore(tmp_path / "cache", 1000)
        store.set("abc", _write(tmp_path / "a.duckdb", 10))
        denied = patch("visor.cache.disk.os.utime", side_effect=PermissionError("not owner"))
        with caplog.at_level(logging.WARNING, logger="cache/disk"), denied:
            assert store.get("abc") == store.path_for("abc")
            assert store.get("missing") is None
        assert "not owner" in caplog.text

    def test_lock(self, tmp_path: Path):
        store = DiskStore(tmp_path / "cache", 1000)
        lock = store.lock("abc")
        assert isinstance(lock, BaseFileLock)

    def test_remove(self, tmp_path: Path):
        store = DiskStore(tmp_path / "cache", 1000)
        store.set("abc", _write(tmp_path / "a.duckdb", 10))
        assert store.remove("abc") is True
        assert store.remove("abc") is False
        assert store.get("abc") is None

    def test_staging_dir_is_inside(self, tmp_path: Path):
        store = DiskStore(tmp_path / "cache", 1000)
        assert store.staging_dir.parent == store.directory
        assert store.staging_dir.is_dir()


class TestDiskStoreEvict:
    """Tests for LRU eviction under the byte budget."""

    def _populate(self, tmp_path: Path) -> DiskStore:
        store = DiskStore(tmp_path / "cache", 250)
        for i, dataset_id in enumerate(("old", "mid", "new")):
            dest = store.set(dataset_id, _write(tmp_path / f"{dataset_id}.src", 100))
            os.utime(dest, (1_000_000 + i, 1_000_000 + i))
        return store

    def test_files_sorted_by_mtime(self, tmp_path: Path):
        store = self._populate(tmp_path)
        assert [f.dataset_id for f in store.files()] == ["old", "mid", "new"]
        assert store.usage() == 300

    def test_files_ignores_foreign_files(self, tmp_path: Path):
        store = self._populate(tmp_path)
        _write(store.directory / "not valid.duckdb", 5)
        _write(store.directory / "abc.duckdb.wal", 5)
        assert [f.dataset_id for f in store.files()] == ["old", "mid", "new"]

    def test_evicts_least_recently_used(self, tmp_path: Path):
        store = self._populate(tmp_path)
        assert store.evict() == ["old"]
        assert store.usage() == 200

    def test_get_refreshes_recency(self, tmp_path: Path):
        store = self._populate(tmp_path)
        store.get("old")
        assert store.evict() == ["mid"]

    def test_keep_is_never_evicted(self, tmp_path: Path):
        store = self._populate(tmp_path)
        assert store.evict(keep=("old",)) == ["mid"]

    def test_nothing_to_evict(self, tmp_path: Path):
        store = DiskStore(tmp_path / "cache", 1000)
        store.set("abc", _write(tmp_path / "a.src", 10))
        assert store.evict() == []
