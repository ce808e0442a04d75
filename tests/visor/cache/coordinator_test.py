"""Tests for the visor.cache.coordinator module."""

from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

from visor.cache.coordinator import CacheCoordinator, fingerprint
from visor.cache.disk import DiskStore
from visor.cache.lru import MemoryIndex
from visor.cache.result import NullResultCache


def _write(path: Path, size: int = 10) -> Path:
    path.write_bytes(b"x" * size)
    return path


class TestFingerprint:
    """Tests for the fingerprint function."""

    def test_prefix(self):
        key = fingerprint("stats", {"dataset_id": "abc"})
        prefix, digest = key.split(":")
        assert prefix == "stats"
        assert len(digest) == 64

    def test_map_key_order_is_normalized(self):
        first = fingerprint("data", {"a": 1, "b": {"x": 1, "y": 2}})
        second = fingerprint("data", {"b": {"y": 2, "x": 1}, "a": 1})
        assert first == second

    def test_list_order_is_preserved(self):
        first = fingerprint("data", {"status": ["A", "B"]})
        second = fingerprint("data", {"status": ["B", "A"]})
        assert first != second

    def test_stable_value(self):
        key = fingerprint("filters", {"dataset_id": "abc"})
        assert key == fingerprint("filters", {"dataset_id": "abc"})
        assert key != fingerprint("metadata", {"dataset_id": "abc"})

    def test_non_json_values(self):
        key = fingerprint("data", {"path": Path("/tmp/x")})
        assert key == fingerprint("data", {"path": "/tmp/x"})


class TestCacheCoordinatorMemory:
    """Tests for the memory tier."""

    def test_set_memory_uses_file_size(self, tmp_path: Path, coordinator: CacheCoordinator):
        path = _write(tmp_path / "a.duckdb", 42)
        coordinator.set_memory("a", path)
        assert coordinator.get_memory("a") == path
        assert coordinator.memory.total_bytes == 42

    def test_set_memory_missing_file(self, tmp_path: Path, coordinator: CacheCoordinator):
        coordinator.set_memory("a", tmp_path / "missing.duckdb")
        assert coordinator.memory.total_bytes == 0

    def test_get_memory_drops_vanished_files(self, tmp_path: Path, coordinator: CacheCoordinator):
        path = _write(tmp_path / "a.duckdb")
        coordinator.set_memory("a", path)
        path.unlink()
        assert coordinator.get_memory("a") is None
        assert "a" not in coordinator.memory


class TestCacheCoordinatorDisk:
    """Tests for the disk tier."""

    def test_set_disk_is_idempotent(self, tmp_path: Path, coordinator: CacheCoordinator):
        first = _write(tmp_path / "first.duckdb", 10)
        second = _write(tmp_path / "second.duckdb", 20)
        dest = coordinator.set_disk("abc", first)
        again = coordinator.set_disk("abc", second)
        assert dest == again
        assert dest is not None
        assert dest.stat().st_size == 10
        assert second.exists()

    def test_set_disk_failure_returns_none(self, tmp_path: Path, coordinator: CacheCoordinator):
        with patch.object(coordinator.disk, "set", side_effect=OSError("disk full")):
            assert coordinator.set_disk("abc", tmp_path / "x.duckdb") is None

    def test_set_disk_prunes_and_forgets_evicted(self, tmp_path: Path):
        coordinator = CacheCoordinator(
            memory=MemoryIndex(1 << 20),
            disk=DiskStore(tmp_path / "cache", 15),
        )
        old = coordinator.set_disk("old", _write(tmp_path / "old.duckdb", 10))
        assert old is not None
        coordinator.set_memory("old", old)
        coordinator.set_disk("new", _write(tmp_path / "new.duckdb", 10))
        assert coordinator.get_disk("old") is None
        assert "old" not in coordinator.memory
        assert coordinator.get_disk("new") is not None

    def test_is_cached(self, tmp_path: Path, coordinator: CacheCoordinator):
        assert coordinator.is_cached("abc") is False
        coordinator.set_disk("abc", _write(tmp_path / "a.duckdb"))
        assert coordinator.is_cached("abc") is True


class TestCacheCoordinatorResults:
    """Tests for the result tier."""

    def test_round_trip(self, coordinator: CacheCoordinator, result_cache):
        coordinator.set_result("k", b"v", timedelta(hours=1))
        assert coordinator.get_result("k") == b"v"
        assert result_cache.ttls["k"] == timedelta(hours=1)

    def test_failures_are_misses(self, tmp_path: Path):
        results = MagicMock()
        results.get.side_effect = ConnectionError("down")
        results.set.side_effect = ConnectionError("down")
        coordinator = CacheCoordinator(
            memory=MemoryIndex(100),
            disk=DiskStore(tmp_path / "cache", 100),
            results=results,
        )
        coordinator.set_result("k", b"v", timedelta(hours=1))
        assert coordinator.get_result("k") is None

    def test_default_is_null_cache(self, tmp_path: Path):
        coordinator = CacheCoordinator(
            memory=MemoryIndex(100),
            disk=DiskStore(tmp_path / "cache", 100),
        )
        assert isinstance(coordinator.results, NullResultCache)

    def test_close_closes_results(self, coordinator: CacheCoordinator, result_cache):
        coordinator.close()
        assert result_cache.closed is True
