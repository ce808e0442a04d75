"""Shared pytest fixtures for visor tests."""

from datetime import timedelta
from pathlib import Path
from unittest.mock import Mock

import pytest

from visor.cache.coordinator import CacheCoordinator
from visor.cache.disk import DiskStore
from visor.cache.lru import MemoryIndex
from visor.catalog import CatalogResource
from visor.pipeline.convert import convert_to_store
from visor.pipeline.pipeline import DatasetPipeline

SAMPLE_CSV = """\
Fecha,Estado,Tipo,Monto,Cantidad
2024-01-15,Jalisco,A,100.5,1
2024-01-20,Jalisco,B,200.0,2
2024-02-03,Sonora,A,50.0,3
2024-02-10,Sonora,B,,4
2024-03-01,Yucatan,A,75.0,5
2024-03-05,Jalisco,A,25.0,6
"""


class FakeResultCache:
    """In-memory ResultCache recording the TTL of each key."""

    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.ttls: dict[str, timedelta] = {}
        self.closed = False

    def get(self, key: str) -> bytes | None:
        return self.data.get(key)

    def set(self, key: str, value: bytes, ttl: timedelta) -> None:
        self.data[key] = value
        self.ttls[key] = ttl

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def sample_csv(tmp_path: Path) -> Path:
    """Return a small CSV with date, categorical and numeric columns."""
    path = tmp_path / "sample.csv"
    path.write_text(SAMPLE_CSV)
    return path


@pytest.fixture
def sample_store(tmp_path: Path, sample_csv: Path) -> Path:
    """Return a converted store built from sample_csv."""
    dest = tmp_path / "sample.duckdb"
    convert_to_store(sample_csv, dest)
    return dest


@pytest.fixture
def result_cache() -> FakeResultCache:
    return FakeResultCache()


@pytest.fixture
def coordinator(tmp_path: Path, result_cache: FakeResultCache) -> CacheCoordinator:
    """Return a coordinator with generous budgets rooted at tmp_path/cache."""
    return CacheCoordinator(
        memory=MemoryIndex(1 << 30),
        disk=DiskStore(tmp_path / "cache", 1 << 30),
        results=result_cache,
    )


class FakeDownloader:
    """
    Downloader writing a fixed payload instead of fetching the URL.

    The download reports 40% progress, sets entered, then blocks until
    gate is set, which lets tests hold an acquisition in flight.
    """

    def __init__(self, payload: bytes, *, gate=None, entered=None, fail: Exception | None = None):
        self.payload = payload
        self.gate = gate
        self.entered = entered
        self.fail = fail
        self.calls: list[str] = []

    def download(self, url, dest, *, expected_size=None, progress=None) -> int:
        self.calls.append(url)
        total = expected_size or len(self.payload)
        if progress is not None:
            progress(int(total * 0.4), total)
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.fail is not None:
            raise self.fail
        Path(dest).write_bytes(self.payload)
        return len(self.payload)


@pytest.fixture
def make_pipeline(coordinator: CacheCoordinator):
    """
    Return a factory of DatasetPipeline instances whose catalog is a
    Mock describing a CSV resource and whose downloader is a
    FakeDownloader serving SAMPLE_CSV.
    """

    def factory(*, size: int | None = None, **kwargs) -> DatasetPipeline:
        catalog = Mock()
        catalog.get_resource.side_effect = lambda dataset_id: CatalogResource(
            id=dataset_id,
            name=f"resource {dataset_id}",
            url=f"https://example.com/{dataset_id}.csv",
            format="CSV",
            size=size,
        )
        downloader = FakeDownloader(SAMPLE_CSV.encode(), **kwargs)
        return DatasetPipeline(
            catalog=catalog,
            staging_dir=coordinator.disk.staging_dir,
            downloader=downloader,
        )

    return factory


@pytest.fixture
def cli_env(tmp_path: Path) -> dict[str, str]:
    """Return environment variables pointing the CLI at tmp_path/cli-cache without Redis."""
    return {
        "CACHE_DIR": str(tmp_path / "cli-cache"),
        "REDIS_URL": "",
        "NO_COLOR": "1",
    }
