"""Module implementing the VisorService registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from .cache.coordinator import CacheCoordinator
from .cache.disk import DiskStore, validate_dataset_id
from .cache.lru import MemoryIndex
from .cache.result import NullResultCache, RedisResultCache, ResultCache
from .catalog import CatalogClient
from .config import VisorConfig
from .engine.handle import HandleOptions
from .engine.pool import HandlePool
from .pipeline.download import PipelineDownloader
from .pipeline.jobs import JOB_PROGRESS_DONE, DownloadJob, JobTracker
from .pipeline.pipeline import DatasetPipeline
from .query.service import QueryService

log = logging.getLogger("service")

STATUS_NOT_FOUND = "not_found"


@dataclass(frozen=True, kw_only=True)
class DownloadStatusReport:
    """
    Acquisition status of a dataset as reported to callers.

    Attributes:
        dataset_id: the dataset id.
        status: one of pending, downloading, processing, ready,
            failed, or not_found.
        progress: completion percentage in [0, 100].
        message: human readable description of the current step.
        cached: whether the report comes from the cache tiers
            rather than from a job.
        job: the job, when one is tracked.
    """

    dataset_id: str
    status: str
    progress: float = 0.0
    message: str = ""
    cached: bool = False
    job: DownloadJob | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON compatible dict."""
        if self.job is not None:
            result = self.job.to_dict()
        else:
            result = {
                "dataset_id": self.dataset_id,
                "status": self.status,
                "progress": self.progress,
                "message": self.message,
            }
        result["cached"] = self.cached
        return result


def _result_cache_for(url: str) -> ResultCache:
    if not url:
        log.info("result cache disabled")
        return NullResultCache()
    cache = RedisResultCache.from_url(url)
    if not cache.ping():
        log.warning("result cache at %s unreachable, continuing without it", url)
        cache.close()
        return NullResultCache()
    return cache


class VisorService:
    """
    Registry owning every long-lived component.

    Use as a context manager, or call close() when done:

        with VisorService.from_config(load_config()) as visor:
            visor.queries.stats("resource-id", "amount")

    Closing stops the job executor, closes the pooled handles, and
    disconnects from the result cache.
    """

    def __init__(
        self,
        *,
        coordinator: CacheCoordinator,
        catalog: CatalogClient,
        pipeline: DatasetPipeline,
        jobs: JobTracker,
        pool: HandlePool,
        queries: QueryService,
    ):
        self.coordinator = coordinator
        self.catalog = catalog
        self.pipeline = pipeline
        self.jobs = jobs
        self.pool = pool
        self.queries = queries

    @classmethod
    def from_config(
        cls,
        config: VisorConfig,
        *,
        results: ResultCache | None = None,
    ) -> VisorService:
        """
        Build the service described by config.

        Parameters:
            config: the configuration.
            results: optional result cache overriding config.redis_url.
        """
        # 1. cache tiers
        disk = DiskStore(Path(config.cache_dir), config.disk_cache_bytes)
        memory = MemoryIndex(config.memory_cache_bytes, max_entries=config.max_memory_entries)
        if results is None:
            results = _result_cache_for(config.redis_url)
        coordinator = CacheCoordinator(memory=memory, disk=disk, results=results)

        # 2. acquisition
        catalog = CatalogClient(config.catalog_url, timeout=config.catalog_timeout_seconds)
        downloader = PipelineDownloader(
            timeout=config.download_timeout_seconds,
            progress_interval=config.progress_interval_seconds,
        )
        pipeline = DatasetPipeline(
            catalog=catalog,
            staging_dir=disk.staging_dir,
            downloader=downloader,
        )
        jobs = JobTracker(
            pipeline=pipeline,
            coordinator=coordinator,
            retention=timedelta(seconds=config.job_retention_seconds),
            max_workers=config.download_workers,
        )

        # 3. queries
        pool = HandlePool(
            coordinator=coordinator,
            pipeline=pipeline,
            options=HandleOptions(
                max_open=config.handle_pool.max_open,
                max_idle=config.handle_pool.max_idle,
                max_lifetime=config.handle_pool.max_lifetime_seconds,
            ),
        )
        queries = QueryService(
            pool=pool,
            coordinator=coordinator,
            catalog=catalog,
            timeout=config.query_timeout_seconds,
        )

        log.info("visor service ready (cache dir: %s)", disk.directory)
        return cls(
            coordinator=coordinator,
            catalog=catalog,
            pipeline=pipeline,
            jobs=jobs,
            pool=pool,
            queries=queries,
        )

    def __enter__(self) -> VisorService:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def start_download(self, dataset_id: str) -> DownloadJob:
        """Start (or join) the background acquisition of dataset_id."""
        return self.jobs.start_download(dataset_id)

    def get_job(self, dataset_id: str) -> DownloadJob | None:
        return self.jobs.get_job(dataset_id)

    def download_status(self, dataset_id: str) -> DownloadStatusReport:
        """
        Report the acquisition status of dataset_id.

        A tracked job wins. Without a job, a dataset present in the
        cache tiers is ready, and any other dataset is not_found.

        Raises:
            ValueError: if dataset_id is not a valid id.
        """
        validate_dataset_id(dataset_id)
        job = self.jobs.get_job(dataset_id)
        if job is not None:
            return DownloadStatusReport(
                dataset_id=dataset_id,
                status=job.status.value,
                progress=job.progress,
                message=job.message,
                job=job,
            )
        if self.coordinator.is_cached(dataset_id):
            return DownloadStatusReport(
                dataset_id=dataset_id,
                status="ready",
                progress=JOB_PROGRESS_DONE,
                message="Dataset ready to query",
                cached=True,
            )
        return DownloadStatusReport(
            dataset_id=dataset_id,
            status=STATUS_NOT_FOUND,
            message="No download in progress for this dataset; start one first",
        )

    def cleanup_jobs(self) -> int:
        """Forget finished jobs older than the retention window."""
        return self.jobs.cleanup_old_jobs()

    def close(self) -> None:
        """Release every resource owned by the service."""
        self.jobs.close(wait=True)
        self.pool.close()
        self.coordinator.close()
