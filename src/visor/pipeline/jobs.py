"""Module tracking asynchronous dataset acquisitions."""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Final

from ..cache.coordinator import CacheCoordinator
from ..cache.disk import validate_dataset_id
from .pipeline import DatasetPipeline

JOB_DEFAULT_RETENTION: Final[timedelta] = timedelta(hours=1)

# Progress milestones
JOB_PROGRESS_DOWNLOAD_SHARE: Final[float] = 80.0
JOB_PROGRESS_REGISTERING: Final[float] = 95.0
JOB_PROGRESS_DONE: Final[float] = 100.0

log = logging.getLogger("pipeline/jobs")


class JobStatus(str, Enum):
    """Enumerate the states of a download job."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.READY, JobStatus.FAILED)


_TRANSITIONS: Final[dict[JobStatus, frozenset[JobStatus]]] = {
    JobStatus.PENDING: frozenset({JobStatus.DOWNLOADING}),
    JobStatus.DOWNLOADING: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.READY, JobStatus.FAILED}),
    JobStatus.READY: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class JobTransitionError(RuntimeError):
    """Error emitted on a transition the job state machine does not allow."""


@dataclass(kw_only=True)
class DownloadJob:
    """
    State of the acquisition of a single dataset.

    Attributes:
        job_id: unique identifier of this job (copies share it).
        dataset_id: the dataset being acquired.
        status: the current JobStatus.
        progress: completion percentage in [0, 100].
        downloaded: bytes downloaded so far.
        file_size: total bytes to download (0 if unknown).
        message: human readable description of the current step.
        start_time: when the job was created.
        end_time: when the job reached a terminal state.
        error: the error message, for failed jobs.
    """

    job_id: str
    dataset_id: str
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    downloaded: int = 0
    file_size: int = 0
    message: str = ""
    start_time: datetime
    end_time: datetime | None = None
    error: str | None = None

    @property
    def duration(self) -> timedelta | None:
        """Return how long the job took, once it is terminal."""
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON compatible dict."""
        result: dict[str, object] = {
            "job_id": self.job_id,
            "dataset_id": self.dataset_id,
            "status": self.status.value,
            "progress": round(self.progress, 2),
            "downloaded": self.downloaded,
            "file_size": self.file_size,
            "message": self.message,
            "start_time": self.start_time.isoformat(),
        }
        if self.end_time is not None:
            result["end_time"] = self.end_time.isoformat()
            result["duration_seconds"] = self.duration.total_seconds()  # type: ignore[union-attr]
        if self.error is not None:
            result["error"] = self.error
        return result


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobTracker:
    """
    Registry of download jobs, at most one per dataset id.

    Jobs run in a background executor, detached from whoever started
    them: callers observe them by polling `get_job`. Every accessor
    returns a copy of the job, so callers never see shared state.
    """

    def __init__(
        self,
        *,
        pipeline: DatasetPipeline,
        coordinator: CacheCoordinator,
        retention: timedelta = JOB_DEFAULT_RETENTION,
        max_workers: int = 4,
    ):
        """
        Initialize the tracker.

        Parameters:
            pipeline: pipeline running the acquisitions.
            coordinator: cache coordinator where finished stores go.
            retention: how long terminal jobs are kept around.
            max_workers: maximum number of concurrent acquisitions.
        """
        self.pipeline = pipeline
        self.coordinator = coordinator
        self.retention = retention
        self._jobs: dict[str, DownloadJob] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="visor-download",
        )

    def start_download(self, dataset_id: str) -> DownloadJob:
        """
        Return the job acquiring dataset_id, creating and launching one
        if none exists yet.

        Concurrent calls for the same id observe the same job (same
        job_id) and result in a single pipeline run.

        Raises:
            ValueError: if dataset_id is not a valid id.
        """
        validate_dataset_id(dataset_id)
        with self._lock:
            job = self._jobs.get(dataset_id)
            if job is not None:
                return dataclasses.replace(job)
            job = DownloadJob(
                job_id=uuid.uuid4().hex,
                dataset_id=dataset_id,
                start_time=_utcnow(),
                message="Starting download...",
            )
            self._jobs[dataset_id] = job
            snapshot = dataclasses.replace(job)

        log.info("scheduling acquisition of %s (job %s)", dataset_id, job.job_id)
        self._executor.submit(self._run, dataset_id)
        return snapshot

    def get_job(self, dataset_id: str) -> DownloadJob | None:
        """Return a copy of the job for dataset_id, or None."""
        with self._lock:
            job = self._jobs.get(dataset_id)
            return dataclasses.replace(job) if job is not None else None

    def jobs(self) -> list[DownloadJob]:
        """Return copies of all the tracked jobs."""
        with self._lock:
            return [dataclasses.replace(job) for job in self._jobs.values()]

    def cleanup_old_jobs(self, now: datetime | None = None) -> int:
        """
        Remove terminal jobs that ended more than `retention` ago.

        Returns:
            The number of removed jobs.
        """
        now = now if now is not None else _utcnow()
        with self._lock:
            stale = [
                dataset_id
                for dataset_id, job in self._jobs.items()
                if job.status.terminal
                and job.end_time is not None
                and now - job.end_time > self.retention
            ]
            for dataset_id in stale:
                del self._jobs[dataset_id]
        for dataset_id in stale:
            log.info("removed old job for %s", dataset_id)
        return len(stale)

    def close(self, wait: bool = True) -> None:
        """Stop accepting jobs and optionally wait for running ones."""
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def _transition(self, dataset_id: str, status: JobStatus, **changes: object) -> None:
        with self._lock:
            job = self._jobs[dataset_id]
            if status != job.status and status not in _TRANSITIONS[job.status]:
                raise JobTransitionError(f"job {job.job_id}: {job.status.value} -> {status.value}")
            job.status = status
            for name, value in changes.items():
                setattr(job, name, value)
            if status.terminal:
                job.end_time = _utcnow()

    def _report_download(self, dataset_id: str, downloaded: int, total: int) -> None:
        with self._lock:
            job = self._jobs.get(dataset_id)
            if job is None:
                return
            job.downloaded = downloaded
            job.file_size = total
            if total > 0:
                job.progress = min(downloaded / total, 1.0) * JOB_PROGRESS_DOWNLOAD_SHARE

    def _run(self, dataset_id: str) -> None:
        """Run the acquisition of dataset_id to completion or failure."""
        try:
            self._acquire(dataset_id)
        except Exception as exc:
            log.warning("acquiring %s in background... failure: %s", dataset_id, exc)
            try:
                self._transition(
                    dataset_id,
                    JobStatus.FAILED,
                    error=str(exc) or type(exc).__name__,
                    message="Download failed",
                )
            except Exception:
                log.exception("marking job for %s as failed... failure", dataset_id)
            return
        job = self.get_job(dataset_id)
        if job is not None and job.duration is not None:
            log.info(
                "dataset %s ready in %.2f seconds",
                dataset_id,
                job.duration.total_seconds(),
            )

    def _acquire(self, dataset_id: str) -> None:
        self._transition(
            dataset_id,
            JobStatus.DOWNLOADING,
            message="Downloading raw file from the catalog...",
        )

        def progress(downloaded: int, total: int) -> None:
            self._report_download(dataset_id, downloaded, total)

        def on_convert() -> None:
            self._transition(
                dataset_id,
                JobStatus.PROCESSING,
                progress=JOB_PROGRESS_DOWNLOAD_SHARE,
                message="Loading into the columnar store...",
            )

        store_path = self.pipeline.acquire(dataset_id, progress=progress, on_convert=on_convert)

        self._transition(
            dataset_id,
            JobStatus.PROCESSING,
            progress=JOB_PROGRESS_REGISTERING,
            message="Registering in cache...",
        )
        self.pipeline.publish(self.coordinator, dataset_id, store_path)
        self._transition(
            dataset_id,
            JobStatus.READY,
            progress=JOB_PROGRESS_DONE,
            message="Dataset ready to query",
        )
