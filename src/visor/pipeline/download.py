"""Module for streaming raw dataset files to disk."""

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Final

import requests

from ..catalog import AcquisitionError

DOWNLOAD_CHUNK_SIZE: Final[int] = 64 * 1024
DOWNLOAD_DEFAULT_PROGRESS_INTERVAL: Final[float] = 0.5

ProgressSink = Callable[[int, int], None]
"""Receives (downloaded_bytes, total_bytes); total is 0 when unknown."""

log = logging.getLogger("pipeline/download")


class DownloadError(AcquisitionError):
    """Error emitted when we cannot fetch the raw file."""


class PipelineDownloader:
    """Streams a URL into a local file reporting progress."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout: float = 300.0,
        progress_interval: float = DOWNLOAD_DEFAULT_PROGRESS_INTERVAL,
        _clock: Callable[[], float] = time.monotonic,  # used for testing
    ):
        """
        Initialize the downloader.

        Parameters:
            session: optional requests session (useful for testing).
            timeout: connect/read timeout in seconds.
            progress_interval: minimum number of seconds between two
                progress reports, so we do not report every chunk.
        """
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.progress_interval = progress_interval
        self._clock = _clock

    def download(
        self,
        url: str,
        dest: Path,
        *,
        expected_size: int | None = None,
        progress: ProgressSink | None = None,
    ) -> int:
        """
        Download url into dest.

        Arguments:
            url: the URL to fetch.
            dest: the file to write.
            expected_size: size declared by the catalog, used when the
                server does not send a Content-Length.
            progress: optional sink receiving progress reports.

        Returns:
            The number of bytes written.

        Raises:
            DownloadError: on transport errors or non-2xx statuses.
        """
        log.info("fetching %s... start", url)
        try:
            written = self._download(url, dest, expected_size, progress)
        except (requests.RequestException, OSError) as exc:
            log.warning("fetching %s... failure: %s", url, exc)
            raise DownloadError(f"error downloading {url}: {exc}") from exc
        log.info("fetching %s... ok (%.2f MB)", url, written / (1024 * 1024))
        return written

    def _download(
        self,
        url: str,
        dest: Path,
        expected_size: int | None,
        progress: ProgressSink | None,
    ) -> int:
        with self.session.get(url, stream=True, timeout=self.timeout) as resp:
            resp.raise_for_status()
            content_length = resp.headers.get("Content-Length")
            total = int(content_length) if content_length is not None else (expected_size or 0)

            written = 0
            last_report = self._clock()
            with open(dest, "wb") as filep:
                for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if not chunk:
                        continue
                    filep.write(chunk)
                    written += len(chunk)
                    now = self._clock()
                    if progress is not None and now - last_report >= self.progress_interval:
                        progress(written, total)
                        last_report = now

            if progress is not None:
                progress(written, max(total, written))
            return written
