"""Tests for the visor.pipeline.download module."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from visor.pipeline.download import DownloadError, PipelineDownloader


def _response(chunks: list[bytes], headers: dict[str, str] | None = None) -> MagicMock:
    resp = MagicMock()
    resp.__enter__.return_value = resp
    resp.headers = headers or {}
    resp.iter_content.return_value = iter(chunks)
    return resp


def _session(resp: MagicMock) -> MagicMock:
    session = MagicMock()
    session.get.return_value = resp
    return session


class _FakeClock:
    """Clock advancing by one second at each call."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


class TestPipelineDownloader:
    """Tests for PipelineDownloader.download."""

    def test_writes_file(self, tmp_path: Path):
        resp = _response([b"abc", b"", b"def"], {"Content-Length": "6"})
        downloader = PipelineDownloader(session=_session(resp), timeout=7)
        dest = tmp_path / "raw"

        written = downloader.download("https://example.com/f.csv", dest)

        assert written == 6
        assert dest.read_bytes() == b"abcdef"
        downloader.session.get.assert_called_once_with(
            "https://example.com/f.csv", stream=True, timeout=7
        )

    def test_reports_progress(self, tmp_path: Path):
        resp = _response([b"ab", b"cd", b"ef"], {"Content-Length": "6"})
        downloader = PipelineDownloader(
            session=_session(resp),
            progress_interval=0.5,
            _clock=_FakeClock(),
        )
        reports: list[tuple[int, int]] = []

        downloader.download("u", tmp_path / "raw", progress=lambda d, t: reports.append((d, t)))

        assert reports == [(2, 6), (4, 6), (6, 6), (6, 6)]

    def test_throttles_progress(self, tmp_path: Path):
        resp = _response([b"ab", b"cd", b"ef"], {"Content-Length": "6"})
        downloader = PipelineDownloader(
            session=_session(resp),
            progress_interval=100.0,
            _clock=_FakeClock(),
        )
        reports: list[tuple[int, int]] = []

        downloader.download("u", tmp_path / "raw", progress=lambda d, t: reports.append((d, t)))

        assert reports == [(6, 6)]

    def test_uses_expected_size_without_content_length(self, tmp_path: Path):
        resp = _response([b"abcd"])
        downloader = PipelineDownloader(session=_session(resp), progress_interval=100.0)
        reports: list[tuple[int, int]] = []

        downloader.download(
            "u",
            tmp_path / "raw",
            expected_size=10,
            progress=lambda d, t: reports.append((d, t)),
        )

        assert reports == [(4, 10)]

    def test_unknown_size_final_report(self, tmp_path: Path):
        resp = _response([b"abcd"])
        downloader = PipelineDownloader(session=_session(resp), progress_interval=100.0)
        reports: list[tuple[int, int]] = []

        downloader.download("u", tmp_path / "raw", progress=lambda d, t: reports.append((d, t)))

        assert reports == [(4, 4)]

    def test_http_error(self, tmp_path: Path):
        resp = _response([])
        resp.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        downloader = PipelineDownloader(session=_session(resp))
        with pytest.raises(DownloadError, match="500 Server Error"):
            downloader.download("u", tmp_path / "raw")

    def test_transport_error(self, tmp_path: Path):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        downloader = PipelineDownloader(session=session)
        with pytest.raises(DownloadError, match="refused"):
            downloader.download("u", tmp_path / "raw")

    def test_write_error(self, tmp_path: Path):
        resp = _response([b"abc"])
        downloader = PipelineDownloader(session=_session(resp))
        with pytest.raises(DownloadError):
            downloader.download("u", tmp_path / "missing" / "raw")
