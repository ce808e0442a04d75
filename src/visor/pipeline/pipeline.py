"""Module implementing the DatasetPipeline type."""

import logging
import uuid
from collections.abc import Callable
from pathlib import Path
from tempfile import TemporaryDirectory

from ..cache.coordinator import CacheCoordinator
from ..cache.disk import validate_dataset_id
from ..catalog import CatalogClient, CatalogError
from .convert import convert_to_store
from .download import PipelineDownloader, ProgressSink

log = logging.getLogger("pipeline/acquire")


class DatasetPipeline:
    """Component fetching a dataset and converting it into a store."""

    def __init__(
        self,
        *,
        catalog: CatalogClient,
        staging_dir: Path,
        downloader: PipelineDownloader | None = None,
    ):
        """
        Initialize the pipeline.

        Parameters:
            catalog: client resolving dataset ids to download URLs.
            staging_dir: directory where raw files and in-progress stores
                are written. It should be on the same filesystem as the
                disk store so that placing a finished store is a rename.
            downloader: optional downloader (a default one is created).
        """
        self.catalog = catalog
        self.staging_dir = staging_dir
        self.downloader = downloader if downloader is not None else PipelineDownloader()

    def acquire(
        self,
        dataset_id: str,
        progress: ProgressSink | None = None,
        on_convert: Callable[[], None] | None = None,
    ) -> Path:
        """
        Download the raw file of dataset_id and convert it into a new store.

        The returned store lives in the staging directory: the caller is
        in charge of handing it to the cache coordinator.

        Arguments:
            dataset_id: the catalog resource id.
            progress: optional sink receiving (downloaded, total) bytes.
            on_convert: optional callback invoked once the download is
                complete and the conversion is about to start.

        Returns:
            Path to the converted store.

        Raises:
            CatalogError: if the catalog cannot describe the resource.
            DownloadError: if fetching the raw file fails.
            ConversionError: if loading the raw file fails.
        """
        validate_dataset_id(dataset_id)
        log.info("acquiring %s... start", dataset_id)

        # 1. resolve the resource metadata
        resource = self.catalog.get_resource(dataset_id)
        if not resource.url:
            raise CatalogError(f"resource {dataset_id} has no download URL")
        log.info("resource %s: %s (%s)", dataset_id, resource.name, resource.format)

        self.staging_dir.mkdir(parents=True, exist_ok=True)
        store_path = self.staging_dir / f"{dataset_id}_{uuid.uuid4().hex}.duckdb"

        # Use a temporary directory, which is always removed regardless
        # of whether the download or the conversion fails
        with TemporaryDirectory(dir=self.staging_dir) as tmp_dir:
            raw_file = Path(tmp_dir) / f"{dataset_id}.raw"

            # 2. stream the raw file to disk
            self.downloader.download(
                resource.url,
                raw_file,
                expected_size=resource.size,
                progress=progress,
            )

            # 3. bulk load, index, and checkpoint
            if on_convert is not None:
                on_convert()
            try:
                convert_to_store(raw_file, store_path, declared_format=resource.format)
            except Exception:
                _remove_quietly(store_path)
                raise

        log.info("acquiring %s... ok", dataset_id)
        return store_path

    def publish(self, coordinator: CacheCoordinator, dataset_id: str, store_path: Path) -> Path:
        """
        Hand a freshly converted store to the cache tiers.

        The store moves into the disk store and becomes hot in the memory
        index. When another acquisition already placed the same dataset
        on disk, we keep that copy and discard ours. When moving fails,
        the staging copy is served in place.

        Returns:
            Path of the store to open.
        """
        final_path = coordinator.set_disk(dataset_id, store_path)
        if final_path is None:
            final_path = store_path
        elif final_path != store_path:
            self.discard(store_path)
        coordinator.set_memory(dataset_id, final_path)
        return final_path

    def discard(self, store_path: Path) -> None:
        """Remove a staging store that the disk store did not adopt."""
        if store_path.parent == self.staging_dir:
            _remove_quietly(store_path)


def _remove_quietly(path: Path) -> None:
    for candidate in (path, path.with_name(path.name + ".wal")):
        try:
            candidate.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("removing %s... failure: %s", candidate, exc)
