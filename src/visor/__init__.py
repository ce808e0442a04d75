"""Visor open-data query library.

This library turns the flat-file resources of a CKAN-style catalog into
queryable DuckDB stores, caching converted stores in memory and on disk
and computed results in Redis.
"""

from importlib.metadata import PackageNotFoundError, version

from .cache import CacheCoordinator, DiskStore, MemoryIndex, fingerprint
from .catalog import CatalogClient, CatalogError, CatalogResource
from .config import ConfigError, VisorConfig, load_config
from .engine import DatasetHandle, HandleError, HandlePool, QueryError, QueryTimeoutError
from .pipeline import (
    AcquisitionError,
    ConversionError,
    DatasetPipeline,
    DownloadError,
    DownloadJob,
    JobStatus,
    JobTracker,
)
from .query import (
    AggregationParams,
    FilterParams,
    InvalidIdentifierError,
    QueryParameterError,
    QueryService,
)
from .service import DownloadStatusReport, VisorService

try:
    __version__ = version("visor-datasets")
except PackageNotFoundError:  # pragma: no cover - running from a source tree
    __version__ = "0.0.0"

__all__ = [
    "AcquisitionError",
    "AggregationParams",
    "CacheCoordinator",
    "CatalogClient",
    "CatalogError",
    "CatalogResource",
    "ConfigError",
    "ConversionError",
    "DatasetHandle",
    "DatasetPipeline",
    "DiskStore",
    "DownloadError",
    "DownloadJob",
    "DownloadStatusReport",
    "FilterParams",
    "HandleError",
    "HandlePool",
    "InvalidIdentifierError",
    "JobStatus",
    "JobTracker",
    "MemoryIndex",
    "QueryError",
    "QueryParameterError",
    "QueryService",
    "QueryTimeoutError",
    "VisorConfig",
    "VisorService",
    "fingerprint",
    "load_config",
    "__version__",
]
