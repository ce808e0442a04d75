"""Package for acquiring datasets into converted stores.

The `DatasetPipeline` class fetches the raw file of a dataset and
converts it into a local DuckDB store.

The `JobTracker` class runs acquisitions in the background, at most one
per dataset, and exposes their progress.

Acquisition Steps
-----------------

1. resolve the resource metadata (URL, format, size) using the catalog;

2. stream the raw file into a temporary directory inside the staging
   directory, reporting (downloaded, total) bytes at a bounded rate;

3. bulk load the raw file into a new store as the single `data` table,
   skipping malformed rows instead of failing the whole load;

4. create an index on every column whose name looks like a date or
   contains a categorical keyword (entity, state, type, ...);

5. checkpoint the store.

Failures in steps 1-3 are fatal for the attempt. Failures in steps 4-5
are logged and ignored, since the store is usable anyway.

Job States
----------

    PENDING -> DOWNLOADING -> PROCESSING -> READY
                    |              |
                    +-> FAILED <---+

READY and FAILED are terminal. The download accounts for 0-80% of the
progress, loading starts at 80%, and 95% means we are registering the
store into the cache tiers.
"""

from ..catalog import AcquisitionError
from .convert import ConversionError, ConversionResult, convert_to_store
from .download import DownloadError, PipelineDownloader
from .jobs import DownloadJob, JobStatus, JobTracker
from .pipeline import DatasetPipeline

__all__ = [
    "AcquisitionError",
    "ConversionError",
    "ConversionResult",
    "DatasetPipeline",
    "DownloadError",
    "DownloadJob",
    "JobStatus",
    "JobTracker",
    "PipelineDownloader",
    "convert_to_store",
]
