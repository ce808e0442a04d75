"""Package serving queries against converted stores.

The `HandlePool` maps dataset ids to open, read-only `DatasetHandle`
instances, resolving datasets through the cache tiers and falling back
to a synchronous acquisition.
"""

from .handle import (
    DatasetHandle,
    HandleError,
    HandleOptions,
    QueryError,
    QueryTimeoutError,
)
from .pool import HandlePool

__all__ = [
    "DatasetHandle",
    "HandleError",
    "HandleOptions",
    "HandlePool",
    "QueryError",
    "QueryTimeoutError",
]
