"""Package implementing the three cache tiers.

The `CacheCoordinator` class is the only component the rest of the
library talks to for caching. It unifies:

1. the `MemoryIndex`, a bounded LRU of the datasets whose converted
   store is "hot" (bounded both by entry count and by cumulative size);

2. the `DiskStore`, a directory holding one converted store per dataset
   under a byte budget;

3. the `ResultCache`, a remote TTL-based key-value store (Redis) for
   serialized query results.

Lookup Order
------------

A query for a dataset resolves its converted store by looking at:

1. the memory index (fast, in process)
2. the disk store (fast, survives restarts)
3. the acquisition pipeline (slow: download, load, index)

On-Disk Format
--------------

We store files named after the following pattern:

    $cachedir/{dataset_id}.duckdb

The `{dataset_id}` is the catalog resource id, validated to only contain
ASCII letters, digits, `_` and `-`, so that the id IS the path and we do
not need any extra metadata. Conversions in progress live in:

    $cachedir/.staging/

which sits on the same filesystem, so moving a finished store into place
is a rename.

Result Keys
-----------

Result keys are fingerprints computed as `{prefix}:{sha256}` over the
canonical JSON encoding of the parameters. Mapping keys are sorted before
hashing; list order is preserved. See `fingerprint`.
"""

from .coordinator import CacheCoordinator, fingerprint
from .disk import DiskStore, cache_dir_or_default, validate_dataset_id
from .lru import MemoryIndex
from .result import (
    RESULT_TTL_AGGREGATE,
    RESULT_TTL_DATA,
    RESULT_TTL_FILTERS,
    RESULT_TTL_METADATA,
    NullResultCache,
    RedisResultCache,
    ResultCache,
)

__all__ = [
    "CacheCoordinator",
    "DiskStore",
    "MemoryIndex",
    "NullResultCache",
    "RESULT_TTL_AGGREGATE",
    "RESULT_TTL_DATA",
    "RESULT_TTL_FILTERS",
    "RESULT_TTL_METADATA",
    "RedisResultCache",
    "ResultCache",
    "cache_dir_or_default",
    "fingerprint",
    "validate_dataset_id",
]
