"""Package building and running queries against converted stores.

The `builder` module turns structured requests into parameterized SQL
for the single `data` table of a store. The `QueryService` runs those
queries through the handle pool, writing serialized responses through
to the result cache.
"""

from .builder import (
    AggregationParams,
    FilterParams,
    InvalidIdentifierError,
    QueryParameterError,
    build_aggregation_query,
    build_filter_query,
    build_where,
)
from .service import QueryService

__all__ = [
    "AggregationParams",
    "FilterParams",
    "InvalidIdentifierError",
    "QueryParameterError",
    "QueryService",
    "build_aggregation_query",
    "build_filter_query",
    "build_where",
]
