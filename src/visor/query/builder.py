"""Module building parameterized DuckDB queries from structured requests.

Every value coming from a request is bound as a `?` parameter. Column
names cannot be parameters, so they are validated against an allow-list
(word characters only) and always double-quoted. Numeric arguments we
render in the SQL text (limits, offsets, percentile fractions) are first
coerced to int or float.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

import dacite

from ..columns import is_date_column
from ..engine.handle import QueryError

TABLE_NAME: Final[str] = "data"

# Distinct-count threshold below which a column is a categorical filter
CATEGORICAL_MAX_DISTINCT: Final[int] = 100

# Maximum number of options we return for a categorical filter
FILTER_OPTIONS_LIMIT: Final[int] = 1000

TOP_VALUES_DEFAULT_LIMIT: Final[int] = 10

# Filter values meaning "do not filter" (compared case-insensitively)
EMPTY_FILTER_VALUES: Final[frozenset[str]] = frozenset({"", "all", "todas"})

AGGREGATE_FUNCTIONS: Final[dict[str, str]] = {
    "count": "COUNT",
    "sum": "SUM",
    "avg": "AVG",
    "mean": "AVG",
    "min": "MIN",
    "max": "MAX",
    "median": "MEDIAN",
    "stddev": "STDDEV",
}

DATE_GRANULARITIES: Final[dict[str, str]] = {
    "year": "date_trunc('year', CAST({column} AS DATE))",
    "quarter": "date_trunc('quarter', CAST({column} AS DATE))",
    "month": "date_trunc('month', CAST({column} AS DATE))",
    "week": "date_trunc('week', CAST({column} AS DATE))",
    "day": "CAST({column} AS DATE)",
    "year_month": "strftime(CAST({column} AS DATE), '%Y-%m')",
}

_IDENTIFIER_RE = re.compile(r"^\w+$")


class QueryParameterError(QueryError, ValueError):
    """Error emitted when the request parameters are malformed."""


class InvalidIdentifierError(QueryParameterError):
    """Error emitted when a column name is not a safe identifier."""


Filters = Mapping[str, Any]


@dataclass(kw_only=True)
class FilterParams:
    """
    Parameters of a filtered-rows request.

    Attributes:
        filters: column name to value (scalar or list of accepted values).
        limit: maximum number of rows (ignored unless positive).
        offset: number of rows to skip (ignored unless positive).
    """

    filters: dict[str, Any] = field(default_factory=dict)
    limit: int = 0
    offset: int = 0


@dataclass(kw_only=True)
class AggregationParams:
    """
    Parameters of an aggregation request.

    Attributes:
        filters: see FilterParams.
        agg: aggregate function name (count, sum, avg, min, max, median, stddev).
        var_agg: column to aggregate; COUNT(*) is used when missing.
        group_by: columns to group by.
        order_by: a group-by column or "total".
        order_dir: "asc" or "desc".
        limit: maximum number of groups (ignored unless positive).
        date_format: granularity used to truncate date-like group-by
            columns (year, quarter, month, week, day, year_month).
    """

    filters: dict[str, Any] = field(default_factory=dict)
    agg: str = "count"
    var_agg: str | None = None
    group_by: list[str] = field(default_factory=list)
    order_by: str | None = None
    order_dir: str | None = None
    limit: int = 0
    date_format: str | None = None


def parse_filter_params(data: Mapping[str, Any]) -> FilterParams:
    """Build FilterParams from a decoded JSON request body."""
    try:
        return dacite.from_dict(FilterParams, dict(data))
    except dacite.DaciteError as exc:
        raise QueryParameterError(f"invalid filter parameters: {exc}") from exc


def parse_aggregation_params(data: Mapping[str, Any]) -> AggregationParams:
    """Build AggregationParams from a decoded JSON request body."""
    try:
        return dacite.from_dict(AggregationParams, dict(data))
    except dacite.DaciteError as exc:
        raise QueryParameterError(f"invalid aggregation parameters: {exc}") from exc


def quote_identifier(name: str) -> str:
    """
    Validate and double-quote a column name.

    Raises:
        InvalidIdentifierError: if name contains anything but word characters.
    """
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise InvalidIdentifierError(f"invalid column name: {name!r}")
    return f'"{name}"'


def is_empty_filter_value(value: Any) -> bool:
    """Return whether value means "do not filter on this column"."""
    if value is None:
        return True
    return isinstance(value, str) and value.strip().lower() in EMPTY_FILTER_VALUES


def _check_scalar(key: str, value: Any) -> Any:
    if isinstance(value, (Mapping, list, tuple, set)):
        raise QueryParameterError(f"unsupported value for filter {key!r}: {value!r}")
    return value


def build_where(filters: Filters | None) -> tuple[str, list[Any]]:
    """
    Build the WHERE clause for the given filters.

    Empty values are skipped. A list becomes `IN (?, ...)`, a scalar
    becomes `= ?`. Filters are combined with AND.

    Returns:
        The clause (empty, or starting with " WHERE ") and its parameters.
    """
    clauses: list[str] = []
    params: list[Any] = []
    for key, value in (filters or {}).items():
        if is_empty_filter_value(value):
            continue
        column = quote_identifier(key)
        if isinstance(value, (list, tuple)):
            values = [_check_scalar(key, v) for v in value if not is_empty_filter_value(v)]
            if not values:
                continue
            placeholders = ", ".join("?" for _ in values)
            clauses.append(f"{column} IN ({placeholders})")
            params.extend(values)
        else:
            clauses.append(f"{column} = ?")
            params.append(_check_scalar(key, value))
    if not clauses:
        return "", []
    return " WHERE " + " AND ".join(clauses), params


def _positive_int(value: Any, name: str) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError) as exc:
        raise QueryParameterError(f"invalid {name}: {value!r}") from exc


def build_filter_query(params: FilterParams) -> tuple[str, list[Any]]:
    """Build the query returning the rows matching params."""
    where, args = build_where(params.filters)
    sql = f"SELECT * FROM {TABLE_NAME}{where}"
    limit = _positive_int(params.limit, "limit")
    offset = _positive_int(params.offset, "offset")
    if limit > 0:
        sql += f" LIMIT {limit}"
    if offset > 0:
        sql += f" OFFSET {offset}"
    return sql, args


def aggregate_expression(agg: str | None, column: str | None) -> str:
    """
    Return the aggregate expression, COUNT(*) when the function is
    unknown or the column is missing.
    """
    function = AGGREGATE_FUNCTIONS.get((agg or "").strip().lower())
    if function is None or not column:
        return "COUNT(*)"
    return f"{function}({quote_identifier(column)})"


def _normalize_granularity(date_format: str) -> str:
    granularity = date_format.strip().lower().replace("-", "_")
    if granularity == "yearmonth":
        granularity = "year_month"
    if granularity not in DATE_GRANULARITIES:
        valid = ", ".join(sorted(DATE_GRANULARITIES))
        raise QueryParameterError(f"invalid date format {date_format!r}; valid values: {valid}")
    return granularity


def group_expression(column: str, date_format: str | None) -> str:
    """Return the SELECT expression for a group-by column."""
    quoted = quote_identifier(column)
    if not date_format or not is_date_column(column):
        return quoted
    return DATE_GRANULARITIES[_normalize_granularity(date_format)].format(column=quoted)


def _order_direction(value: str | None, default: str) -> str:
    if not value:
        return default
    direction = value.strip().upper()
    if direction not in ("ASC", "DESC"):
        raise QueryParameterError(f"invalid order direction: {value!r}")
    return direction


def build_aggregation_query(params: AggregationParams) -> tuple[str, list[Any]]:
    """
    Build the aggregation query for params.

    The SELECT list contains the group-by columns followed by the
    aggregate aliased as `total`. Groups are referenced by position.
    Without an explicit order we sort by the first group-by column
    ascending or, when there is no group-by column, by total descending.
    """
    group_by = list(params.group_by)
    if params.date_format:
        _normalize_granularity(params.date_format)

    # 1. the SELECT list
    selects = [
        f"{group_expression(column, params.date_format)} AS {quote_identifier(column)}"
        for column in group_by
    ]
    selects.append(f"{aggregate_expression(params.agg, params.var_agg)} AS total")
    where, args = build_where(params.filters)
    sql = f"SELECT {', '.join(selects)} FROM {TABLE_NAME}{where}"

    # 2. the GROUP BY clause
    if group_by:
        sql += " GROUP BY " + ", ".join(str(i) for i in range(1, len(group_by) + 1))

    # 3. the ORDER BY clause
    total_position = len(group_by) + 1
    if params.order_by:
        if params.order_by == "total":
            position = total_position
        elif params.order_by in group_by:
            position = group_by.index(params.order_by) + 1
        else:
            quote_identifier(params.order_by)
            raise QueryParameterError(
                f"cannot order by {params.order_by!r}: use a group-by column or 'total'"
            )
        sql += f" ORDER BY {position} {_order_direction(params.order_dir, 'ASC')}"
    elif group_by:
        sql += f" ORDER BY 1 {_order_direction(params.order_dir, 'ASC')}"
    else:
        sql += f" ORDER BY total {_order_direction(params.order_dir, 'DESC')}"

    # 4. the LIMIT clause
    limit = _positive_int(params.limit, "limit")
    if limit > 0:
        sql += f" LIMIT {limit}"
    return sql, args


def build_stats_query(
    column: str, filters: Filters | None = None, *, numeric: bool = True
) -> tuple[str, list[Any]]:
    """
    Build the single-row summary statistics query for column.

    Counts, min and max work for any column type. When numeric is false
    the mean, median, stddev and quartiles are NULL.
    """
    c = quote_identifier(column)
    where, args = build_where(filters)
    if numeric:
        moments = (
            f"AVG({c}) AS mean, "
            f"MEDIAN({c}) AS median, "
            f"STDDEV({c}) AS stddev, "
            f"quantile_cont({c}, 0.25) AS q25, "
            f"quantile_cont({c}, 0.75) AS q75 "
        )
    else:
        moments = ", ".join(
            f"CAST(NULL AS DOUBLE) AS {name}" for name in ("mean", "median", "stddev", "q25", "q75")
        ) + " "
    sql = (
        "SELECT "
        "COUNT(*) AS row_count, "
        f"COUNT({c}) AS count, "
        f"COUNT(DISTINCT {c}) AS distinct_count, "
        f"MIN({c}) AS min, "
        f"MAX({c}) AS max, "
        f"{moments}"
        f"FROM {TABLE_NAME}{where}"
    )
    return sql, args


def build_top_values_query(
    column: str,
    limit: int = TOP_VALUES_DEFAULT_LIMIT,
    filters: Filters | None = None,
) -> tuple[str, list[Any]]:
    """
    Build the query counting the most frequent values of column.

    The percentage is relative to the number of filtered rows.
    """
    c = quote_identifier(column)
    limit = _positive_int(limit, "limit") or TOP_VALUES_DEFAULT_LIMIT
    where, args = build_where(filters)
    sql = (
        f"SELECT {c} AS value, "
        "COUNT(*) AS count, "
        "100.0 * COUNT(*) / SUM(COUNT(*)) OVER () AS percentage, "
        "SUM(COUNT(*)) OVER () AS total "
        f"FROM {TABLE_NAME}{where} "
        "GROUP BY 1 "
        "ORDER BY 2 DESC, 1 ASC "
        f"LIMIT {limit}"
    )
    return sql, args


def percentile_label(fraction: float) -> str:
    """Return the result key for a percentile fraction (0.25 -> "p25")."""
    return f"p{fraction * 100:g}"


def normalize_percentiles(percentiles: Sequence[float]) -> list[float]:
    """
    Return percentiles as fractions in [0, 1].

    Values greater than 1 are interpreted as percentages.

    Raises:
        QueryParameterError: if a value is not a number in [0, 100].
    """
    if not percentiles:
        raise QueryParameterError("at least one percentile is required")
    result = []
    for value in percentiles:
        try:
            fraction = float(value)
        except (TypeError, ValueError) as exc:
            raise QueryParameterError(f"invalid percentile: {value!r}") from exc
        if fraction > 1:
            fraction /= 100
        if not 0 <= fraction <= 1:
            raise QueryParameterError(f"percentile out of range: {value!r}")
        result.append(fraction)
    return result


def build_percentiles_query(
    column: str,
    percentiles: Sequence[float],
    filters: Filters | None = None,
) -> tuple[str, list[Any]]:
    """Build the query computing the given percentiles of column."""
    c = quote_identifier(column)
    selects = [
        f'quantile_cont({c}, {fraction!r}) AS "{percentile_label(fraction)}"'
        for fraction in normalize_percentiles(percentiles)
    ]
    where, args = build_where(filters)
    return f"SELECT {', '.join(selects)} FROM {TABLE_NAME}{where}", args


def build_correlation_query(
    first: str,
    second: str,
    filters: Filters | None = None,
) -> tuple[str, list[Any]]:
    """Build the query computing the Pearson correlation of two columns."""
    where, args = build_where(filters)
    sql = (
        f"SELECT corr({quote_identifier(first)}, {quote_identifier(second)}) AS correlation "
        f"FROM {TABLE_NAME}{where}"
    )
    return sql, args


def build_distinct_count_query(column: str) -> str:
    """Build the query counting the distinct values of column."""
    return f"SELECT COUNT(DISTINCT {quote_identifier(column)}) AS n FROM {TABLE_NAME}"


def build_distinct_values_query(column: str, limit: int = FILTER_OPTIONS_LIMIT) -> str:
    """Build the query listing the sorted distinct values of column as text."""
    c = quote_identifier(column)
    return (
        f"SELECT DISTINCT {c} AS sort_key, CAST({c} AS VARCHAR) AS value "
        f"FROM {TABLE_NAME} WHERE {c} IS NOT NULL "
        f"ORDER BY 1 LIMIT {_positive_int(limit, 'limit')}"
    )


def build_range_query(column: str) -> str:
    """Build the query returning the textual (min, max) of column."""
    c = quote_identifier(column)
    return (
        f"SELECT CAST(MIN({c}) AS VARCHAR) AS min, CAST(MAX({c}) AS VARCHAR) AS max "
        f"FROM {TABLE_NAME}"
    )
