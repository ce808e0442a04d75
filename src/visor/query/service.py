"""Module implementing the QueryService type."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import asdict
from datetime import date, datetime, timedelta
from typing import Any

import pandas as pd

from ..cache.coordinator import CacheCoordinator
from ..cache.result import (
    RESULT_TTL_AGGREGATE,
    RESULT_TTL_DATA,
    RESULT_TTL_FILTERS,
    RESULT_TTL_METADATA,
)
from ..catalog import CatalogClient
from ..columns import is_date_column, is_numeric_type
from ..engine.handle import DatasetHandle, QueryError, QueryTimeoutError
from ..engine.pool import HandlePool
from .builder import (
    CATEGORICAL_MAX_DISTINCT,
    TOP_VALUES_DEFAULT_LIMIT,
    AggregationParams,
    FilterParams,
    QueryParameterError,
    build_aggregation_query,
    build_correlation_query,
    build_distinct_count_query,
    build_distinct_values_query,
    build_filter_query,
    build_percentiles_query,
    build_range_query,
    build_stats_query,
    build_top_values_query,
    parse_aggregation_params,
    parse_filter_params,
    quote_identifier,
)

log = logging.getLogger("query/service")

Response = dict[str, Any]


def _isodate(value: Any) -> Any:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    return value


def records(df: pd.DataFrame) -> list[dict[str, Any]]:
    """
    Convert a DataFrame into JSON compatible records.

    NaN becomes None and DATE values become `YYYY-MM-DD` strings.
    """
    df = df.copy()
    for name in df.columns:
        if df[name].dtype == object:
            df[name] = df[name].map(_isodate)
    return json.loads(df.to_json(orient="records", date_format="iso"))


class QueryService:
    """
    Answers dataset queries through the handle pool.

    Every operation first looks up the result cache using a fingerprint
    of (operation, dataset id, parameters). On a miss it resolves the
    dataset handle (which may synchronously acquire the dataset), runs
    the query, and writes the serialized response through to the result
    cache. Responses served from the result cache have `cached` set.
    """

    def __init__(
        self,
        *,
        pool: HandlePool,
        coordinator: CacheCoordinator,
        catalog: CatalogClient,
        timeout: float | None = None,
    ):
        self.pool = pool
        self.coordinator = coordinator
        self.catalog = catalog
        self.timeout = timeout

    def _cached(
        self,
        prefix: str,
        params: Mapping[str, Any],
        ttl: timedelta,
        compute: Callable[[], Response],
    ) -> Response:
        key = self.coordinator.fingerprint(prefix, params)
        raw = self.coordinator.get_result(key)
        if raw is not None:
            try:
                response = json.loads(raw)
            except ValueError as exc:
                log.warning("decoding result %s... failure: %s", key, exc)
            else:
                log.debug("result %s served from cache", key)
                response["cached"] = True
                return response

        response = compute()
        response["cached"] = False
        self.coordinator.set_result(key, json.dumps(response).encode("utf-8"), ttl)
        return response

    def _handle(self, dataset_id: str) -> DatasetHandle:
        return self.pool.resolve(dataset_id)

    def _run(self, dataset_id: str, sql: str, params: Sequence[Any] = ()) -> pd.DataFrame:
        log.debug("query %s: %s %s", dataset_id, sql, list(params))
        return self._handle(dataset_id).query(sql, params, timeout=self.timeout)

    def filtered_data(
        self, dataset_id: str, params: FilterParams | Mapping[str, Any]
    ) -> Response:
        """Return the rows matching the filters as `{"data", "total", "cached"}`."""
        if not isinstance(params, FilterParams):
            params = parse_filter_params(params)

        def compute() -> Response:
            data = records(self._run(dataset_id, *build_filter_query(params)))
            return {"data": data, "total": len(data)}

        key = {"dataset_id": dataset_id, "params": asdict(params)}
        return self._cached("data", key, RESULT_TTL_DATA, compute)

    def available_filters(self, dataset_id: str) -> Response:
        """
        Return the options of every categorical column.

        A column is categorical when it has more than one and fewer than
        CATEGORICAL_MAX_DISTINCT distinct values; its sorted values are
        reported as text. Date-like columns additionally report their
        range as `{column}_range: {"min", "max"}`.
        """

        def compute() -> Response:
            handle = self._handle(dataset_id)
            filters: dict[str, Any] = {}
            columns = handle.columns()
            for name, _ in columns:
                try:
                    quote_identifier(name)
                    count = self._scalar(handle, build_distinct_count_query(name))
                    if not 1 < int(count or 0) < CATEGORICAL_MAX_DISTINCT:
                        continue
                    df = handle.query(build_distinct_values_query(name), timeout=self.timeout)
                except QueryTimeoutError:
                    raise
                except QueryError as exc:
                    log.warning("filter options for %s.%s... failure: %s", dataset_id, name, exc)
                    continue
                filters[name] = [str(value) for value in df["value"]]

            for name, _ in columns:
                if not is_date_column(name):
                    continue
                try:
                    df = handle.query(build_range_query(name), timeout=self.timeout)
                except QueryTimeoutError:
                    raise
                except QueryError as exc:
                    log.warning("range for %s.%s... failure: %s", dataset_id, name, exc)
                    continue
                filters[f"{name}_range"] = records(df)[0]
            return {"filters": filters}

        return self._cached("filters", {"dataset_id": dataset_id}, RESULT_TTL_FILTERS, compute)

    def _scalar(self, handle: DatasetHandle, sql: str) -> Any:
        df = handle.query(sql, timeout=self.timeout)
        return df.iat[0, 0] if len(df) else None

    def aggregated_data(
        self, dataset_id: str, params: AggregationParams | Mapping[str, Any]
    ) -> Response:
        """Return the aggregated groups as `{"data", "total", "cached"}`."""
        if not isinstance(params, AggregationParams):
            params = parse_aggregation_params(params)

        def compute() -> Response:
            data = records(self._run(dataset_id, *build_aggregation_query(params)))
            return {"data": data, "total": len(data)}

        key = {"dataset_id": dataset_id, "params": asdict(params)}
        return self._cached("agg", key, RESULT_TTL_AGGREGATE, compute)

    def stats(
        self, dataset_id: str, column: str, filters: Mapping[str, Any] | None = None
    ) -> Response:
        """
        Return summary statistics of column under filters.

        Columns that are not numeric report counts, min and max only; their
        mean, median, stddev, quartiles and iqr are None. When no row
        matches the filters, the response only contains `column`, `count`
        (zero), and `no_rows`.
        """
        quote_identifier(column)

        def compute() -> Response:
            kinds = {name.lower(): kind for name, kind in self._handle(dataset_id).columns()}
            kind = kinds.get(column.lower())
            numeric = kind is None or is_numeric_type(kind)
            sql, args = build_stats_query(column, filters, numeric=numeric)
            row = records(self._run(dataset_id, sql, args))[0]
            if not row.get("row_count"):
                return {"column": column, "count": 0, "no_rows": True}
            q25, q75 = row.get("q25"), row.get("q75")
            iqr = None
            if isinstance(q25, (int, float)) and isinstance(q75, (int, float)):
                iqr = q75 - q25
            return {"column": column, **row, "iqr": iqr}

        key = {"dataset_id": dataset_id, "column": column, "filters": dict(filters or {})}
        return self._cached("stats", key, RESULT_TTL_AGGREGATE, compute)

    def top_values(
        self,
        dataset_id: str,
        column: str,
        limit: int = TOP_VALUES_DEFAULT_LIMIT,
        filters: Mapping[str, Any] | None = None,
    ) -> Response:
        """Return the most frequent values of column with their share of rows."""

        def compute() -> Response:
            df = self._run(dataset_id, *build_top_values_query(column, limit, filters))
            total = int(df["total"].iloc[0]) if len(df) else 0
            values = records(df.drop(columns=["total"]))
            return {"column": column, "values": values, "total": total}

        key = {
            "dataset_id": dataset_id,
            "column": column,
            "limit": limit,
            "filters": dict(filters or {}),
        }
        return self._cached("top", key, RESULT_TTL_AGGREGATE, compute)

    def time_series(
        self,
        dataset_id: str,
        date_column: str,
        value_column: str | None = None,
        agg: str = "count",
        filters: Mapping[str, Any] | None = None,
        date_format: str = "day",
    ) -> Response:
        """Aggregate value_column per day (or date_format) of date_column, in date order."""
        params = AggregationParams(
            filters=dict(filters or {}),
            agg=agg,
            var_agg=value_column,
            group_by=[date_column],
            order_dir="asc",
            date_format=date_format,
        )

        def compute() -> Response:
            data = records(self._run(dataset_id, *build_aggregation_query(params)))
            return {
                "date_column": date_column,
                "value_column": value_column,
                "agg": agg,
                "data": data,
                "total": len(data),
            }

        key = {"dataset_id": dataset_id, "params": asdict(params)}
        return self._cached("timeseries", key, RESULT_TTL_AGGREGATE, compute)

    def cross_tab(
        self,
        dataset_id: str,
        row_column: str,
        col_column: str,
        value_column: str | None = None,
        agg: str = "count",
        filters: Mapping[str, Any] | None = None,
    ) -> Response:
        """
        Return the two-way table of agg(value_column) by row_column and col_column.

        Each item of `data` holds the row value under row_column and one
        key per distinct col_column value; missing cells are None.
        """
        if row_column == col_column:
            raise QueryParameterError("cross tabulation needs two distinct columns")
        params = AggregationParams(
            filters=dict(filters or {}),
            agg=agg,
            var_agg=value_column,
            group_by=[row_column, col_column],
        )

        def compute() -> Response:
            df = self._run(dataset_id, *build_aggregation_query(params))
            if df.empty:
                columns, data = [], []
            else:
                table = df.pivot(index=row_column, columns=col_column, values="total")
                table.columns = [str(value) for value in table.columns]
                columns = list(table.columns)
                data = records(table.reset_index())
            return {
                "row_column": row_column,
                "col_column": col_column,
                "columns": columns,
                "data": data,
            }

        key = {"dataset_id": dataset_id, "params": asdict(params)}
        return self._cached("crosstab", key, RESULT_TTL_AGGREGATE, compute)

    def percentiles(
        self,
        dataset_id: str,
        column: str,
        percentiles: Sequence[float],
        filters: Mapping[str, Any] | None = None,
    ) -> Response:
        """Return the requested percentiles of column keyed as `p25`, `p90`, ..."""

        def compute() -> Response:
            sql, args = build_percentiles_query(column, percentiles, filters)
            row = records(self._run(dataset_id, sql, args))[0]
            return {"column": column, "percentiles": row}

        key = {
            "dataset_id": dataset_id,
            "column": column,
            "percentiles": [float(p) for p in percentiles],
            "filters": dict(filters or {}),
        }
        return self._cached("percentiles", key, RESULT_TTL_AGGREGATE, compute)

    def correlation(
        self,
        dataset_id: str,
        first: str,
        second: str,
        filters: Mapping[str, Any] | None = None,
    ) -> Response:
        """Return the Pearson correlation of two numeric columns."""

        def compute() -> Response:
            sql, args = build_correlation_query(first, second, filters)
            row = records(self._run(dataset_id, sql, args))[0]
            return {"columns": [first, second], "correlation": row["correlation"]}

        key = {
            "dataset_id": dataset_id,
            "columns": [first, second],
            "filters": dict(filters or {}),
        }
        return self._cached("corr", key, RESULT_TTL_AGGREGATE, compute)

    def metadata(self, dataset_id: str) -> Response:
        """Return the catalog metadata of the dataset."""

        def compute() -> Response:
            return self.catalog.get_resource(dataset_id).to_dict()

        return self._cached("metadata", {"dataset_id": dataset_id}, RESULT_TTL_METADATA, compute)
