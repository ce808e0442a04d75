"""Tests for the visor.query.service module."""

from datetime import date, datetime
from pathlib import Path
from unittest.mock import Mock

import pandas as pd
import pytest

from visor.cache.coordinator import CacheCoordinator
from visor.cache.result import (
    RESULT_TTL_AGGREGATE,
    RESULT_TTL_DATA,
    RESULT_TTL_FILTERS,
    RESULT_TTL_METADATA,
)
from visor.catalog import CatalogResource
from visor.engine.handle import QueryTimeoutError
from visor.engine.pool import HandlePool
from visor.query.builder import AggregationParams, InvalidIdentifierError, QueryParameterError
from visor.query.service import QueryService, records


@pytest.fixture
def service(coordinator: CacheCoordinator, sample_store: Path):
    """Return a QueryService over the sample dataset placed on disk."""
    coordinator.set_disk("sample", sample_store)
    catalog = Mock()
    catalog.get_resource.return_value = CatalogResource(
        id="sample", name="Muestra", url="https://example.com/sample.csv", format="CSV"
    )
    pipeline = Mock()
    pool = HandlePool(coordinator=coordinator, pipeline=pipeline)
    yield QueryService(pool=pool, coordinator=coordinator, catalog=catalog)
    pool.close()
    pipeline.acquire.assert_not_called()


def _by(rows: list[dict], key: str) -> dict:
    return {row[key]: row for row in rows}


class TestRecords:
    """Tests for the records helper."""

    def test_nan_becomes_none(self):
        df = pd.DataFrame({"a": [1.0, float("nan")]})
        assert records(df) == [{"a": 1.0}, {"a": None}]

    def test_dates_are_iso_days(self):
        df = pd.DataFrame({"d": [date(2024, 2, 3), None], "t": [datetime(2024, 2, 3, 4, 5), None]})
        rows = records(df)
        assert rows[0]["d"] == "2024-02-03"
        assert rows[0]["t"].startswith("2024-02-03T04:05:00")
        assert rows[1] == {"d": None, "t": None}


class TestFilteredData:
    """Tests for QueryService.filtered_data."""

    def test_filter(self, service: QueryService):
        response = service.filtered_data("sample", {"filters": {"estado": "Jalisco"}})
        assert response["total"] == 3
        assert {row["estado"] for row in response["data"]} == {"Jalisco"}
        assert {row["fecha"] for row in response["data"]} == {
            "2024-01-15",
            "2024-01-20",
            "2024-03-05",
        }
        assert response["cached"] is False

    def test_sentinel_returns_everything(self, service: QueryService):
        response = service.filtered_data("sample", {"filters": {"estado": "Todas"}})
        assert response["total"] == 6

    def test_limit_and_offset(self, service: QueryService):
        response = service.filtered_data("sample", {"limit": 2, "offset": 1})
        assert response["total"] == 2

    def test_second_call_is_cached(self, service: QueryService, result_cache):
        first = service.filtered_data("sample", {"filters": {"tipo": "A"}})
        second = service.filtered_data("sample", {"filters": {"tipo": "A"}})
        assert first["cached"] is False
        assert second["cached"] is True
        assert second["data"] == first["data"]
        assert list(result_cache.ttls.values()) == [RESULT_TTL_DATA]

    def test_invalid_column(self, service: QueryService):
        with pytest.raises(InvalidIdentifierError):
            service.filtered_data("sample", {"filters": {"estado;": "x"}})

    def test_corrupt_cache_entry_is_a_miss(self, service: QueryService, result_cache):
        service.filtered_data("sample", {})
        for key in result_cache.data:
            result_cache.data[key] = b"not json"
        response = service.filtered_data("sample", {})
        assert response["cached"] is False
        assert response["total"] == 6


class TestAggregatedData:
    """Tests for QueryService.aggregated_data."""

    def test_count_by_group(self, service: QueryService, result_cache):
        response = service.aggregated_data("sample", {"group_by": ["estado"]})
        assert [(row["estado"], row["total"]) for row in response["data"]] == [
            ("Jalisco", 3),
            ("Sonora", 2),
            ("Yucatan", 1),
        ]
        assert list(result_cache.ttls.values()) == [RESULT_TTL_AGGREGATE]

    def test_sum_with_filter(self, service: QueryService):
        response = service.aggregated_data(
            "sample",
            AggregationParams(
                filters={"tipo": "A"}, agg="sum", var_agg="monto", group_by=["estado"]
            ),
        )
        totals = {row["estado"]: row["total"] for row in response["data"]}
        assert totals == {"Jalisco": pytest.approx(125.5), "Sonora": 50.0, "Yucatan": 75.0}

    def test_year_month(self, service: QueryService):
        response = service.aggregated_data(
            "sample", {"group_by": ["fecha"], "date_format": "year_month"}
        )
        assert [(row["fecha"], row["total"]) for row in response["data"]] == [
            ("2024-01", 2),
            ("2024-02", 2),
            ("2024-03", 2),
        ]

    def test_invalid_order_by(self, service: QueryService):
        with pytest.raises(QueryParameterError):
            service.aggregated_data("sample", {"group_by": ["estado"], "order_by": "monto"})


class TestAvailableFilters:
    """Tests for QueryService.available_filters."""

    def test_filters(self, service: QueryService, result_cache):
        response = service.available_filters("sample")
        filters = response["filters"]
        assert filters["estado"] == ["Jalisco", "Sonora", "Yucatan"]
        assert filters["tipo"] == ["A", "B"]
        assert filters["fecha_range"] == {"min": "2024-01-15", "max": "2024-03-05"}
        assert list(result_cache.ttls.values()) == [RESULT_TTL_FILTERS]

    def test_timeout_propagates(self, service: QueryService):
        handle = service.pool.resolve("sample")
        handle.query = Mock(side_effect=QueryTimeoutError("too slow"))
        with pytest.raises(QueryTimeoutError):
            service.available_filters("sample")


class TestStatistics:
    """Tests for the statistics operations."""

    def test_stats(self, service: QueryService):
        response = service.stats("sample", "monto")
        assert response["column"] == "monto"
        assert response["row_count"] == 6
        assert response["count"] == 5
        assert response["min"] == 25.0
        assert response["max"] == 200.0
        assert response["mean"] == pytest.approx(90.1)
        assert response["median"] == 75.0
        assert response["iqr"] == pytest.approx(50.5)

    def test_stats_on_text_column(self, service: QueryService):
        response = service.stats("sample", "estado")
        assert response["row_count"] == 6
        assert response["count"] == 6
        assert response["distinct_count"] == 3
        assert response["min"] == "Jalisco"
        assert response["max"] == "Yucatan"
        for name in ("mean", "median", "stddev", "q25", "q75", "iqr"):
            assert response[name] is None

    def test_stats_on_date_column(self, service: QueryService):
        response = service.stats("sample", "fecha", {"estado": "Jalisco"})
        assert response["count"] == 3
        assert response["min"] == "2024-01-15"
        assert response["max"] == "2024-03-05"
        assert response["mean"] is None
        assert response["iqr"] is None

    def test_stats_without_rows(self, service: QueryService):
        response = service.stats("sample", "monto", {"estado": "Nowhere"})
        assert response == {"column": "monto", "count": 0, "no_rows": True, "cached": False}

    def test_top_values(self, service: QueryService):
        response = service.top_values("sample", "estado", limit=2)
        assert response["total"] == 6
        assert [row["value"] for row in response["values"]] == ["Jalisco", "Sonora"]
        jalisco = response["values"][0]
        assert jalisco["count"] == 3
        assert jalisco["percentage"] == pytest.approx(50.0)

    def test_time_series(self, service: QueryService):
        response = service.time_series(
            "sample", "fecha", "monto", agg="sum", date_format="month"
        )
        assert response["date_column"] == "fecha"
        assert response["value_column"] == "monto"
        assert response["total"] == 3
        assert [row["total"] for row in response["data"]] == [
            pytest.approx(300.5),
            50.0,
            100.0,
        ]

    def test_time_series_by_day(self, service: QueryService):
        response = service.time_series("sample", "fecha")
        assert response["total"] == 6
        assert all(row["total"] == 1 for row in response["data"])

    def test_cross_tab(self, service: QueryService):
        response = service.cross_tab("sample", "estado", "tipo")
        assert response["columns"] == ["A", "B"]
        rows = _by(response["data"], "estado")
        assert rows["Jalisco"]["A"] == 2
        assert rows["Jalisco"]["B"] == 1
        assert rows["Yucatan"]["B"] is None

    def test_cross_tab_same_column(self, service: QueryService):
        with pytest.raises(QueryParameterError):
            service.cross_tab("sample", "estado", "estado")

    def test_percentiles(self, service: QueryService):
        response = service.percentiles("sample", "monto", [25, 0.75])
        assert response["percentiles"] == {"p25": 50.0, "p75": 100.5}

    def test_correlation(self, service: QueryService):
        response = service.correlation("sample", "monto", "cantidad")
        assert response["columns"] == ["monto", "cantidad"]
        assert -1.0 <= response["correlation"] <= 1.0


class TestMetadata:
    """Tests for QueryService.metadata."""

    def test_metadata(self, service: QueryService, result_cache):
        first = service.metadata("sample")
        second = service.metadata("sample")
        assert first["name"] == "Muestra"
        assert first["cached"] is False
        assert second["cached"] is True
        service.catalog.get_resource.assert_called_once_with("sample")
        assert list(result_cache.ttls.values()) == [RESULT_TTL_METADATA]
