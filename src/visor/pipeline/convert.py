"""Module for loading raw files into DuckDB converted stores."""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

import duckdb

from ..catalog import AcquisitionError
from ..columns import is_category_column, is_date_column

STORE_TABLE_NAME: Final[str] = "data"

_INDEX_NAME_RE = re.compile(r"[^A-Za-z0-9_]")

log = logging.getLogger("pipeline/convert")


class ConversionError(AcquisitionError):
    """Error emitted when we cannot load the raw file into a store."""


@dataclass(frozen=True, kw_only=True)
class ConversionResult:
    """
    Outcome of converting a raw file.

    Attributes:
        path: the converted store.
        rows: number of loaded rows, or None if counting failed.
        indexes: the columns that received an index.
    """

    path: Path
    rows: int | None
    indexes: list[str] = field(default_factory=list)


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _reader_for_format(source: Path, declared_format: str) -> str:
    """Return the DuckDB table function reading source."""
    fmt = declared_format.strip().lower().lstrip(".")
    literal = _sql_literal(str(source))
    if fmt in ("json", "geojson", "ndjson", "jsonl"):
        return f"read_json_auto({literal}, ignore_errors = true)"
    if fmt == "parquet":
        return f"read_parquet({literal})"
    if fmt not in ("", "csv", "tsv", "txt"):
        log.warning("unknown format %r for %s, trying to read it as CSV", declared_format, source)
    return (
        f"read_csv_auto({literal}, "
        "header = true, "
        "ignore_errors = true, "
        "sample_size = -1, "
        "null_padding = true, "
        "normalize_names = true, "
        "dateformat = '%Y-%m-%d')"
    )


def convert_to_store(source: Path, dest: Path, *, declared_format: str = "csv") -> ConversionResult:
    """
    Load source into a new DuckDB store at dest as the `data` table.

    Malformed rows are skipped rather than failing the load. After
    loading we index date-like and categorical columns and checkpoint
    the store; failures in these two steps are logged and ignored.

    Arguments:
        source: the raw downloaded file.
        dest: where to create the store (must not exist).
        declared_format: the format declared by the catalog.

    Returns:
        A ConversionResult instance.

    Raises:
        ConversionError: if the table cannot be created at all.
    """
    log.info("converting %s... start", source.name)
    try:
        conn = duckdb.connect(str(dest))
    except duckdb.Error as exc:
        raise ConversionError(f"error creating store {dest}: {exc}") from exc

    try:
        # 1. bulk load the raw file
        try:
            conn.execute(
                f"CREATE TABLE {STORE_TABLE_NAME} AS "
                f"SELECT * FROM {_reader_for_format(source, declared_format)}"
            )
        except duckdb.Error as exc:
            log.warning("converting %s... failure: %s", source.name, exc)
            raise ConversionError(f"error loading {source.name}: {exc}") from exc

        # 2. count the loaded rows (informational)
        rows = None
        try:
            row = conn.execute(f"SELECT COUNT(*) FROM {STORE_TABLE_NAME}").fetchone()
            rows = int(row[0]) if row is not None else None
            log.info("loaded %s rows", rows)
        except duckdb.Error as exc:
            log.warning("counting rows... failure: %s", exc)

        # 3. index the relevant columns
        indexes = create_indexes(conn)

        # 4. flush the WAL into the main file
        try:
            conn.execute("CHECKPOINT")
        except duckdb.Error as exc:
            log.warning("checkpoint... failure: %s", exc)
    finally:
        conn.close()

    log.info("converting %s... ok", source.name)
    return ConversionResult(path=dest, rows=rows, indexes=indexes)


def create_indexes(conn: duckdb.DuckDBPyConnection) -> list[str]:
    """
    Create an index on every date-like or categorical column.

    Returns:
        The names of the columns we successfully indexed.
    """
    try:
        rows = conn.execute(f"PRAGMA table_info('{STORE_TABLE_NAME}')").fetchall()
    except duckdb.Error as exc:
        log.warning("listing columns... failure: %s", exc)
        return []
    columns = [row[1] for row in rows]

    indexed = []
    for position, column in enumerate(columns):
        if not (is_date_column(column) or is_category_column(column)):
            continue
        if _create_index(conn, column, position):
            indexed.append(column)
    log.info("created %d indexes", len(indexed))
    return indexed


def _create_index(conn: duckdb.DuckDBPyConnection, column: str, position: int) -> bool:
    safe_name = f"{position}_{_INDEX_NAME_RE.sub('_', column)}"
    quoted = '"' + column.replace('"', '""') + '"'
    try:
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{safe_name} ON {STORE_TABLE_NAME} ({quoted})")
    except duckdb.Error as exc:
        log.warning("indexing %s... failure: %s", column, exc)
        return False
    log.debug("indexing %s... ok", column)
    return True
