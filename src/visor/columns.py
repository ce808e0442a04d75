"""Heuristics classifying the columns of a converted store."""

from typing import Final

DATE_COLUMN_KEYWORDS: Final[tuple[str, ...]] = ("fecha", "date")

CATEGORY_COLUMN_KEYWORDS: Final[tuple[str, ...]] = (
    "entidad",
    "estado",
    "municipio",
    "tipo",
    "categoria",
    "clasificacion",
    "entity",
    "state",
    "municipality",
    "type",
    "category",
    "classification",
)


def is_date_column(name: str) -> bool:
    """Return whether the column name looks like a date."""
    lowered = name.lower()
    return any(keyword in lowered for keyword in DATE_COLUMN_KEYWORDS)


def is_category_column(name: str) -> bool:
    """Return whether the column name contains a categorical-role keyword."""
    lowered = name.lower()
    return any(keyword in lowered for keyword in CATEGORY_COLUMN_KEYWORDS)

NUMERIC_COLUMN_TYPES: Final[frozenset[str]] = frozenset(
    {
        "TINYINT",
        "SMALLINT",
        "INTEGER",
        "BIGINT",
        "HUGEINT",
        "UTINYINT",
        "USMALLINT",
        "UINTEGER",
        "UBIGINT",
        "UHUGEINT",
        "FLOAT",
        "REAL",
        "DOUBLE",
        "DECIMAL",
    }
)


def is_numeric_type(column_type: str) -> bool:
    """Return whether a DuckDB column type (e.g. `DECIMAL(18,3)`) is numeric."""
    return column_type.split("(", 1)[0].strip().upper() in NUMERIC_COLUMN_TYPES
