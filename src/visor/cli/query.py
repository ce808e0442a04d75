"""Query command group."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click
from rich import get_console

from ..catalog import AcquisitionError
from ..engine.handle import HandleError, QueryError
from ..query.builder import AggregationParams, FilterParams
from ..query.service import QueryService
from ..service import VisorService
from . import cli
from .common import config_option, load_cli_config, verbose_option
from .logger import configure_logging


def parse_filters(values: tuple[str, ...]) -> dict[str, Any]:
    """
    Parse repeated KEY=VALUE options into a filters mapping.

    Repeating a key accumulates its values into a list.
    """
    filters: dict[str, Any] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="-f")
        if key not in filters:
            filters[key] = value
        elif isinstance(filters[key], list):
            filters[key].append(value)
        else:
            filters[key] = [filters[key], value]
    return filters


_filter_option = click.option(
    "-f",
    "--filter",
    "filters",
    multiple=True,
    metavar="KEY=VALUE",
    help="Filter rows (repeat a key to accept several values)",
)


@contextmanager
def _errors() -> Iterator[None]:
    try:
        yield
    except (AcquisitionError, HandleError, QueryError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


def _run(
    ctx: click.Context,
    operation: Callable[[QueryService], dict[str, Any]],
) -> None:
    configure_logging(ctx.obj["verbose"])
    config = load_cli_config(ctx.obj["config_file"])
    with _errors(), VisorService.from_config(config) as visor:
        response = operation(visor.queries)
    get_console().print_json(data=response)


@cli.group()
@config_option
@verbose_option
@click.pass_context
def query(ctx: click.Context, config_file: Path | None, verbose: bool) -> None:
    """Query a dataset, acquiring it first if needed."""
    ctx.obj = {"config_file": config_file, "verbose": verbose}


@query.command()
@click.argument("dataset_id", metavar="ID")
@_filter_option
@click.option("--limit", default=0, show_default=True, help="Maximum number of rows (0 means all)")
@click.option("--offset", default=0, show_default=True, help="Number of rows to skip")
@click.pass_context
def data(
    ctx: click.Context, dataset_id: str, filters: tuple[str, ...], limit: int, offset: int
) -> None:
    """Print the rows matching the filters."""
    params = FilterParams(filters=parse_filters(filters), limit=limit, offset=offset)
    _run(ctx, lambda q: q.filtered_data(dataset_id, params))


@query.command("filters")
@click.argument("dataset_id", metavar="ID")
@click.pass_context
def filters_cmd(ctx: click.Context, dataset_id: str) -> None:
    """Print the filter options of the categorical and date columns."""
    _run(ctx, lambda q: q.available_filters(dataset_id))


@query.command()
@click.argument("dataset_id", metavar="ID")
@click.pass_context
def metadata(ctx: click.Context, dataset_id: str) -> None:
    """Print the catalog metadata of a dataset."""
    _run(ctx, lambda q: q.metadata(dataset_id))


@query.command()
@click.argument("dataset_id", metavar="ID")
@_filter_option
@click.option("-g", "--group-by", "group_by", multiple=True, help="Column to group by (repeatable)")
@click.option("--agg", default="count", show_default=True, help="Aggregate function")
@click.option("--var", "var_agg", default=None, help="Column to aggregate")
@click.option("--order-by", default=None, help="Group-by column or 'total'")
@click.option("--order-dir", type=click.Choice(["asc", "desc"]), default=None)
@click.option("--limit", default=0, show_default=True, help="Maximum number of groups")
@click.option("--date-format", default=None, help="Date granularity of date-like group-by columns")
@click.pass_context
def agg(
    ctx: click.Context,
    dataset_id: str,
    filters: tuple[str, ...],
    group_by: tuple[str, ...],
    agg: str,
    var_agg: str | None,
    order_by: str | None,
    order_dir: str | None,
    limit: int,
    date_format: str | None,
) -> None:
    """Print aggregated groups."""
    params = AggregationParams(
        filters=parse_filters(filters),
        agg=agg,
        var_agg=var_agg,
        group_by=list(group_by),
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        date_format=date_format,
    )
    _run(ctx, lambda q: q.aggregated_data(dataset_id, params))


@query.command()
@click.argument("dataset_id", metavar="ID")
@click.argument("column")
@_filter_option
@click.pass_context
def stats(ctx: click.Context, dataset_id: str, column: str, filters: tuple[str, ...]) -> None:
    """Print summary statistics of a column."""
    _run(ctx, lambda q: q.stats(dataset_id, column, parse_filters(filters)))


@query.command()
@click.argument("dataset_id", metavar="ID")
@click.argument("column")
@_filter_option
@click.option("--limit", default=10, show_default=True, help="Number of values")
@click.pass_context
def top(
    ctx: click.Context, dataset_id: str, column: str, filters: tuple[str, ...], limit: int
) -> None:
    """Print the most frequent values of a column."""
    _run(ctx, lambda q: q.top_values(dataset_id, column, limit, parse_filters(filters)))


@query.command()
@click.argument("dataset_id", metavar="ID")
@click.argument("date_column")
@_filter_option
@click.option("--value", "value_column", default=None, help="Column to aggregate")
@click.option("--agg", default="count", show_default=True, help="Aggregate function")
@click.option("--date-format", default="day", show_default=True, help="Date granularity")
@click.pass_context
def timeseries(
    ctx: click.Context,
    dataset_id: str,
    date_column: str,
    filters: tuple[str, ...],
    value_column: str | None,
    agg: str,
    date_format: str,
) -> None:
    """Print an aggregate per date, in date order."""
    _run(
        ctx,
        lambda q: q.time_series(
            dataset_id,
            date_column,
            value_column,
            agg,
            parse_filters(filters),
            date_format,
        ),
    )


@query.command()
@click.argument("dataset_id", metavar="ID")
@click.argument("row_column")
@click.argument("col_column")
@_filter_option
@click.option("--value", "value_column", default=None, help="Column to aggregate")
@click.option("--agg", default="count", show_default=True, help="Aggregate function")
@click.pass_context
def crosstab(
    ctx: click.Context,
    dataset_id: str,
    row_column: str,
    col_column: str,
    filters: tuple[str, ...],
    value_column: str | None,
    agg: str,
) -> None:
    """Print the cross tabulation of two columns."""
    _run(
        ctx,
        lambda q: q.cross_tab(
            dataset_id, row_column, col_column, value_column, agg, parse_filters(filters)
        ),
    )


@query.command()
@click.argument("dataset_id", metavar="ID")
@click.argument("column")
@_filter_option
@click.option(
    "-p",
    "--percentile",
    "percentiles",
    multiple=True,
    type=float,
    default=(25.0, 50.0, 75.0),
    show_default=True,
    help="Percentile in [0, 100] (repeatable)",
)
@click.pass_context
def percentiles(
    ctx: click.Context,
    dataset_id: str,
    column: str,
    filters: tuple[str, ...],
    percentiles: tuple[float, ...],
) -> None:
    """Print percentiles of a column."""
    _run(
        ctx,
        lambda q: q.percentiles(dataset_id, column, list(percentiles), parse_filters(filters)),
    )


@query.command()
@click.argument("dataset_id", metavar="ID")
@click.argument("first")
@click.argument("second")
@_filter_option
@click.pass_context
def corr(
    ctx: click.Context, dataset_id: str, first: str, second: str, filters: tuple[str, ...]
) -> None:
    """Print the correlation of two numeric columns."""
    _run(ctx, lambda q: q.correlation(dataset_id, first, second, parse_filters(filters)))
