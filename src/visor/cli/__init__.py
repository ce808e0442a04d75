"""Visor command-line interface."""

from importlib.metadata import version

import click

_PACKAGE_NAME = "visor-datasets"


def _get_version() -> str:
    """Return the installed package version string."""
    return version(_PACKAGE_NAME)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s", package_name=_PACKAGE_NAME)
def cli() -> None:
    """Query open-data catalog datasets through local DuckDB stores."""


@cli.command(hidden=True)
def help() -> None:
    """Show usage information."""
    click.echo('Use "visor --help" for usage information.')
    click.echo('Use "visor <command> --help" for help on a specific command.')


@cli.command("version")
def version_cmd() -> None:
    """Print the version number."""
    click.echo(_get_version())


# Register subcommands (must be after cli is defined)
from . import acquire as _acquire  # noqa: E402, F401
from . import cache as _cache  # noqa: E402, F401
from . import cache_prune as _cache_prune  # noqa: E402, F401
from . import cache_usage as _cache_usage  # noqa: E402, F401
from . import query as _query  # noqa: E402, F401
from . import status as _status  # noqa: E402, F401
