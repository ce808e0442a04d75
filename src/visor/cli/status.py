"""Status command."""

from __future__ import annotations

from pathlib import Path

import click
from rich import get_console

from ..cache.result import NullResultCache
from ..service import VisorService
from . import cli
from .common import config_option, load_cli_config


@cli.command()
@click.argument("dataset_id", metavar="ID")
@config_option
def status(dataset_id: str, config_file: Path | None) -> None:
    """Print the acquisition status of a dataset as JSON."""
    config = load_cli_config(config_file)
    with VisorService.from_config(config, results=NullResultCache()) as visor:
        try:
            report = visor.download_status(dataset_id)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="ID") from exc
    get_console().print_json(data=report.to_dict())
