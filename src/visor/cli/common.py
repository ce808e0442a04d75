"""Options and helpers shared by the visor commands."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import click

from ..config import ConfigError, VisorConfig, load_config

F = TypeVar("F", bound=Callable[..., Any])


def config_option(func: F) -> F:
    """Add the -c/--config option."""
    return click.option(
        "-c",
        "--config",
        "config_file",
        default=None,
        type=click.Path(dir_okay=False, path_type=Path),
        help="Path to YAML config file (default: built-in defaults and environment)",
    )(func)


def verbose_option(func: F) -> F:
    """Add the -v/--verbose option."""
    return click.option("-v", "--verbose", is_flag=True, default=False, help="Verbose mode.")(func)


def load_cli_config(config_file: Path | None) -> VisorConfig:
    """Load the configuration, turning errors into click exceptions."""
    try:
        return load_config(config_file)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
