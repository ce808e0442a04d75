"""Cache prune command."""

from __future__ import annotations

from pathlib import Path

import click

from ..cache.disk import DiskStore
from .cache import cache
from .common import config_option, load_cli_config, verbose_option
from .logger import configure_logging


@cache.command()
@config_option
@verbose_option
def prune(config_file: Path | None, verbose: bool) -> None:
    """Evict least recently used stores until the disk budget holds."""
    configure_logging(verbose)
    config = load_cli_config(config_file)
    store = DiskStore(Path(config.cache_dir), config.disk_cache_bytes)
    evicted = store.evict()
    if not evicted:
        click.echo("Nothing to prune.")
        return
    click.echo(f"Pruned {len(evicted)} dataset(s): {', '.join(evicted)}")
