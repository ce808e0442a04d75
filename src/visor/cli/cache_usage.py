"""Cache usage command."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ..cache.disk import DiskStore, DiskStoreFile
from .cache import cache
from .common import config_option, load_cli_config


def _format_bytes(n: float) -> str:
    """Format a byte count using binary suffixes."""
    if n == 0:
        return "0 B"
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(n) < 1024:
            if n == int(n):
                return f"{int(n)} {unit}"
            return f"{n:.1f} {unit}"
        n = n / 1024
    return f"{n:.1f} PB"


def _build_table(files: list[DiskStoreFile], budget: int) -> Table:
    """Construct a Rich Table listing the stores, most recently used first."""
    table = Table()
    table.add_column("Dataset", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Last Used", justify="right")

    total = 0
    for f in reversed(files):
        total += f.size
        last_used = datetime.fromtimestamp(f.mtime).astimezone().strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(f.dataset_id, _format_bytes(f.size), last_used)

    table.add_section()
    share = 100 * total / budget if budget > 0 else 0.0
    table.add_row(
        f"[bold]Total ({len(files)})[/bold]",
        f"[bold]{_format_bytes(total)}[/bold]",
        f"[bold]{share:.1f}% of {_format_bytes(budget)}[/bold]",
    )
    return table


@cache.command()
@config_option
def usage(config_file: Path | None) -> None:
    """Show the disk usage of the converted stores."""
    config = load_cli_config(config_file)
    store = DiskStore(Path(config.cache_dir), config.disk_cache_bytes)
    files = store.files()
    if not files:
        click.echo("No cached datasets found.")
        return
    Console().print(_build_table(files, store.max_bytes))
