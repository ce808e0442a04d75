"""Acquire command."""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich import get_console
from rich.panel import Panel
from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from ..cache.result import NullResultCache
from ..scripting import visor_exception
from ..service import VisorService
from . import cli
from .common import config_option, load_cli_config, verbose_option
from .logger import configure_logging

log = logging.getLogger("cli/acquire")


def _acquire_one(visor: VisorService, dataset_id: str) -> Path:
    """Acquire dataset_id unless cached, showing download progress."""
    path = visor.coordinator.get_memory(dataset_id) or visor.coordinator.get_disk(dataset_id)
    if path is not None:
        log.info("dataset %s already cached", dataset_id)
        return path

    with (
        logging_redirect_tqdm(),
        tqdm(
            total=None,
            unit="B",
            unit_scale=True,
            unit_divisor=1024,
            desc=dataset_id,
            leave=True,
        ) as pbar,
    ):

        def progress(downloaded: int, total: int) -> None:
            if total > 0 and pbar.total != total:
                pbar.total = total
            pbar.update(downloaded - pbar.n)

        def on_convert() -> None:
            log.info("converting %s into a store...", dataset_id)

        store_path = visor.pipeline.acquire(dataset_id, progress=progress, on_convert=on_convert)

    return visor.pipeline.publish(visor.coordinator, dataset_id, store_path)


@cli.command()
@click.argument("dataset_ids", nargs=-1, required=True, metavar="ID...")
@config_option
@verbose_option
def acquire(dataset_ids: tuple[str, ...], config_file: Path | None, verbose: bool) -> None:
    """Download and convert datasets into the local store cache."""
    configure_logging(verbose)
    config = load_cli_config(config_file)
    console = get_console()
    interceptor = visor_exception.Interceptor()

    with VisorService.from_config(config, results=NullResultCache()) as visor:
        for dataset_id in dataset_ids:
            console.print(Panel(f"Acquire {dataset_id}"))
            with interceptor:
                path = _acquire_one(visor, dataset_id)
                console.print(f"{dataset_id} → {path}")

    raise SystemExit(interceptor.exitcode())
