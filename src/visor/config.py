"""Module loading the visor configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Final

import dacite
import yaml

from .catalog import DEFAULT_CATALOG_URL

GIB: Final[int] = 1024 * 1024 * 1024

DEFAULT_REDIS_URL: Final[str] = "redis://localhost:6379/0"
DEFAULT_CACHE_DIR: Final[str] = "/tmp/datasets"
DEFAULT_MEMORY_CACHE_GB: Final[float] = 4.0
DEFAULT_DISK_CACHE_GB: Final[float] = 50.0

CONFIG_VERSION: Final[int] = 0


class ConfigError(ValueError):
    """Error emitted when the configuration is invalid."""


@dataclass(frozen=True, kw_only=True)
class HandlePoolConfig:
    max_open: int = 10
    max_idle: int = 5
    max_lifetime_seconds: float = 3600.0


@dataclass(frozen=True, kw_only=True)
class VisorConfig:
    """
    Configuration of a visor service.

    Attributes:
        version: configuration format version (must be 0).
        catalog_url: CKAN action API base URL.
        redis_url: result cache URL; empty disables the result cache.
        cache_dir: directory containing the converted stores.
        memory_cache_gb: byte budget of the memory index in GiB.
        disk_cache_gb: byte budget of the disk store in GiB.
        max_memory_entries: entry budget of the memory index.
        job_retention_seconds: how long finished jobs remain visible.
        download_timeout_seconds: timeout of raw file downloads.
        catalog_timeout_seconds: timeout of catalog requests.
        download_workers: number of background acquisition threads.
        progress_interval_seconds: minimum delay between progress reports.
        query_timeout_seconds: optional deadline of each query.
        handle_pool: per-dataset connection bounds.
    """

    version: int = CONFIG_VERSION
    catalog_url: str = DEFAULT_CATALOG_URL
    redis_url: str = DEFAULT_REDIS_URL
    cache_dir: str = DEFAULT_CACHE_DIR
    memory_cache_gb: float = DEFAULT_MEMORY_CACHE_GB
    disk_cache_gb: float = DEFAULT_DISK_CACHE_GB
    max_memory_entries: int = 10
    job_retention_seconds: float = 3600.0
    download_timeout_seconds: float = 300.0
    catalog_timeout_seconds: float = 30.0
    download_workers: int = 4
    progress_interval_seconds: float = 0.5
    query_timeout_seconds: float | None = None
    handle_pool: HandlePoolConfig = field(default_factory=HandlePoolConfig)

    @property
    def memory_cache_bytes(self) -> int:
        return int(self.memory_cache_gb * GIB)

    @property
    def disk_cache_bytes(self) -> int:
        return int(self.disk_cache_gb * GIB)


def _coerce_float(value: object) -> float:
    if isinstance(value, bool):
        raise TypeError(f"Cannot coerce {type(value)} to float")
    if isinstance(value, (int, float, str)):
        return float(value)
    raise TypeError(f"Cannot coerce {type(value)} to float")


def _coerce_str(value: object) -> str:
    if isinstance(value, (str, Path)):
        return str(value)
    raise TypeError(f"Cannot coerce {type(value)} to str")


_DACITE_CONFIG = dacite.Config(type_hooks={float: _coerce_float, str: _coerce_str})


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name, key in (
        ("CKAN_URL", "catalog_url"),
        ("REDIS_URL", "redis_url"),
        ("CACHE_DIR", "cache_dir"),
    ):
        if name in environ:
            overrides[key] = environ[name]
    for name, key in (
        ("MEMORY_CACHE_GB", "memory_cache_gb"),
        ("DISK_CACHE_GB", "disk_cache_gb"),
    ):
        value = environ.get(name)
        if not value:
            continue
        try:
            overrides[key] = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid {name}: {value!r}") from exc
    return overrides


def load_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> VisorConfig:
    """
    Load the configuration.

    Starts from the defaults, applies the YAML file at config_path (if
    given), then applies the CKAN_URL, REDIS_URL, CACHE_DIR,
    MEMORY_CACHE_GB, and DISK_CACHE_GB environment variables.

    Raises:
        ConfigError: if the file is missing, is not valid YAML, or
            contains invalid values.
    """
    environ = os.environ if environ is None else environ
    data: dict[str, Any] = {}

    if config_path is not None:
        try:
            content = config_path.read_text()
        except FileNotFoundError as exc:
            raise ConfigError(f"Config not found: {config_path}") from exc

        try:
            loaded = yaml.safe_load(content) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(loaded, dict):
            raise ConfigError("Config must be a mapping.")
        data = loaded

    try:
        config = dacite.from_dict(VisorConfig, data, config=_DACITE_CONFIG)
    except (dacite.DaciteError, TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config: {exc}") from exc

    if config.version != CONFIG_VERSION:
        raise ConfigError(f"Unsupported config version: {config.version}")

    config = replace(config, **_env_overrides(environ))

    if config.memory_cache_gb <= 0 or config.disk_cache_gb <= 0:
        raise ConfigError("Cache budgets must be positive.")
    if config.max_memory_entries <= 0 or config.download_workers <= 0:
        raise ConfigError("max_memory_entries and download_workers must be positive.")
    return config
