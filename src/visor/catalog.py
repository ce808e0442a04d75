"""Module containing the client for the CKAN-style dataset catalog."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Final

import dacite
import requests

DEFAULT_CATALOG_URL: Final[str] = "https://datos.gob.mx/api/3/action"

log = logging.getLogger("catalog")


class AcquisitionError(RuntimeError):
    """Base error for failures while acquiring a dataset."""


class CatalogError(AcquisitionError):
    """Error emitted when the catalog cannot describe a resource."""


@dataclass(frozen=True, kw_only=True)
class CatalogResource:
    """
    Metadata describing a single downloadable resource.

    Attributes:
        id: the resource identifier.
        name: human readable name.
        url: where to download the raw file.
        format: declared file format (e.g., "CSV").
        size: declared size in bytes, if known.
    """

    id: str
    name: str = ""
    url: str
    format: str = ""
    description: str = ""
    created: str = ""
    last_modified: str = ""
    size: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON compatible dict."""
        return asdict(self)


@dataclass(frozen=True, kw_only=True)
class CatalogPackage:
    """A catalog package grouping several resources."""

    id: str
    name: str = ""
    title: str = ""
    notes: str = ""
    resources: list[CatalogResource] = field(default_factory=list)


def _coerce_str(value: object) -> str:
    return "" if value is None else str(value)


_DACITE_CONFIG = dacite.Config(type_hooks={str: _coerce_str})


def _normalize_resource(data: dict[str, Any]) -> dict[str, Any]:
    """CKAN reports sizes as null, "", numbers or numeric strings."""
    size = data.get("size")
    try:
        size = int(size) if size not in (None, "") else None
    except (TypeError, ValueError):
        size = None
    return {**data, "size": size}


class CatalogClient:
    """Client for the CKAN action API (`resource_show`, `package_show`)."""

    def __init__(
        self,
        base_url: str = DEFAULT_CATALOG_URL,
        *,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        """
        Initialize the client.

        Parameters:
            base_url: the action API base URL (e.g., ".../api/3/action").
            timeout: timeout in seconds for each request.
            session: optional requests session (useful for testing).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def get_resource(self, resource_id: str) -> CatalogResource:
        """
        Return the metadata of the given resource.

        Raises:
            CatalogError: on transport errors, non-success statuses,
                responses with success=false, or malformed results.
        """
        result = self._call("resource_show", resource_id)
        try:
            return dacite.from_dict(
                CatalogResource, _normalize_resource(result), config=_DACITE_CONFIG
            )
        except (dacite.DaciteError, TypeError, ValueError) as exc:
            raise CatalogError(f"Invalid resource {resource_id}: {exc}") from exc

    def get_package(self, package_id: str) -> CatalogPackage:
        """
        Return the metadata of the given package.

        Raises:
            CatalogError: see `get_resource`.
        """
        result = self._call("package_show", package_id)
        result = {
            **result,
            "resources": [_normalize_resource(r) for r in result.get("resources") or []],
        }
        try:
            return dacite.from_dict(CatalogPackage, result, config=_DACITE_CONFIG)
        except (dacite.DaciteError, TypeError, ValueError) as exc:
            raise CatalogError(f"Invalid package {package_id}: {exc}") from exc

    def _call(self, action: str, ident: str) -> dict[str, Any]:
        url = f"{self.base_url}/{action}"
        log.debug("%s %s... start", action, ident)
        try:
            resp = self.session.get(url, params={"id": ident}, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise CatalogError(f"{action} {ident} failed: {exc}") from exc

        if not isinstance(body, dict) or not body.get("success"):
            raise CatalogError(f"{action} {ident} returned success=false")
        result = body.get("result")
        if not isinstance(result, dict):
            raise CatalogError(f"{action} {ident} returned no result")
        log.debug("%s %s... ok", action, ident)
        return result
