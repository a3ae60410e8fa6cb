"""Registry of named remote update sites."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from updater.exceptions import InputError

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


@dataclass
class UpdateSite:
    """A named remote source of file versions."""

    name: str
    url: str
    upload_host: str | None = None
    upload_directory: str | None = None
    timestamp: str = "0"
    rank: int = 0

    @property
    def is_uploadable(self) -> bool:
        return bool(self.upload_directory)

    @property
    def upload_url(self) -> str | None:
        """Base URL of the upload endpoint, or None for read-only sites."""
        if not self.is_uploadable:
            return None
        host = (self.upload_host or "").rstrip("/")
        directory = (self.upload_directory or "").strip("/")
        if not host:
            return f"{self.url.rstrip('/')}/{directory}"
        if "://" not in host:
            host = f"https://{host}"
        return f"{host}/{directory}" if directory else host

    @property
    def long_name(self) -> str:
        """Human-readable name including the upload location."""
        host = f"{self.upload_host}:" if self.upload_host else ""
        return f"{self.name} ({host}{self.upload_directory or ''})"

    def file_url(self, filename: str) -> str:
        return f"{self.url.rstrip('/')}/{filename}"


class SiteRegistry:
    """Holds update sites in rank order; later sites shadow earlier ones."""

    def __init__(self, sites: list[UpdateSite] | None = None) -> None:
        self._sites: dict[str, UpdateSite] = {}
        for site in sorted(sites or [], key=lambda s: s.rank):
            self._sites[site.name] = site

    def __contains__(self, name: object) -> bool:
        return name in self._sites

    def __iter__(self) -> Iterator[UpdateSite]:
        return iter(list(self._sites.values()))

    def __len__(self) -> int:
        return len(self._sites)

    def get(self, name: str | None) -> UpdateSite | None:
        if name is None:
            return None
        return self._sites.get(name)

    def require(self, name: str) -> UpdateSite:
        """Return the named site or raise ``InputError``."""
        site = self._sites.get(name)
        if site is None:
            msg = f"Unknown update site: '{name}'"
            raise InputError(msg)
        return site

    def names(self) -> list[str]:
        return list(self._sites)

    def uploadable(self) -> list[UpdateSite]:
        return [site for site in self._sites.values() if site.is_uploadable]

    def rank_of(self, name: str | None) -> int:
        site = self.get(name)
        return site.rank if site is not None else -1

    def add(
        self,
        name: str,
        url: str,
        upload_host: str | None = None,
        upload_directory: str | None = None,
        timestamp: str = "0",
    ) -> UpdateSite:
        if name in self._sites:
            msg = f"Site '{name}' was already added!"
            raise InputError(msg)
        rank = max((s.rank for s in self._sites.values()), default=-1) + 1
        site = UpdateSite(
            name=name,
            url=url,
            upload_host=upload_host,
            upload_directory=upload_directory,
            timestamp=timestamp,
            rank=rank,
        )
        self._sites[name] = site
        logger.info("Added update site %s (%s)", name, url)
        return site

    def edit(
        self,
        name: str,
        url: str,
        upload_host: str | None = None,
        upload_directory: str | None = None,
    ) -> UpdateSite:
        site = self._sites.get(name)
        if site is None:
            msg = f"Site '{name}' was not yet added!"
            raise InputError(msg)
        site.url = url
        site.upload_host = upload_host
        site.upload_directory = upload_directory
        logger.info("Edited update site %s (%s)", name, url)
        return site

    def remove(self, name: str) -> UpdateSite:
        site = self._sites.pop(name, None)
        if site is None:
            msg = f"Unknown update site: '{name}'"
            raise InputError(msg)
        logger.info("Removed update site %s", name)
        return site
