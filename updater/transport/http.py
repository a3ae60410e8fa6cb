"""HTTP implementations of the transport protocols."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from updater.exceptions import OperationCancelled, TransportError
from updater.schemas.index import RemoteIndex

if TYPE_CHECKING:
    from collections.abc import Mapping

    from updater.services.site_registry import UpdateSite
    from updater.transport.base import Progress

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 65536


class HttpDownloader:
    """Streams files over HTTP, hashing while writing."""

    def __init__(self, timeout: float = 60.0, client: httpx.Client | None = None) -> None:
        self.client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> HttpDownloader:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def download(self, url: str, destination: Path, progress: Progress) -> str:
        name = destination.name
        sha = hashlib.sha256()
        try:
            with self.client.stream("GET", url) as resp:
                resp.raise_for_status()
                with open(destination, "wb") as f:
                    for chunk in resp.iter_bytes(_CHUNK_SIZE):
                        if progress.cancelled:
                            msg = f"Download of {name} cancelled"
                            raise OperationCancelled(msg)
                        f.write(chunk)
                        sha.update(chunk)
                        progress.item_advanced(name, len(chunk))
        except httpx.HTTPError as exc:
            destination.unlink(missing_ok=True)
            msg = f"Could not download {url}: {exc}"
            raise TransportError(msg, filename=name, cause=type(exc).__name__) from exc
        except OperationCancelled:
            destination.unlink(missing_ok=True)
            raise
        logger.debug("Downloaded %s", url)
        return sha.hexdigest()


class HttpUploadTransport:
    """Uploads files to a site's upload endpoint within a token session.

    ``login`` exchanges credentials for a bearer token that also locks the
    remote index; ``logout`` releases it.
    """

    def __init__(
        self,
        site: UpdateSite,
        timeout: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        if site.upload_url is None:
            msg = f"Update site '{site.name}' is not uploadable"
            raise TransportError(msg)
        self.site = site
        self.client = client or httpx.Client(base_url=site.upload_url, timeout=timeout)
        self._token: str | None = None

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> HttpUploadTransport:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _headers(self) -> dict[str, str]:
        if self._token is None:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    def login(self, credentials: Mapping[str, str]) -> bool:
        try:
            resp = self.client.post("/login", json=dict(credentials))
        except httpx.HTTPError as exc:
            logger.error("Login to %s failed: %s", self.site.name, exc)
            return False
        if resp.status_code != 200:
            logger.error("Login to %s failed (%d)", self.site.name, resp.status_code)
            return False
        self._token = resp.json()["access_token"]
        return True

    def transmit(self, target: str, source: Path | bytes, metadata: Mapping[str, str]) -> None:
        content = source.read_bytes() if isinstance(source, Path) else source
        headers = self._headers()
        headers.update(
            {f"X-Updater-{key.replace('_', '-')}": value for key, value in metadata.items()}
        )
        try:
            resp = self.client.put(f"/{target}", content=content, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            msg = f"Could not upload {target}: {exc}"
            raise TransportError(msg, filename=target, cause=type(exc).__name__) from exc

    def logout(self) -> None:
        if self._token is None:
            return
        try:
            self.client.post("/logout", headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Logout from %s failed: %s", self.site.name, exc)
        finally:
            self._token = None


class HttpIndexSource:
    """Fetches ``index.json`` from a site's base URL."""

    def __init__(
        self,
        index_filename: str = "index.json",
        timeout: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.index_filename = index_filename
        self.client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> HttpIndexSource:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def fetch(self, site: UpdateSite) -> RemoteIndex:
        url = site.file_url(self.index_filename)
        try:
            resp = self.client.get(url)
            resp.raise_for_status()
            return RemoteIndex.model_validate(resp.json())
        except httpx.HTTPError as exc:
            msg = f"Could not fetch index of {site.name}: {exc}"
            cause = type(exc).__name__
            raise TransportError(msg, filename=self.index_filename, cause=cause) from exc
        except ValueError as exc:
            msg = f"Invalid index from {site.name}: {exc}"
            raise TransportError(msg, filename=self.index_filename, cause="invalid index") from exc
