"""Collaborator protocols for transfers, remote indexes and progress reporting."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from updater.schemas.index import RemoteIndex
    from updater.services.site_registry import UpdateSite

logger = logging.getLogger(__name__)


@runtime_checkable
class Progress(Protocol):
    """Progress sink with a shared cancellation flag."""

    @property
    def cancelled(self) -> bool:
        """True once the user asked to stop."""
        ...

    def cancel(self) -> None:
        """Request cancellation of the running operation."""
        ...

    def item_started(self, name: str, total: int) -> None: ...

    def item_advanced(self, name: str, count: int) -> None: ...

    def item_finished(self, name: str) -> None: ...


class LoggingProgress:
    """Default progress sink: logs item boundaries, tracks cancellation."""

    def __init__(self) -> None:
        self._cancel = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        self._cancel.set()

    def item_started(self, name: str, total: int) -> None:
        logger.debug("Started %s (%d bytes)", name, total)

    def item_advanced(self, name: str, count: int) -> None:
        pass

    def item_finished(self, name: str) -> None:
        logger.debug("Finished %s", name)


@runtime_checkable
class Downloader(Protocol):
    """Fetches one file and returns the checksum of what was written."""

    def download(self, url: str, destination: Path, progress: Progress) -> str:
        """Download ``url`` into ``destination``. Raises ``TransportError`` on failure."""
        ...


@runtime_checkable
class UploadTransport(Protocol):
    """Session-based upload channel of one update site."""

    def login(self, credentials: Mapping[str, str]) -> bool:
        """Establish a session. Returns True on success."""
        ...

    def transmit(self, target: str, source: Path | bytes, metadata: Mapping[str, str]) -> None:
        """Send one file (or the index) to the site. Raises ``TransportError`` on failure."""
        ...

    def logout(self) -> None:
        """Release the session and any lock held on the remote index."""
        ...


@runtime_checkable
class IndexSource(Protocol):
    """Fetches the current index of an update site."""

    def fetch(self, site: UpdateSite) -> RemoteIndex: ...
