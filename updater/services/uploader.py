"""Uploader: publish staged files to an update site and rewrite its index."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from updater.exceptions import InputError, TransportError, UploadLoginError
from updater.services.conflicts import ensure_no_conflicts
from updater.services.datetime_service import format_timestamp, now_utc
from updater.services.index_service import build_remote_index
from updater.services.records import Action, Version
from updater.services.scan_service import hash_file

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from updater.services.conflicts import Overrides
    from updater.services.records import FileRecord, RecordStore
    from updater.services.site_registry import UpdateSite
    from updater.transport.base import Progress, UploadTransport

logger = logging.getLogger(__name__)


@dataclass
class UploadReport:
    """New remote state of a site after a successful upload."""

    site: str
    timestamp: str
    uploaded: dict[str, Version] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)


class Uploader:
    """Transmits UPLOAD files and the rewritten index through an upload transport."""

    def __init__(
        self,
        root: Path,
        transport: UploadTransport,
        progress: Progress,
        index_filename: str = "index.json",
    ) -> None:
        self.root = root.resolve()
        self.transport = transport
        self.progress = progress
        self.index_filename = index_filename

    def _verify_unchanged(self, record: FileRecord) -> tuple[Path, int]:
        path = self.root / record.filename
        try:
            checksum = hash_file(path)
        except OSError as exc:
            msg = f"Cannot read {record.filename}: {exc}"
            raise TransportError(msg, filename=record.filename, cause=str(exc)) from exc
        if checksum != record.local_checksum:
            msg = f"{record.filename} changed since it was checksummed; rescan and retry"
            raise TransportError(msg, filename=record.filename, cause="file changed")
        return path, path.stat().st_size

    def upload(
        self,
        store: RecordStore,
        site: UpdateSite,
        credentials: Mapping[str, str],
        overrides: Overrides | None = None,
    ) -> UploadReport:
        """Upload every file staged for ``site``.

        Any failure before the index is transmitted aborts the whole batch,
        so the remote index never references files that did not arrive.
        The transport session is always closed.
        """
        if not site.is_uploadable:
            msg = f"Update site '{site.name}' has no upload information"
            raise InputError(msg)
        ensure_no_conflicts(store, for_upload=True, overrides=overrides)

        records = [r for r in store.staged() if r.upload_site == site.name]
        uploads = [r for r in records if r.action == Action.UPLOAD]
        removals = [r.filename for r in records if r.action == Action.REMOVE]
        if not uploads and not removals:
            msg = "Nothing to upload"
            raise InputError(msg)

        # Verify everything up front so nothing is transmitted for a stale scan.
        verified = {r.filename: self._verify_unchanged(r) for r in uploads}
        timestamp = format_timestamp(now_utc())

        try:
            if not self.transport.login(credentials):
                msg = f"Could not log in to {site.long_name}"
                raise UploadLoginError(msg, cause="login rejected")
            uploaded: dict[str, Version] = {}
            for record in uploads:
                if self.progress.cancelled:
                    msg = "Upload cancelled before the index was written"
                    raise TransportError(msg, filename=record.filename, cause="cancelled")
                path, size = verified[record.filename]
                self.progress.item_started(record.filename, size)
                try:
                    self.transport.transmit(
                        f"{record.filename}-{timestamp}",
                        path,
                        {
                            "checksum": record.local_checksum or "",
                            "timestamp": timestamp,
                            "executable": str(record.executable).lower(),
                        },
                    )
                finally:
                    self.progress.item_finished(record.filename)
                uploaded[record.filename] = Version(record.local_checksum or "", timestamp, size)
                logger.info("Uploaded %s to %s", record.filename, site.name)

            index = build_remote_index(store, site.name, timestamp, uploaded, removals)
            self.transport.transmit(
                self.index_filename,
                index.model_dump_json(indent=2).encode("utf-8"),
                {"timestamp": timestamp, "previous_timestamp": site.timestamp},
            )
            logger.info("Wrote index of %s with %d file(s)", site.name, len(index.files))
        finally:
            self.transport.logout()

        return UploadReport(
            site=site.name, timestamp=timestamp, uploaded=uploaded, removed=removals
        )
