"""Installer: execute staged downloads and uninstalls against the live tree.

Phase one downloads every UPDATE into a staging directory and verifies its
checksum; nothing touches the live path. Phase two moves verified files into
place and deletes uninstalled files, each independently, so one failure
never blocks the others.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from updater.exceptions import ChecksumMismatchError, OperationCancelled, TransportError
from updater.services.dag import DependencyGraph
from updater.services.datetime_service import timestamp_from_mtime
from updater.services.records import Action

if TYPE_CHECKING:
    from pathlib import Path

    from updater.services.records import FileRecord, RecordStore, Version
    from updater.services.site_registry import SiteRegistry
    from updater.transport.base import Downloader, Progress

logger = logging.getLogger(__name__)


@dataclass
class InstallReport:
    """Result of an install run.

    ``changed`` maps each installed file to its new (checksum, timestamp).
    """

    changed: dict[str, tuple[str, str]] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class _Staged:
    record: FileRecord
    staging_path: Path
    checksum: str


class Installer:
    """Runs the staged UPDATE and UNINSTALL actions of a record store."""

    def __init__(
        self,
        root: Path,
        registry: SiteRegistry,
        downloader: Downloader,
        progress: Progress,
        max_workers: int = 4,
        staging_dir: str = "update",
    ) -> None:
        self.root = root.resolve()
        self.registry = registry
        self.downloader = downloader
        self.progress = progress
        self.max_workers = max_workers
        self.staging_root = self.root / staging_dir

    def live_path(self, filename: str) -> Path:
        return self.root / filename

    def staging_path(self, filename: str) -> Path:
        return self.staging_root / filename

    def _resolve(self, record: FileRecord) -> tuple[str, Version]:
        site = self.registry.get(record.update_site)
        if site is None:
            msg = f"{record.filename}: unknown update site '{record.update_site}'"
            raise TransportError(msg, filename=record.filename, cause="unknown update site")
        if record.remote is None:
            msg = f"{record.filename} is not offered by {site.name}"
            raise TransportError(msg, filename=record.filename, cause="not published")
        url = site.file_url(f"{record.filename}-{record.remote.timestamp}")
        return url, record.remote

    def url_for(self, record: FileRecord) -> str:
        """Return the download URL of the record's current remote version."""
        return self._resolve(record)[0]

    def _fetch(self, record: FileRecord) -> _Staged:
        """Download one file into the staging area and verify it."""
        url, expected = self._resolve(record)
        destination = self.staging_path(record.filename)
        destination.parent.mkdir(parents=True, exist_ok=True)
        self.progress.item_started(record.filename, expected.size)
        try:
            checksum = self.downloader.download(url, destination, self.progress)
        finally:
            self.progress.item_finished(record.filename)
        if checksum != expected.checksum:
            destination.unlink(missing_ok=True)
            msg = (
                f"Checksum mismatch for {record.filename}: "
                f"expected {expected.checksum}, got {checksum}"
            )
            raise ChecksumMismatchError(msg, filename=record.filename, cause="checksum mismatch")
        if record.executable and os.name != "nt":
            mode = destination.stat().st_mode
            destination.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return _Staged(record=record, staging_path=destination, checksum=checksum)

    def _discard_staging(self) -> None:
        if self.staging_root.exists():
            shutil.rmtree(self.staging_root, ignore_errors=True)

    def download_all(self, updates: list[FileRecord], report: InstallReport) -> list[_Staged]:
        """Phase one: fetch every update; failures are recorded per file."""
        staged: list[_Staged] = []
        if not updates:
            return staged
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(self._fetch, record): record for record in updates}
            for future in as_completed(futures):
                record = futures[future]
                try:
                    staged.append(future.result())
                except OperationCancelled:
                    for pending in futures:
                        pending.cancel()
                    raise
                except (TransportError, OSError) as exc:
                    logger.error("Could not download %s: %s", record.filename, exc)
                    report.failed[record.filename] = str(exc)
        return staged

    def move_into_place(self, staged: list[_Staged], report: InstallReport) -> None:
        """Phase two (installs): atomically replace each live file."""
        for item in sorted(staged, key=lambda s: s.record.filename):
            name = item.record.filename
            target = self.live_path(name)
            if not item.record.is_local and target.exists():
                # The live file was never checksummed, so it may hold user edits.
                msg = f"Refusing to replace {name}: the local copy was never checksummed"
                logger.error(msg)
                report.failed[name] = msg
                continue
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                os.replace(item.staging_path, target)
            except OSError as exc:
                logger.error("Could not move %s into place: %s", name, exc)
                report.failed[name] = str(exc)
                continue
            timestamp = timestamp_from_mtime(target.stat().st_mtime)
            report.changed[name] = (item.checksum, timestamp)
            logger.info("Installed %s", name)

    def remove_all(self, names: list[str], report: InstallReport) -> None:
        """Phase two (uninstalls): delete live files, dependents first."""
        for name in names:
            target = self.live_path(name)
            try:
                target.unlink(missing_ok=True)
            except OSError as exc:
                logger.error("Failed to delete %s: %s", name, exc)
                report.failed[name] = str(exc)
                continue
            report.removed.append(name)
            logger.info("Deleted %s", name)

    def install(self, store: RecordStore) -> InstallReport:
        """Execute every staged UPDATE and UNINSTALL and return the report.

        Raises ``OperationCancelled`` if the progress sink is cancelled
        before the live tree is touched; staged downloads are discarded.
        """
        report = InstallReport()
        updates = [r for r in store.staged() if r.action == Action.UPDATE]
        uninstalls = [r.filename for r in store.staged() if r.action == Action.UNINSTALL]

        graph = DependencyGraph.from_store(store)
        staged_names = {r.filename for r in store.staged()}
        for source, missing in graph.missing(sorted(staged_names)):
            report.warnings.append(f"{source} depends on unknown file {missing}")

        try:
            staged = self.download_all(updates, report)
            if self.progress.cancelled:
                msg = "Installation cancelled"
                raise OperationCancelled(msg)
        except OperationCancelled:
            self._discard_staging()
            raise

        self.move_into_place(staged, report)
        self.remove_all(graph.removal_order(uninstalls), report)
        self._discard_staging()
        return report
