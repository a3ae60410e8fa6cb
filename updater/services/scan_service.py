"""Local scan: checksum the live tree and fold the results into the store."""

from __future__ import annotations

import hashlib
import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from updater.exceptions import OperationCancelled
from updater.services.datetime_service import timestamp_from_mtime
from updater.services.records import FileRecord

if TYPE_CHECKING:
    from collections.abc import Iterable

    from updater.services.records import RecordStore
    from updater.transport.base import Progress

logger = logging.getLogger(__name__)


@dataclass
class LocalEntry:
    """Checksum and metadata of one live file."""

    filename: str
    checksum: str
    timestamp: str
    size: int
    executable: bool


def hash_file(file_path: Path) -> str:
    """Compute SHA-256 hash of a file."""
    sha = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha.update(chunk)
    return sha.hexdigest()


def list_local_files(root: Path, ignored: Iterable[str] = ()) -> list[str]:
    """Return the relative POSIX paths of every visible file under ``root``."""
    skip_top = set(ignored)
    names: list[str] = []
    for dirpath, dirs, files in os.walk(root):
        at_top = Path(dirpath) == root
        dirs[:] = [
            d for d in dirs if not d.startswith(".") and not (at_top and d in skip_top)
        ]
        for filename in files:
            if filename.startswith("."):
                continue
            full = Path(dirpath) / filename
            names.append(full.relative_to(root).as_posix())
    return sorted(names)


def _stat_entry(root: Path, name: str, cached: FileRecord | None) -> LocalEntry:
    full = root / name
    stat = full.stat()
    timestamp = timestamp_from_mtime(stat.st_mtime)
    if (
        cached is not None
        and cached.local_checksum is not None
        and cached.local_timestamp == timestamp
    ):
        checksum = cached.local_checksum
    else:
        checksum = hash_file(full)
    return LocalEntry(
        filename=name,
        checksum=checksum,
        timestamp=timestamp,
        size=stat.st_size,
        executable=os.access(full, os.X_OK),
    )


def scan_local_files(
    root: Path,
    store: RecordStore,
    progress: Progress,
    max_workers: int = 4,
    ignored: Iterable[str] = (),
) -> dict[str, LocalEntry]:
    """Checksum the live tree and update the local facts of every record.

    Checksums run in a bounded worker pool. Nothing is written to the store
    until every file has been processed, so a cancelled scan leaves the
    store exactly as it was. Unknown files become LOCAL_ONLY records. A file
    that cannot be read keeps its previous local facts.
    """
    root = root.resolve()
    names = list_local_files(root, ignored)
    entries: dict[str, LocalEntry] = {}
    unreadable: set[str] = set()

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            pool.submit(_stat_entry, root, name, store.get(name, exact=True)): name
            for name in names
        }
        for future in as_completed(futures):
            name = futures[future]
            if progress.cancelled:
                for pending in futures:
                    pending.cancel()
                msg = "Checksumming cancelled"
                raise OperationCancelled(msg)
            try:
                entries[name] = future.result()
            except OSError as exc:
                logger.warning("Cannot checksum %s: %s", name, exc)
                unreadable.add(name)
                continue
            progress.item_finished(name)

    for record in list(store):
        if record.filename in unreadable:
            # Keep the last known local facts; the file is still there.
            continue
        entry = entries.get(record.filename)
        if entry is None:
            record.local_checksum = None
            record.local_timestamp = None
            record.removal_marked = False
            continue
        record.local_checksum = entry.checksum
        record.local_timestamp = entry.timestamp

    for name, entry in entries.items():
        if store.get(name, exact=True) is None:
            store.add(
                FileRecord(
                    filename=name,
                    local_checksum=entry.checksum,
                    local_timestamp=entry.timestamp,
                    executable=entry.executable,
                )
            )
    store.prune()
    logger.info("Checksummed %d local file(s)", len(entries))
    return entries
