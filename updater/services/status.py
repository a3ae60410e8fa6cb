"""Status classification: local vs. remote state of one file."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from updater.exceptions import InvalidRecordError

if TYPE_CHECKING:
    from updater.services.records import FileRecord


class Status(StrEnum):
    """Derived relationship between a file's local and remote state."""

    NOT_INSTALLED = "not_installed"
    NEW = "new"
    INSTALLED = "installed"
    UPDATEABLE = "updateable"
    MODIFIED = "modified"
    LOCAL_ONLY = "local_only"
    OBSOLETE = "obsolete"
    OBSOLETE_MODIFIED = "obsolete_modified"
    OBSOLETE_UNINSTALLED = "obsolete_uninstalled"


OBSOLETE_STATUSES = frozenset(
    {Status.OBSOLETE, Status.OBSOLETE_MODIFIED, Status.OBSOLETE_UNINSTALLED}
)


def is_previous_version(record: FileRecord, checksum: str) -> bool:
    """Return True if ``checksum`` was a previously published version.

    With ``record.nearest_history_only`` only the most recent previous
    version counts, so a file reverted to an older release and then edited
    is reported as modified rather than updateable.
    """
    versions = record.previous_versions
    if not versions:
        return False
    if record.nearest_history_only:
        nearest = max(versions, key=lambda v: v.timestamp)
        return nearest.checksum == checksum
    return any(v.checksum == checksum for v in versions)


def classify(record: FileRecord) -> Status:
    """Classify a record from its local, remote and history facts.

    The first matching rule wins:

    - no local file, no remote version: OBSOLETE_UNINSTALLED if the file has
      a history, otherwise the record is invalid
    - no local file: NEW if never published before, else NOT_INSTALLED
    - local file never assigned to a site: LOCAL_ONLY
    - local file, no remote version: OBSOLETE / OBSOLETE_UNINSTALLED when the
      local checksum is a previous version, else OBSOLETE_MODIFIED
    - checksums equal: INSTALLED
    - local checksum is a previous version: UPDATEABLE, else MODIFIED
    """
    local = record.local_checksum
    remote = record.remote

    if local is None:
        if remote is None:
            if record.previous_versions:
                return Status.OBSOLETE_UNINSTALLED
            msg = f"{record.filename}: no local file and no remote version"
            raise InvalidRecordError(msg)
        return Status.NOT_INSTALLED if record.previous_versions else Status.NEW

    if record.update_site is None:
        return Status.LOCAL_ONLY

    if remote is None:
        if is_previous_version(record, local):
            return Status.OBSOLETE_UNINSTALLED if record.removal_marked else Status.OBSOLETE
        return Status.OBSOLETE_MODIFIED

    if local == remote.checksum:
        return Status.INSTALLED
    if is_previous_version(record, local):
        return Status.UPDATEABLE
    return Status.MODIFIED
