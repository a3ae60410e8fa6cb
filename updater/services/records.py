"""File record store: the authoritative table of all tracked files."""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from updater.exceptions import ActionTransitionError, InputError, InvalidRecordError
from updater.services.datetime_service import is_timestamp
from updater.services.status import OBSOLETE_STATUSES, Status, classify, is_previous_version

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from updater.services.installer import InstallReport
    from updater.services.uploader import UploadReport

logger = logging.getLogger(__name__)

_VERSIONED_JAR_RE = re.compile(
    r"^(?P<base>.+?)-\d+(?:\.\d+)*[a-z]?(?:[-.][A-Za-z0-9]+)*(?P<ext>\.jar)$"
)


class Action(StrEnum):
    """Pending intent for a file prior to commit."""

    NONE = "none"
    UPDATE = "update"
    UNINSTALL = "uninstall"
    UPLOAD = "upload"
    REMOVE = "remove"


# Actions whose effect is published to an update site rather than the local tree.
SITE_ACTIONS = frozenset({Action.UPLOAD, Action.REMOVE})


@dataclass(frozen=True)
class Version:
    """One published version of a file."""

    checksum: str
    timestamp: str
    size: int = 0


@dataclass(frozen=True)
class Dependency:
    """A file required by another file, optionally pinned to a checksum or timestamp."""

    filename: str
    requirement: str = ""


def normalize_filename(filename: str) -> str:
    """Return the platform-independent relative form of a filename."""
    name = filename.replace("\\", "/")
    name = posixpath.normpath(name)
    return name.removeprefix("./")


def strip_version(filename: str) -> str:
    """Strip an embedded version from a jar name (``foo-1.2.jar`` -> ``foo.jar``)."""
    match = _VERSIONED_JAR_RE.match(filename)
    if match is None:
        return filename
    return match.group("base") + match.group("ext")


@dataclass
class FileRecord:
    """Local and remote state of one tracked file."""

    filename: str
    update_site: str | None = None
    remote: Version | None = None
    local_checksum: str | None = None
    local_timestamp: str | None = None
    previous_versions: list[Version] = field(default_factory=list)
    # Versions still published by lower-ranked sites, keyed by site name.
    shadowed: dict[str, Version] = field(default_factory=dict)
    dependencies: list[Dependency] = field(default_factory=list)
    executable: bool = False
    platforms: set[str] = field(default_factory=set)
    removal_marked: bool = False
    action: Action = Action.NONE
    upload_site: str | None = None
    nearest_history_only: bool = True

    @property
    def status(self) -> Status:
        return classify(self)

    @property
    def is_local(self) -> bool:
        return self.local_checksum is not None

    @property
    def is_installed_locally(self) -> bool:
        """True if the live file exists and is not queued for deletion."""
        return self.is_local and not self.removal_marked

    @property
    def is_obsolete(self) -> bool:
        return self.status in OBSOLETE_STATUSES

    @property
    def remote_checksum(self) -> str | None:
        return self.remote.checksum if self.remote is not None else None

    @property
    def timestamp(self) -> str | None:
        """Timestamp of the version a user would see: remote if published, else local."""
        if self.remote is not None:
            return self.remote.timestamp
        return self.local_timestamp

    @property
    def previous_checksums(self) -> set[str]:
        return {v.checksum for v in self.previous_versions}

    @property
    def effective_site(self) -> str | None:
        """The site this file will belong to once staged actions are committed."""
        if self.action in SITE_ACTIONS and self.upload_site is not None:
            return self.upload_site
        return self.update_site

    def has_previous_version(self, checksum: str) -> bool:
        return is_previous_version(self, checksum)

    def is_valid(self) -> bool:
        return self.is_local or self.remote is not None or bool(self.previous_versions)

    def is_updateable_platform(self, platform: str | None) -> bool:
        return platform is None or not self.platforms or platform in self.platforms

    def dependency_names(self) -> list[str]:
        return [dep.filename for dep in self.dependencies]

    def add_dependency(self, filename: str, requirement: str = "") -> None:
        filename = normalize_filename(filename)
        if filename == self.filename or filename in self.dependency_names():
            return
        self.dependencies.append(Dependency(filename, requirement))

    def remove_dependency(self, filename: str) -> bool:
        before = len(self.dependencies)
        self.dependencies = [dep for dep in self.dependencies if dep.filename != filename]
        return len(self.dependencies) != before

    def set_action(self, action: Action, site: str | None = None) -> None:
        """Stage ``action``; only NONE may transition to another action."""
        if action == Action.NONE:
            self.clear_action()
            return
        if self.action != Action.NONE:
            msg = (
                f"{self.filename}: cannot stage {action.value} while "
                f"{self.action.value} is pending"
            )
            raise ActionTransitionError(msg)
        if action in SITE_ACTIONS:
            target = site or self.update_site
            if target is None:
                msg = f"{self.filename}: {action.value} requires an update site"
                raise ActionTransitionError(msg)
            self.upload_site = target
        self.action = action

    def clear_action(self) -> None:
        self.action = Action.NONE
        self.upload_site = None


def will_be_up_to_date(record: FileRecord) -> bool:
    """Return True if the file will match its site once staged actions commit."""
    match record.action:
        case Action.UPDATE | Action.UPLOAD:
            return True
        case Action.UNINSTALL | Action.REMOVE:
            return False
        case Action.NONE:
            return record.status == Status.INSTALLED


def will_not_be_installed(record: FileRecord) -> bool:
    """Return True if the file will be absent locally once staged actions commit."""
    match record.action:
        case Action.UNINSTALL | Action.REMOVE:
            return True
        case Action.UPDATE | Action.UPLOAD:
            return False
        case Action.NONE:
            return record.status in (
                Status.NEW,
                Status.NOT_INSTALLED,
                Status.OBSOLETE_UNINSTALLED,
            )


def dependency_satisfied(dependency: Dependency, target: FileRecord) -> bool:
    """Return True if the local copy of ``target`` meets ``dependency``."""
    if not target.is_local:
        return False
    if target.status in (Status.INSTALLED, Status.LOCAL_ONLY):
        return True
    requirement = dependency.requirement
    if not requirement or requirement == target.local_checksum:
        return True
    if is_timestamp(requirement) and target.local_timestamp is not None:
        return target.local_timestamp >= requirement
    return False


class RecordStore:
    """In-memory table of every known file, keyed by canonical filename.

    The store owns the ``action`` field of every record. Executors never
    mutate records mid-flight; they return reports that are applied here.
    """

    def __init__(
        self,
        records: Iterable[FileRecord] | None = None,
        nearest_history_only: bool = True,
    ) -> None:
        self.nearest_history_only = nearest_history_only
        self._records: dict[str, FileRecord] = {}
        for record in records or []:
            self.add(record)

    def __iter__(self) -> Iterator[FileRecord]:
        return iter([self._records[name] for name in sorted(self._records)])

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, filename: object) -> bool:
        return isinstance(filename, str) and self.get(filename) is not None

    def add(self, record: FileRecord) -> FileRecord:
        if not record.is_valid():
            msg = f"{record.filename}: refusing to track a file with no local or remote state"
            raise InvalidRecordError(msg)
        record.filename = normalize_filename(record.filename)
        record.nearest_history_only = self.nearest_history_only
        self._records[record.filename] = record
        return record

    def get(self, filename: str, exact: bool = False) -> FileRecord | None:
        """Look up a record by exact name, falling back to its version-stripped form."""
        name = normalize_filename(filename)
        record = self._records.get(name)
        if record is not None or exact:
            return record
        return self._records.get(strip_version(name))

    def require(self, filename: str) -> FileRecord:
        record = self.get(filename)
        if record is None:
            msg = f"No file '{filename}' found!"
            raise InputError(msg)
        return record

    def remove(self, filename: str) -> FileRecord | None:
        return self._records.pop(normalize_filename(filename), None)

    def select(
        self,
        names: Iterable[str] | None = None,
        statuses: Iterable[Status] | None = None,
        platform: str | None = None,
        include_uninstalled: bool = False,
    ) -> list[FileRecord]:
        """Return the records matching a name filter, status filter and platform."""
        wanted: set[str] | None = None
        if names:
            wanted = {strip_version(normalize_filename(n)) for n in names}
        status_set = set(statuses) if statuses is not None else None

        result: list[FileRecord] = []
        for record in self:
            if not record.is_updateable_platform(platform):
                continue
            if wanted is not None and strip_version(record.filename) not in wanted:
                continue
            status = record.status
            if not include_uninstalled and status == Status.OBSOLETE_UNINSTALLED:
                continue
            if status_set is not None and status not in status_set:
                continue
            result.append(record)
        return result

    def for_update_site(self, site: str) -> list[FileRecord]:
        return [record for record in self if record.effective_site == site]

    def staged(self) -> list[FileRecord]:
        return [record for record in self if record.action != Action.NONE]

    def clear_actions(self) -> None:
        for record in self._records.values():
            record.clear_action()

    def prune(self) -> list[str]:
        """Drop records with no local file, no remote version and no history."""
        invalid = [name for name, record in self._records.items() if not record.is_valid()]
        for name in invalid:
            del self._records[name]
        if invalid:
            logger.debug("Pruned %d record(s) without state", len(invalid))
        return invalid

    def apply_install_report(self, report: InstallReport) -> None:
        """Record the final local state after an install run."""
        for name, (checksum, timestamp) in report.changed.items():
            record = self._records[name]
            record.local_checksum = checksum
            record.local_timestamp = timestamp
            record.removal_marked = False
            record.clear_action()
        for name in report.removed:
            record = self._records[name]
            record.local_checksum = None
            record.local_timestamp = None
            record.removal_marked = False
            record.clear_action()
        for name in report.failed:
            record = self._records.get(name)
            if record is None:
                continue
            if record.action == Action.UNINSTALL and record.is_local:
                record.removal_marked = True
            record.clear_action()
        self.prune()

    def apply_upload_report(self, report: UploadReport) -> None:
        """Record the new remote state of a site after a successful upload."""
        for name, version in report.uploaded.items():
            record = self._records[name]
            old = record.remote
            if old is not None and old.checksum != version.checksum:
                if old.checksum not in record.previous_checksums:
                    record.previous_versions.append(old)
            owner = record.update_site
            if old is not None and owner is not None and owner != report.site:
                record.shadowed[owner] = old
            record.shadowed.pop(report.site, None)
            record.remote = version
            record.update_site = report.site
            record.clear_action()
        for name in report.removed:
            record = self._records[name]
            old = record.remote
            if old is not None and old.checksum not in record.previous_checksums:
                record.previous_versions.append(old)
            owner = record.update_site
            if old is not None and owner is not None and owner != report.site:
                record.shadowed[owner] = old
            record.shadowed.pop(report.site, None)
            record.remote = None
            record.update_site = report.site
            record.clear_action()
        self.prune()
