"""Conflict detection over the staged action set."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from updater.exceptions import ConflictError
from updater.services.dag import DependencyGraph
from updater.services.records import Action, will_not_be_installed
from updater.services.status import Status

if TYPE_CHECKING:
    from updater.services.records import FileRecord, RecordStore

logger = logging.getLogger(__name__)


class ConflictKind(StrEnum):
    """Reason class of a conflict."""

    SITE_OWNERSHIP = "site_ownership"
    STALE_DEPENDENCY = "stale_dependency"
    LOCAL_MODIFICATION = "local_modification"
    REQUIRED_BY_OTHERS = "required_by_others"


@dataclass(frozen=True)
class Conflict:
    """A staged action whose result would be inconsistent."""

    filename: str
    reason: str
    kind: ConflictKind

    def __str__(self) -> str:
        return f"{self.filename}: {self.reason}"


@dataclass(frozen=True)
class Overrides:
    """Per-invocation flags that accept otherwise blocking conflicts."""

    force: bool = False
    force_shadow: bool = False


def _site_ownership(record: FileRecord) -> Conflict | None:
    if record.action not in (Action.UPLOAD, Action.REMOVE):
        return None
    owner = record.update_site
    target = record.upload_site
    if owner is None or target is None or owner == target:
        return None
    if record.remote is not None and record.local_checksum == record.remote.checksum:
        return None
    return Conflict(
        filename=record.filename,
        reason=f"belongs to update site '{owner}' but is staged for '{target}'",
        kind=ConflictKind.SITE_OWNERSHIP,
    )


def _stale_dependencies(record: FileRecord, store: RecordStore) -> list[Conflict]:
    if record.action != Action.UPLOAD:
        return []
    conflicts: list[Conflict] = []
    for dep in record.dependencies:
        target = store.get(dep.filename)
        if target is None:
            continue
        if target.action == Action.REMOVE and target.upload_site == record.upload_site:
            conflicts.append(
                Conflict(
                    filename=record.filename,
                    reason=f"depends on '{target.filename}' which is being removed",
                    kind=ConflictKind.STALE_DEPENDENCY,
                )
            )
    return conflicts


def _local_modification(record: FileRecord) -> Conflict | None:
    if record.action not in (Action.UPDATE, Action.UNINSTALL):
        return None
    status = record.status
    if status not in (Status.MODIFIED, Status.OBSOLETE_MODIFIED):
        return None
    verb = "overwritten" if record.action == Action.UPDATE else "removed"
    return Conflict(
        filename=record.filename,
        reason=f"locally modified file would be {verb}",
        kind=ConflictKind.LOCAL_MODIFICATION,
    )


def _required_by_others(store: RecordStore, staged: list[FileRecord]) -> list[Conflict]:
    removing = {r.filename for r in staged if r.action == Action.UNINSTALL}
    if not removing:
        return []
    graph = DependencyGraph.from_store(store)
    installed = {r.filename for r in store if not will_not_be_installed(r)}
    conflicts: list[Conflict] = []
    for name in sorted(removing):
        needed_by = graph.still_needed(name, removing, installed)
        if needed_by:
            conflicts.append(
                Conflict(
                    filename=name,
                    reason="still required by " + ", ".join(needed_by),
                    kind=ConflictKind.REQUIRED_BY_OTHERS,
                )
            )
    return conflicts


def detect_conflicts(
    store: RecordStore,
    for_upload: bool,
    overrides: Overrides | None = None,
) -> list[Conflict]:
    """Return the conflicts among staged actions not accepted by ``overrides``.

    Upload checks (site ownership, stale dependencies) run when
    ``for_upload`` is set; install checks (local modifications, files still
    required by others) run otherwise.
    """
    overrides = overrides or Overrides()
    staged = store.staged()
    conflicts: list[Conflict] = []

    if for_upload:
        for record in staged:
            if not overrides.force_shadow:
                ownership = _site_ownership(record)
                if ownership is not None:
                    conflicts.append(ownership)
            conflicts.extend(_stale_dependencies(record, store))
    else:
        if not overrides.force:
            for record in staged:
                modification = _local_modification(record)
                if modification is not None:
                    conflicts.append(modification)
            conflicts.extend(_required_by_others(store, staged))

    for conflict in conflicts:
        logger.debug("Conflict: %s", conflict)
    return conflicts


def ensure_no_conflicts(
    store: RecordStore,
    for_upload: bool,
    overrides: Overrides | None = None,
) -> None:
    """Raise ``ConflictError`` if any staged action conflicts."""
    conflicts = detect_conflicts(store, for_upload, overrides)
    if conflicts:
        raise ConflictError(conflicts)
