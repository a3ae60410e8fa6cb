"""Action staging: turn update/upload intent into pending record actions.

Every stager validates before it mutates: an ``InputError`` (or a blocked
site plan) leaves all ``action`` fields untouched. Per-file problems that do
not threaten consistency become warnings and the file is simply skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from updater.exceptions import InputError
from updater.services.dag import DependencyGraph
from updater.services.records import (
    Action,
    dependency_satisfied,
    will_be_up_to_date,
    will_not_be_installed,
)
from updater.services.status import Status

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from updater.services.records import FileRecord, RecordStore
    from updater.services.site_registry import SiteRegistry

logger = logging.getLogger(__name__)


@dataclass
class StagingResult:
    """Outcome of a staging pass."""

    staged: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


@dataclass
class NeedsSiteChoice:
    """Returned instead of staging when a new file needs a target site.

    The command driver asks the user to pick one of ``candidates`` and
    re-submits with ``chosen_site``.
    """

    filename: str
    candidates: list[str]


@dataclass
class SitePlan:
    """Outcome of staging a complete-site upload."""

    site: str
    uploads: list[str] = field(default_factory=list)
    removals: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    pruned: list[tuple[str, str]] = field(default_factory=list)
    blocked: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.uploads and not self.removals


def stage_for_update(record: FileRecord, force: bool) -> bool:
    """Stage a single file for download. Returns False if it must be skipped."""
    if record.action == Action.UPDATE:
        return True
    if record.remote is None:
        return False
    if record.status == Status.MODIFIED and not force:
        return False
    record.set_action(Action.UPDATE)
    return True


def _stage_dependencies(
    store: RecordStore,
    requested: list[str],
    force: bool,
    result: StagingResult,
) -> None:
    """Stage every unsatisfied file reachable from the requested files."""
    graph = DependencyGraph.from_store(store)
    reachable: set[str] = set()
    for name in requested:
        reachable |= graph.closure(name)

    for source in sorted(reachable):
        for dep in store.require(source).dependencies:
            target = store.get(dep.filename)
            if target is None or target.action != Action.NONE:
                continue
            if target.status == Status.INSTALLED or dependency_satisfied(dep, target):
                continue
            if stage_for_update(target, force):
                logger.info("Adding dependency %s of %s", target.filename, source)
                result.staged.append(target.filename)
            else:
                result.warn(
                    f"Cannot stage dependency {target.filename} of {source} ({target.status})"
                )

    for source, missing in graph.missing(sorted(reachable)):
        result.warn(f"Missing dependency {missing} of {source}")


def stage_update(
    store: RecordStore,
    names: Iterable[str] | None = None,
    force: bool = False,
    pristine: bool = False,
    platform: str | None = None,
) -> StagingResult:
    """Stage downloads and uninstalls so the selected files match their sites.

    ``force`` allows overwriting locally modified files; ``pristine`` also
    uninstalls files that no update site knows about.
    """
    result = StagingResult()
    requested: list[str] = []

    for record in store.select(names, platform=platform):
        if record.action != Action.NONE:
            continue
        match record.status:
            case Status.LOCAL_ONLY:
                if pristine:
                    record.set_action(Action.UNINSTALL)
                    result.staged.append(record.filename)
            case Status.OBSOLETE:
                logger.info("Removing %s", record.filename)
                record.set_action(Action.UNINSTALL)
                result.staged.append(record.filename)
            case Status.OBSOLETE_MODIFIED:
                if force or pristine:
                    logger.info("Removing %s", record.filename)
                    record.set_action(Action.UNINSTALL)
                    result.staged.append(record.filename)
                else:
                    result.skipped.append(record.filename)
                    result.warn(f"Skipping obsolete, but modified {record.filename}")
            case Status.INSTALLED | Status.OBSOLETE_UNINSTALLED:
                pass
            case Status.UPDATEABLE | Status.MODIFIED | Status.NEW | Status.NOT_INSTALLED:
                if stage_for_update(record, force):
                    result.staged.append(record.filename)
                    requested.append(record.filename)
                else:
                    result.skipped.append(record.filename)
                    result.warn(f"Skipping {record.filename}")

    if requested:
        _stage_dependencies(store, requested, force, result)
    return result


def stage_upload(
    store: RecordStore,
    registry: SiteRegistry,
    names: list[str],
    explicit_site: str | None = None,
    chosen_site: str | None = None,
) -> StagingResult | NeedsSiteChoice:
    """Stage the named files for upload to a single update site.

    Files that are no longer present locally are staged for REMOVE, which
    publishes their absence. With ``explicit_site`` every file is moved to
    that site; otherwise all files must share one site.
    """
    if not names:
        msg = "Which files do you mean to upload?"
        raise InputError(msg)
    if explicit_site is not None:
        registry.require(explicit_site)
    if chosen_site is not None:
        registry.require(chosen_site)

    result = StagingResult()
    target = explicit_site
    plan: list[tuple[FileRecord, Action]] = []

    for name in names:
        record = store.require(name)
        if record.action != Action.NONE:
            msg = f"{record.filename} is already staged for {record.action.value}"
            raise InputError(msg)
        status = record.status
        if status == Status.INSTALLED:
            result.skipped.append(record.filename)
            result.warn(f"Skipping up-to-date {record.filename}")
            continue
        if status == Status.OBSOLETE_UNINSTALLED:
            result.skipped.append(record.filename)
            result.warn(f"Skipping {record.filename}: already removed and not installed")
            continue
        if target is None:
            target = record.update_site or chosen_site
            if target is None:
                return NeedsSiteChoice(
                    filename=record.filename,
                    candidates=[site.name for site in registry.uploadable()],
                )
        elif record.update_site is not None and record.update_site != target:
            if explicit_site is None:
                msg = (
                    f"Cannot upload to multiple update sites ({plan[0][0].filename} to "
                    f"{target} and {record.filename} to {record.update_site})"
                )
                raise InputError(msg)
        elif record.update_site is None:
            logger.info("Uploading new file '%s' to site '%s'", record.filename, target)

        if status in (Status.NOT_INSTALLED, Status.NEW):
            plan.append((record, Action.REMOVE))
        else:
            plan.append((record, Action.UPLOAD))

    if target is not None:
        registry.require(target)

    for record, action in plan:
        if action == Action.REMOVE:
            logger.info("Removing file '%s'", record.filename)
        record.set_action(action, target)
        result.staged.append(record.filename)
    return result


def stage_upload_complete_site(
    store: RecordStore,
    registry: SiteRegistry,
    site: str,
    force_shadow: bool = False,
    ignore_warnings: bool = False,
    protected: Mapping[str, list[str]] | None = None,
) -> SitePlan:
    """Stage the whole local tree for publication as the complete state of ``site``.

    Warnings (obsolete files still installed, files of other sites that are
    not up to date) block the plan unless ``ignore_warnings`` is set; a
    blocked plan stages nothing.
    """
    registry.require(site)
    keep = set((protected or {}).get(site, []))
    plan = SitePlan(site=site)
    actions: dict[str, Action] = {}

    for record in store:
        name = record.filename
        if record.action != Action.NONE:
            continue
        match record.status:
            case Status.OBSOLETE | Status.OBSOLETE_MODIFIED:
                if force_shadow or (ignore_warnings and record.update_site == site):
                    actions[name] = Action.UPLOAD
                else:
                    plan.warnings.append(f"obsolete '{name}' still installed!")
            case Status.UPDATEABLE | Status.MODIFIED:
                if not force_shadow and record.update_site != site:
                    plan.warnings.append(
                        f"'{name}' of update site '{record.update_site}' is not up-to-date!"
                    )
                else:
                    actions[name] = Action.UPLOAD
            case Status.LOCAL_ONLY:
                actions[name] = Action.UPLOAD
            case Status.NEW | Status.NOT_INSTALLED:
                if record.update_site != site or name in keep:
                    continue
                actions[name] = Action.REMOVE
            case Status.INSTALLED | Status.OBSOLETE_UNINSTALLED:
                pass

    for message in plan.warnings:
        logger.warning(message)
    if plan.warnings and not ignore_warnings:
        plan.blocked = True
        return plan

    for name, action in actions.items():
        store.require(name).set_action(action, site)
        if action == Action.UPLOAD:
            plan.uploads.append(name)
        else:
            plan.removals.append(name)

    # Drop edges from files staying current on the site to same-site files that go away.
    for record in store.for_update_site(site):
        if not will_be_up_to_date(record):
            continue
        for dep in list(record.dependencies):
            target = store.get(dep.filename)
            if target is None or target.effective_site != site:
                continue
            if will_not_be_installed(target) and record.remove_dependency(dep.filename):
                logger.info("Dropping obsolete dependency %s of %s", dep.filename, record.filename)
                plan.pruned.append((record.filename, dep.filename))
    return plan
