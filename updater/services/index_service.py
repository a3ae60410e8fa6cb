"""Remote index merge: attribute published versions to records."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from updater.exceptions import TransportError
from updater.schemas.index import IndexDependency, IndexVersion, RemoteEntry, RemoteIndex
from updater.services.records import Dependency, FileRecord, Version, normalize_filename

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from updater.services.records import RecordStore
    from updater.services.site_registry import SiteRegistry, UpdateSite
    from updater.transport.base import IndexSource

logger = logging.getLogger(__name__)


def _merge_versions(history: list[Version], extra: Iterable[Version]) -> list[Version]:
    known = {v.checksum for v in history}
    merged = list(history)
    for version in extra:
        if version.checksum not in known:
            known.add(version.checksum)
            merged.append(version)
    return merged


def _entry_versions(entry: RemoteEntry) -> tuple[Version | None, list[Version]]:
    current = None
    if entry.checksum is not None and entry.timestamp is not None:
        current = Version(entry.checksum, entry.timestamp, entry.size)
    previous = [Version(v.checksum, v.timestamp) for v in entry.previous]
    return current, previous


def _promote_shadowed(record: FileRecord, registry: SiteRegistry) -> str | None:
    """Hand ``record`` to the highest-ranked site still publishing it, if any."""
    candidates = [name for name in record.shadowed if name in registry]
    if not candidates:
        return None
    site_name = max(candidates, key=registry.rank_of)
    version = record.shadowed.pop(site_name)
    if record.remote is not None:
        record.previous_versions = _merge_versions(record.previous_versions, [record.remote])
    record.previous_versions = [
        v for v in record.previous_versions if v.checksum != version.checksum
    ]
    record.update_site = site_name
    record.remote = version
    return site_name


def apply_remote_index(
    store: RecordStore,
    registry: SiteRegistry,
    site_name: str,
    index: RemoteIndex,
) -> list[str]:
    """Merge one site's index into the store.

    A file already owned by a higher-ranked site keeps that owner; this
    site's version is remembered as shadowed and joins the history. A file
    owned by a lower-ranked site is shadowed in turn. Files of this site
    missing from the index fall back to a shadowed site or become obsolete.
    Returns human-readable notes about shadowed files.
    """
    site = registry.require(site_name)
    notes: list[str] = []
    seen: set[str] = set()

    for entry in index.files:
        name = normalize_filename(entry.filename)
        seen.add(name)
        current, previous = _entry_versions(entry)
        record = store.get(name, exact=True)

        if record is None:
            store.add(
                FileRecord(
                    filename=name,
                    update_site=site_name,
                    remote=current,
                    previous_versions=previous,
                    dependencies=[
                        Dependency(d.filename, d.requirement) for d in entry.dependencies
                    ],
                    executable=entry.executable,
                    platforms=set(entry.platforms),
                )
            )
            continue

        owner = record.update_site
        if owner is not None and owner != site_name and registry.rank_of(owner) > site.rank:
            extra = previous + ([current] if current is not None else [])
            record.previous_versions = _merge_versions(record.previous_versions, extra)
            if current is not None:
                record.shadowed[site_name] = current
            else:
                record.shadowed.pop(site_name, None)
            notes.append(f"{name}: '{owner}' shadows '{site_name}'")
            continue

        if owner is not None and owner != site_name and record.remote is not None:
            notes.append(f"{name}: '{site_name}' shadows '{owner}'")
            record.shadowed[owner] = record.remote
            previous = [*previous, record.remote]

        record.shadowed.pop(site_name, None)
        record.update_site = site_name
        record.remote = current
        record.previous_versions = _merge_versions(record.previous_versions, previous)
        if current is not None:
            record.previous_versions = [
                v for v in record.previous_versions if v.checksum != current.checksum
            ]
        record.dependencies = [Dependency(d.filename, d.requirement) for d in entry.dependencies]
        record.executable = entry.executable
        record.platforms = set(entry.platforms)

    for record in store:
        if record.filename in seen:
            continue
        record.shadowed.pop(site_name, None)
        if record.update_site != site_name:
            continue
        fallback = _promote_shadowed(record, registry)
        if fallback is not None:
            logger.info(
                "%s is no longer offered by %s, using %s", record.filename, site_name, fallback
            )
            continue
        if record.remote is None:
            continue
        logger.info("%s is no longer offered by %s", record.filename, site_name)
        record.previous_versions = _merge_versions(record.previous_versions, [record.remote])
        record.remote = None

    site.timestamp = index.timestamp
    store.prune()
    for note in notes:
        logger.info("Shadowed: %s", note)
    return notes


def _entry_for(
    record: FileRecord,
    current: Version | None,
    previous: list[Version],
) -> RemoteEntry | None:
    if current is None and not previous:
        return None
    return RemoteEntry(
        filename=record.filename,
        checksum=current.checksum if current is not None else None,
        timestamp=current.timestamp if current is not None else None,
        size=current.size if current is not None else 0,
        executable=record.executable,
        platforms=sorted(record.platforms),
        dependencies=[
            IndexDependency(filename=d.filename, requirement=d.requirement)
            for d in record.dependencies
        ],
        previous=[IndexVersion(checksum=v.checksum, timestamp=v.timestamp) for v in previous],
    )


def build_remote_index(
    store: RecordStore,
    site_name: str,
    timestamp: str,
    uploaded: Mapping[str, Version] | None = None,
    removed: Iterable[str] = (),
) -> RemoteIndex:
    """Build the index of ``site_name`` as it will be once an upload commits."""
    uploaded = uploaded or {}
    removed_set = set(removed)
    entries: list[RemoteEntry] = []

    for record in store:
        name = record.filename
        if name in uploaded:
            version = uploaded[name]
            previous = list(record.previous_versions)
            if record.remote is not None and record.remote.checksum != version.checksum:
                previous = _merge_versions(previous, [record.remote])
            entry = _entry_for(record, version, previous)
        elif name in removed_set:
            previous = list(record.previous_versions)
            if record.remote is not None:
                previous = _merge_versions(previous, [record.remote])
            entry = _entry_for(record, None, previous)
        elif record.update_site == site_name:
            entry = _entry_for(record, record.remote, list(record.previous_versions))
        elif site_name in record.shadowed:
            # Still published here even though another site takes precedence locally.
            version = record.shadowed[site_name]
            previous = [v for v in record.previous_versions if v.checksum != version.checksum]
            entry = _entry_for(record, version, previous)
        else:
            continue
        if entry is not None:
            entries.append(entry)

    return RemoteIndex(timestamp=timestamp, files=entries)


def detach_site(store: RecordStore, registry: SiteRegistry, site_name: str) -> UpdateSite:
    """Unregister a site and forget everything it published.

    Files the site owned fall back to a shadowed site when one is left.
    Otherwise an installed file keeps only its local state (LOCAL_ONLY)
    and a file that was never installed is dropped.
    """
    site = registry.remove(site_name)
    detached = 0
    for record in store:
        record.shadowed.pop(site_name, None)
        if record.update_site != site_name:
            continue
        record.clear_action()
        if _promote_shadowed(record, registry) is not None:
            continue
        record.update_site = None
        record.remote = None
        record.previous_versions = []
        record.removal_marked = False
        detached += 1
    store.prune()
    logger.info("Detached %d file(s) from %s", detached, site_name)
    return site


def refresh_remote(
    store: RecordStore,
    registry: SiteRegistry,
    source: IndexSource,
) -> list[str]:
    """Fetch every site's index in rank order and merge it into the store.

    A site that cannot be reached keeps its previous state; the failure is
    logged and returned with the shadowing notes.
    """
    notes: list[str] = []
    for site in registry:
        try:
            index = source.fetch(site)
        except TransportError as exc:
            logger.error("Skipping update site %s: %s", site.name, exc)
            notes.append(f"{site.name}: {exc}")
            continue
        notes.extend(apply_remote_index(store, registry, site.name, index))
    return notes
