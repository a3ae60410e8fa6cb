"""Local database: load and persist the record store and site registry as a whole."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.orm import selectinload

from updater.models.file import FileDependencyRow, FileRow, FileShadowRow, FileVersionRow
from updater.models.site import UpdateSiteRow
from updater.services.records import Dependency, FileRecord, RecordStore, Version
from updater.services.site_registry import SiteRegistry, UpdateSite

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _record_from_row(row: FileRow) -> FileRecord:
    remote = None
    if row.remote_checksum is not None and row.remote_timestamp is not None:
        remote = Version(row.remote_checksum, row.remote_timestamp, row.remote_size)
    return FileRecord(
        filename=row.filename,
        update_site=row.update_site,
        remote=remote,
        local_checksum=row.local_checksum,
        local_timestamp=row.local_timestamp,
        previous_versions=[Version(v.checksum, v.timestamp) for v in row.versions],
        shadowed={s.site: Version(s.checksum, s.timestamp, s.size) for s in row.shadowed},
        dependencies=[Dependency(d.dependency, d.requirement) for d in row.dependencies],
        executable=row.executable,
        platforms=set(json.loads(row.platforms or "[]")),
        removal_marked=row.removal_marked,
    )


def _row_from_record(record: FileRecord) -> FileRow:
    return FileRow(
        filename=record.filename,
        update_site=record.update_site,
        remote_checksum=record.remote.checksum if record.remote else None,
        remote_timestamp=record.remote.timestamp if record.remote else None,
        remote_size=record.remote.size if record.remote else 0,
        local_checksum=record.local_checksum,
        local_timestamp=record.local_timestamp,
        executable=record.executable,
        platforms=json.dumps(sorted(record.platforms)),
        removal_marked=record.removal_marked,
        versions=[
            FileVersionRow(position=i, checksum=v.checksum, timestamp=v.timestamp)
            for i, v in enumerate(record.previous_versions)
        ],
        dependencies=[
            FileDependencyRow(position=i, dependency=d.filename, requirement=d.requirement)
            for i, d in enumerate(record.dependencies)
        ],
        shadowed=[
            FileShadowRow(site=site, checksum=v.checksum, timestamp=v.timestamp, size=v.size)
            for site, v in sorted(record.shadowed.items())
        ],
    )


async def load_store(
    session: AsyncSession,
    nearest_history_only: bool = True,
) -> tuple[RecordStore, SiteRegistry]:
    """Load every update site and file record from the local database."""
    site_rows = (await session.execute(select(UpdateSiteRow))).scalars().all()
    registry = SiteRegistry(
        [
            UpdateSite(
                name=row.name,
                url=row.url,
                upload_host=row.upload_host,
                upload_directory=row.upload_directory,
                timestamp=row.timestamp,
                rank=row.rank,
            )
            for row in site_rows
        ]
    )

    stmt = select(FileRow).options(
        selectinload(FileRow.versions),
        selectinload(FileRow.dependencies),
        selectinload(FileRow.shadowed),
    )
    file_rows = (await session.execute(stmt)).scalars().all()
    store = RecordStore(nearest_history_only=nearest_history_only)
    for row in file_rows:
        record = _record_from_row(row)
        if not record.is_valid():
            logger.warning("Dropping stored record without state: %s", row.filename)
            continue
        store.add(record)
    logger.debug("Loaded %d site(s) and %d file(s)", len(registry), len(store))
    return store, registry


async def persist_store(
    session: AsyncSession,
    store: RecordStore,
    registry: SiteRegistry,
) -> None:
    """Replace the database contents with the current store and registry."""
    session.expunge_all()
    await session.execute(delete(FileDependencyRow))
    await session.execute(delete(FileShadowRow))
    await session.execute(delete(FileVersionRow))
    await session.execute(delete(FileRow))
    await session.execute(delete(UpdateSiteRow))
    for site in registry:
        session.add(
            UpdateSiteRow(
                name=site.name,
                url=site.url,
                upload_host=site.upload_host,
                upload_directory=site.upload_directory,
                timestamp=site.timestamp,
                rank=site.rank,
            )
        )
    for record in store:
        session.add(_row_from_record(record))
    await session.commit()
    logger.debug("Persisted %d site(s) and %d file(s)", len(registry), len(store))
