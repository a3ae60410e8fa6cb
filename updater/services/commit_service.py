"""Commit orchestration: conflict check, execute, apply report, persist."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from updater.exceptions import FatalStateError
from updater.services.conflicts import ensure_no_conflicts
from updater.services.db_service import persist_store

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.ext.asyncio import AsyncSession

    from updater.services.conflicts import Overrides
    from updater.services.installer import Installer, InstallReport
    from updater.services.records import RecordStore
    from updater.services.site_registry import SiteRegistry
    from updater.services.uploader import Uploader, UploadReport

logger = logging.getLogger(__name__)


async def _persist_after_change(
    session: AsyncSession,
    store: RecordStore,
    registry: SiteRegistry,
    what: str,
) -> None:
    try:
        await persist_store(session, store, registry)
    except SQLAlchemyError as exc:
        logger.exception("Failed to persist local database after %s", what)
        msg = (
            f"The {what} succeeded but the local database could not be written; "
            "it no longer matches the file tree and must be reconciled manually"
        )
        raise FatalStateError(msg) from exc


async def commit_update(
    session: AsyncSession,
    store: RecordStore,
    registry: SiteRegistry,
    installer: Installer,
    overrides: Overrides | None = None,
) -> InstallReport:
    """Install every staged UPDATE/UNINSTALL and persist the outcome.

    Conflicts block before anything is downloaded. Per-file failures are
    returned in the report; their records keep their previous state.
    """
    ensure_no_conflicts(store, for_upload=False, overrides=overrides)
    report = installer.install(store)
    store.apply_install_report(report)
    await _persist_after_change(session, store, registry, "installation")
    logger.info(
        "Installed %d, removed %d, failed %d file(s)",
        len(report.changed),
        len(report.removed),
        len(report.failed),
    )
    return report


async def commit_upload(
    session: AsyncSession,
    store: RecordStore,
    registry: SiteRegistry,
    uploader: Uploader,
    site_name: str,
    credentials: Mapping[str, str],
    overrides: Overrides | None = None,
) -> UploadReport:
    """Upload every file staged for ``site_name`` and persist the new remote state."""
    site = registry.require(site_name)
    report = uploader.upload(store, site, credentials, overrides)
    store.apply_upload_report(report)
    site.timestamp = report.timestamp
    await _persist_after_change(session, store, registry, "upload")
    logger.info(
        "Uploaded %d and removed %d file(s) on %s",
        len(report.uploaded),
        len(report.removed),
        site_name,
    )
    return report
