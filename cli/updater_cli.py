"""Command-line driver for the update-site reconciliation engine."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from updater.config import Settings
from updater.database import create_engine, ensure_tables
from updater.exceptions import InputError, UpdaterError
from updater.services.commit_service import commit_update, commit_upload
from updater.services.conflicts import Overrides, detect_conflicts
from updater.services.db_service import load_store, persist_store
from updater.services.index_service import detach_site, refresh_remote
from updater.services.installer import Installer
from updater.services.scan_service import scan_local_files
from updater.services.stager import (
    NeedsSiteChoice,
    stage_update,
    stage_upload,
    stage_upload_complete_site,
)
from updater.services.status import Status
from updater.services.uploader import Uploader
from updater.transport.base import LoggingProgress
from updater.transport.http import HttpDownloader, HttpIndexSource, HttpUploadTransport

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from updater.services.records import FileRecord, RecordStore
    from updater.services.site_registry import SiteRegistry, UpdateSite
    from updater.transport.base import Downloader, IndexSource, Progress, UploadTransport

logger = logging.getLogger(__name__)

LIST_FILTERS: dict[str, Callable[[FileRecord], bool] | None] = {
    "list": None,
    "list-uptodate": lambda r: r.status == Status.INSTALLED,
    "list-not-uptodate": lambda r: r.status
    not in (Status.OBSOLETE, Status.INSTALLED, Status.LOCAL_ONLY),
    "list-updateable": lambda r: r.status == Status.UPDATEABLE,
    "list-modified": lambda r: r.status == Status.MODIFIED,
    "list-local-only": lambda r: r.status == Status.LOCAL_ONLY,
}

UPDATE_MODES = {
    "update": (False, False),
    "update-force": (True, False),
    "update-force-pristine": (True, True),
}


@dataclass
class Collaborators:
    """Transport and progress implementations used by the commands."""

    index_source: IndexSource
    downloader: Downloader
    transport_factory: Callable[[UpdateSite], UploadTransport]
    progress: Progress = field(default_factory=LoggingProgress)
    prompt: Callable[[str], str] = input


def default_collaborators(settings: Settings) -> Collaborators:
    return Collaborators(
        index_source=HttpIndexSource(settings.index_filename, timeout=settings.http_timeout),
        downloader=HttpDownloader(timeout=settings.http_timeout),
        transport_factory=lambda site: HttpUploadTransport(site, timeout=settings.http_timeout),
    )


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="site-updater",
        description="Reconcile a local file tree with its update sites",
    )
    parser.add_argument("--dir", "-d", help="Root of the managed tree (default: UPDATER_ROOT_DIR)")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")
    for name in [*LIST_FILTERS, "list-current", "show", *UPDATE_MODES]:
        sub = subparsers.add_parser(name)
        sub.add_argument("files", nargs="*")

    upload = subparsers.add_parser("upload", help="Upload files to an update site")
    upload.add_argument("--update-site", help="Move the files to this site")
    upload.add_argument("files", nargs="*")

    complete = subparsers.add_parser(
        "upload-complete-site", help="Publish the local tree as the complete state of a site"
    )
    complete.add_argument("--force", action="store_true", help="Ignore warnings")
    complete.add_argument("--force-shadow", action="store_true", help="Shadow other sites")
    complete.add_argument("--simulate", action="store_true", help="Only report what would happen")
    complete.add_argument("site")

    sites = subparsers.add_parser("list-update-sites")
    sites.add_argument("names", nargs="*")
    for name in ("add-update-site", "edit-update-site"):
        sub = subparsers.add_parser(name)
        sub.add_argument("name")
        sub.add_argument("url")
        sub.add_argument("host", nargs="?")
        sub.add_argument("upload_directory", nargs="?")
    remove = subparsers.add_parser("remove-update-site")
    remove.add_argument("names", nargs="*")
    return parser


def _ensure_checksummed(
    store: RecordStore,
    registry: SiteRegistry,
    settings: Settings,
    collab: Collaborators,
) -> None:
    refresh_remote(store, registry, collab.index_source)
    scan_local_files(
        settings.root_dir,
        store,
        collab.progress,
        max_workers=settings.max_workers,
        ignored=settings.ignored_top_level(),
    )


def _print_list(store: RecordStore, args: argparse.Namespace, settings: Settings) -> None:
    wanted = LIST_FILTERS[args.command]
    for record in store.select(args.files or None, platform=settings.platform):
        if wanted is None or wanted(record):
            print(f"{record.filename}\t({record.status.name})\t{record.timestamp or ''}")


def _print_current(store: RecordStore, args: argparse.Namespace, settings: Settings) -> None:
    for record in store.select(args.files or None, platform=settings.platform):
        print(f"{record.filename}-{record.timestamp or ''}")


def _show(store: RecordStore, registry: SiteRegistry, names: Sequence[str]) -> int:
    exit_code = 0
    for name in names:
        record = store.get(name)
        if record is None:
            print(f"\nERROR: File not found: {name}", file=sys.stderr)
            exit_code = 1
            continue
        print()
        print(f"File: {record.filename}")
        print(f"Update site: {record.update_site}")
        if record.remote is None:
            print("Removed from update site")
        else:
            site = registry.get(record.update_site)
            if site is not None:
                print(f"URL: {site.file_url(f'{record.filename}-{record.remote.timestamp}')}")
            print(f"checksum: {record.remote.checksum}, timestamp: {record.remote.timestamp}")
        if record.local_checksum is not None and record.local_checksum != record.remote_checksum:
            prefix = "" if record.has_previous_version(record.local_checksum) else "NOT a "
            print(f"Local checksum: {record.local_checksum} ({prefix}previous version)")
    return exit_code


async def _update(
    session: AsyncSession,
    store: RecordStore,
    registry: SiteRegistry,
    args: argparse.Namespace,
    settings: Settings,
    collab: Collaborators,
) -> int:
    force, pristine = UPDATE_MODES[args.command]
    result = stage_update(
        store, args.files or None, force=force, pristine=pristine, platform=settings.platform
    )
    if not result.staged:
        print("Nothing to update")
        return 0
    installer = Installer(
        settings.root_dir,
        registry,
        collab.downloader,
        collab.progress,
        max_workers=settings.max_workers,
        staging_dir=settings.staging_dir,
    )
    report = await commit_update(session, store, registry, installer, Overrides(force=force))
    for warning in report.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    for name, reason in sorted(report.failed.items()):
        print(f"Failed: {name}: {reason}", file=sys.stderr)
    return 0 if report.ok else 1


def _credentials(settings: Settings, site: UpdateSite, collab: Collaborators) -> dict[str, str]:
    username = settings.upload_username or collab.prompt(f"Username for {site.long_name}: ")
    password = settings.upload_password or getpass.getpass("Password: ")
    return {"username": username, "password": password}


def _choose_site(registry: SiteRegistry, choice: NeedsSiteChoice, collab: Collaborators) -> str:
    if not choice.candidates:
        msg = "No uploadable sites found"
        raise InputError(msg)
    print(f"Choose upload site for file '{choice.filename}'")
    for i, name in enumerate(choice.candidates, start=1):
        print(f"  {i}: {registry.require(name).long_name}")
    answer = collab.prompt("Your choice (default: 1): ").strip() or "1"
    if not answer.isdigit() or not 1 <= int(answer) <= len(choice.candidates):
        msg = "Canceled"
        raise InputError(msg)
    return choice.candidates[int(answer) - 1]


async def _upload(
    session: AsyncSession,
    store: RecordStore,
    registry: SiteRegistry,
    args: argparse.Namespace,
    settings: Settings,
    collab: Collaborators,
) -> int:
    chosen = None
    while True:
        result = stage_upload(
            store, registry, args.files, explicit_site=args.update_site, chosen_site=chosen
        )
        if not isinstance(result, NeedsSiteChoice):
            break
        chosen = _choose_site(registry, result, collab)
    if not result.staged:
        print("Nothing to upload")
        return 0

    site_name = store.require(result.staged[0]).upload_site or ""
    site = registry.require(site_name)
    uploader = Uploader(
        settings.root_dir,
        collab.transport_factory(site),
        collab.progress,
        index_filename=settings.index_filename,
    )
    overrides = Overrides(force_shadow=args.update_site is not None)
    credentials = _credentials(settings, site, collab)
    await commit_upload(session, store, registry, uploader, site_name, credentials, overrides)
    return 0


async def _upload_complete_site(
    session: AsyncSession,
    store: RecordStore,
    registry: SiteRegistry,
    args: argparse.Namespace,
    settings: Settings,
    collab: Collaborators,
) -> int:
    site = registry.require(args.site)
    plan = stage_upload_complete_site(
        store,
        registry,
        site.name,
        force_shadow=args.force_shadow,
        ignore_warnings=args.force,
        protected=settings.protected_files,
    )
    for warning in plan.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    if plan.blocked:
        msg = "Use --force to ignore warnings and upload anyway"
        raise InputError(msg)
    if plan.is_empty:
        print("Nothing to upload", file=sys.stderr)
        return 0

    overrides = Overrides(force_shadow=args.force_shadow)
    counts = f"{len(plan.uploads)} (removing {len(plan.removals)}) to {site.long_name}"
    if args.simulate:
        for name in plan.uploads:
            print(f"Would upload {name}", file=sys.stderr)
        for name in plan.removals:
            print(f"Would mark {name} obsolete", file=sys.stderr)
        conflicts = detect_conflicts(store, for_upload=True, overrides=overrides)
        if conflicts:
            print("Unresolved upload conflicts!\n", file=sys.stderr)
            for conflict in conflicts:
                print(str(conflict), file=sys.stderr)
        else:
            print(f"Would upload {counts}", file=sys.stderr)
        store.clear_actions()
        return 0

    print(f"Uploading {counts}", file=sys.stderr)
    uploader = Uploader(
        settings.root_dir,
        collab.transport_factory(site),
        collab.progress,
        index_filename=settings.index_filename,
    )
    credentials = _credentials(settings, site, collab)
    await commit_upload(session, store, registry, uploader, site.name, credentials, overrides)
    return 0


def _list_sites(registry: SiteRegistry, names: Sequence[str]) -> None:
    for site in registry:
        if names and site.name not in names:
            continue
        line = f"{site.name}: {site.url}"
        if site.is_uploadable:
            line += f" (upload host: {site.upload_host}, upload directory: {site.upload_directory})"
        print(line)


async def run(args: argparse.Namespace, settings: Settings, collab: Collaborators) -> int:
    """Execute one parsed command against the local database."""
    settings.root_dir.mkdir(parents=True, exist_ok=True)
    if settings.resolved_database_url().startswith("sqlite"):
        (settings.root_dir.resolve() / ".updater").mkdir(exist_ok=True)
    engine, session_factory = create_engine(settings)
    try:
        await ensure_tables(engine)
        async with session_factory() as session:
            store, registry = await load_store(
                session, nearest_history_only=not settings.match_full_history
            )
            command = args.command

            if command == "list-update-sites":
                _list_sites(registry, args.names)
                return 0
            if command in ("add-update-site", "edit-update-site"):
                if (args.host is None) != (args.upload_directory is None):
                    msg = f"Usage: {command} <name> <url> [<host> <upload-directory>]"
                    raise InputError(msg)
                if command == "add-update-site":
                    registry.add(args.name, args.url, args.host, args.upload_directory)
                else:
                    registry.edit(args.name, args.url, args.host, args.upload_directory)
                await persist_store(session, store, registry)
                return 0
            if command == "remove-update-site":
                if not args.names:
                    msg = "Which update-site do you want to remove, exactly?"
                    raise InputError(msg)
                for name in args.names:
                    detach_site(store, registry, name)
                await persist_store(session, store, registry)
                return 0

            _ensure_checksummed(store, registry, settings, collab)
            await persist_store(session, store, registry)

            if command in LIST_FILTERS:
                _print_list(store, args, settings)
                return 0
            if command == "list-current":
                _print_current(store, args, settings)
                return 0
            if command == "show":
                return _show(store, registry, args.files)
            if command in UPDATE_MODES:
                return await _update(session, store, registry, args, settings, collab)
            if command == "upload":
                return await _upload(session, store, registry, args, settings, collab)
            if command == "upload-complete-site":
                return await _upload_complete_site(session, store, registry, args, settings, collab)
            msg = f"Unknown command: {command}"
            raise InputError(msg)
    finally:
        await engine.dispose()


def main(argv: Sequence[str] | None = None, collaborators: Collaborators | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    settings = Settings()
    if args.dir is not None:
        settings.root_dir = Path(args.dir)
    if args.debug:
        settings.debug = True
    _configure_logging(settings.debug)

    collab = collaborators or default_collaborators(settings)
    try:
        return asyncio.run(run(args, settings, collab))
    except UpdaterError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
