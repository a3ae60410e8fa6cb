"""Shared test fixtures for the updater."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from updater.config import Settings
from updater.database import ensure_tables
from updater.exceptions import TransportError
from updater.schemas.index import RemoteIndex
from updater.services.records import Dependency, FileRecord, RecordStore, Version
from updater.services.site_registry import SiteRegistry
from updater.transport.base import LoggingProgress

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Mapping

    from updater.services.site_registry import UpdateSite
    from updater.transport.base import Progress


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeDownloader:
    """Serves file contents from memory, keyed by URL."""

    def __init__(self) -> None:
        self.contents: dict[str, bytes] = {}
        self.failing: set[str] = set()
        self.cancel_after: int | None = None
        self.requested: list[str] = []

    def serve(self, url: str, data: bytes) -> str:
        self.contents[url] = data
        return sha256_of(data)

    def download(self, url: str, destination: Path, progress: Progress) -> str:
        self.requested.append(url)
        if url in self.failing or url not in self.contents:
            msg = f"Could not download {url}"
            raise TransportError(msg, filename=destination.name, cause="not found")
        data = self.contents[url]
        destination.write_bytes(data)
        progress.item_advanced(destination.name, len(data))
        if self.cancel_after is not None and len(self.requested) >= self.cancel_after:
            progress.cancel()
        return sha256_of(data)


class FakeUploadTransport:
    """Records every transmission instead of sending it anywhere."""

    def __init__(self, accept_login: bool = True) -> None:
        self.accept_login = accept_login
        self.logged_in = False
        self.logout_calls = 0
        self.failing: set[str] = set()
        self.transmitted: dict[str, bytes] = {}
        self.metadata: dict[str, dict[str, str]] = {}

    def login(self, credentials: Mapping[str, str]) -> bool:
        self.logged_in = self.accept_login
        return self.accept_login

    def transmit(self, target: str, source: Path | bytes, metadata: Mapping[str, str]) -> None:
        if not self.logged_in:
            msg = "transmit without a session"
            raise TransportError(msg, filename=target)
        if any(target.startswith(name) for name in self.failing):
            msg = f"Could not upload {target}"
            raise TransportError(msg, filename=target, cause="refused")
        self.transmitted[target] = source.read_bytes() if isinstance(source, Path) else source
        self.metadata[target] = dict(metadata)

    def logout(self) -> None:
        self.logout_calls += 1
        self.logged_in = False

    def index(self, filename: str = "index.json") -> RemoteIndex:
        return RemoteIndex.model_validate_json(self.transmitted[filename])


class FakeIndexSource:
    """Returns canned indexes per site name."""

    def __init__(self, indexes: dict[str, RemoteIndex] | None = None) -> None:
        self.indexes = indexes or {}
        self.fetched: list[str] = []

    def fetch(self, site: UpdateSite) -> RemoteIndex:
        self.fetched.append(site.name)
        if site.name not in self.indexes:
            msg = f"Could not fetch index of {site.name}"
            raise TransportError(msg, filename="index.json", cause="not found")
        return self.indexes[site.name]


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """Create an empty managed tree."""
    root = tmp_path / "tree"
    root.mkdir()
    return root


@pytest.fixture
def test_settings(tree: Path, tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    return Settings(
        _env_file=None,
        debug=True,
        root_dir=tree,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        platform="linux64",
        max_workers=2,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with all tables."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    await ensure_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(
    db_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def progress() -> LoggingProgress:
    return LoggingProgress()


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def transport() -> FakeUploadTransport:
    return FakeUploadTransport()


@pytest.fixture
def index_source() -> FakeIndexSource:
    return FakeIndexSource()


@pytest.fixture
def registry() -> SiteRegistry:
    """Two sites: a read-only base site and an uploadable one registered later."""
    reg = SiteRegistry()
    reg.add("Base", "https://base.example.org/update")
    reg.add("Extra", "https://extra.example.org/update", "upload.example.org", "extra")
    return reg


@pytest.fixture
def make_record() -> Callable[..., FileRecord]:
    """Build a FileRecord from short checksum labels.

    ``local``/``remote`` are labels such as ``"v2"``; ``previous`` lists
    earlier labels. Checksums are the labels themselves, timestamps are
    derived from the trailing digit.
    """

    def _make(
        filename: str,
        local: str | None = None,
        remote: str | None = None,
        previous: tuple[str, ...] = (),
        site: str | None = "Base",
        depends: tuple[str, ...] = (),
        **kwargs: object,
    ) -> FileRecord:
        def version(label: str) -> Version:
            digit = label[-1] if label[-1].isdigit() else "0"
            return Version(label, f"2020010{digit}000000", 10)

        return FileRecord(
            filename=filename,
            update_site=site,
            remote=version(remote) if remote is not None else None,
            local_checksum=local,
            local_timestamp="20200101000000" if local is not None else None,
            previous_versions=[version(p) for p in previous],
            dependencies=[Dependency(d) for d in depends],
            **kwargs,  # type: ignore[arg-type]
        )

    return _make


@pytest.fixture
def store() -> RecordStore:
    return RecordStore()
