"""Tests for remote index merging and generation."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from updater.exceptions import InputError
from updater.schemas.index import IndexDependency, IndexVersion, RemoteEntry, RemoteIndex
from updater.services.index_service import (
    apply_remote_index,
    build_remote_index,
    detach_site,
    refresh_remote,
)
from updater.services.records import Action, Version
from updater.services.status import Status

if TYPE_CHECKING:
    from collections.abc import Callable

    from tests.conftest import FakeIndexSource
    from updater.services.records import FileRecord, RecordStore
    from updater.services.site_registry import SiteRegistry


def _entry(filename: str, checksum: str | None, *previous: str, **kwargs: object) -> RemoteEntry:
    return RemoteEntry(
        filename=filename,
        checksum=checksum,
        timestamp="20200301000000" if checksum is not None else None,
        previous=[IndexVersion(checksum=p, timestamp="20200101000000") for p in previous],
        **kwargs,  # type: ignore[arg-type]
    )


class TestApplyRemoteIndex:
    def test_new_entries_become_records(
        self, store: RecordStore, registry: SiteRegistry
    ) -> None:
        index = RemoteIndex(
            timestamp="20200301000000",
            files=[
                _entry(
                    "jars/app.jar",
                    "a2",
                    "a1",
                    dependencies=[IndexDependency(filename="jars/lib.jar")],
                    platforms=["linux64"],
                ),
                _entry("jars/lib.jar", "l1"),
            ],
        )

        notes = apply_remote_index(store, registry, "Base", index)

        assert notes == []
        app = store.require("jars/app.jar")
        assert app.update_site == "Base"
        assert app.remote_checksum == "a2"
        assert app.previous_checksums == {"a1"}
        assert app.dependency_names() == ["jars/lib.jar"]
        assert app.platforms == {"linux64"}
        assert app.status == Status.NOT_INSTALLED
        assert store.require("jars/lib.jar").status == Status.NEW
        assert registry.require("Base").timestamp == "20200301000000"

    def test_local_file_is_attributed(
        self,
        store: RecordStore,
        registry: SiteRegistry,
        make_record: Callable[..., FileRecord],
    ) -> None:
        record = store.add(make_record("mine.jar", local="c9", site=None))
        apply_remote_index(store, registry, "Base", RemoteIndex(files=[_entry("mine.jar", "c9")]))
        assert record.update_site == "Base"
        assert record.status == Status.INSTALLED

    def test_later_site_shadows_earlier(
        self, store: RecordStore, registry: SiteRegistry
    ) -> None:
        apply_remote_index(store, registry, "Base", RemoteIndex(files=[_entry("x.jar", "b1")]))
        notes = apply_remote_index(
            store, registry, "Extra", RemoteIndex(files=[_entry("x.jar", "e1")])
        )

        record = store.require("x.jar")
        assert notes == ["x.jar: 'Extra' shadows 'Base'"]
        assert record.update_site == "Extra"
        assert record.remote_checksum == "e1"
        assert "b1" in record.previous_checksums

    def test_earlier_site_cannot_take_over(
        self, store: RecordStore, registry: SiteRegistry
    ) -> None:
        apply_remote_index(store, registry, "Extra", RemoteIndex(files=[_entry("x.jar", "e1")]))
        notes = apply_remote_index(
            store, registry, "Base", RemoteIndex(files=[_entry("x.jar", "b1", "b0")])
        )

        record = store.require("x.jar")
        assert notes == ["x.jar: 'Extra' shadows 'Base'"]
        assert record.update_site == "Extra"
        assert record.remote_checksum == "e1"
        assert record.previous_checksums == {"b0", "b1"}

    def test_dropped_file_becomes_obsolete(
        self,
        store: RecordStore,
        registry: SiteRegistry,
        make_record: Callable[..., FileRecord],
    ) -> None:
        record = store.add(make_record("old.jar", local="v1", remote="v1"))
        apply_remote_index(store, registry, "Base", RemoteIndex(timestamp="20200401000000"))
        assert record.remote is None
        assert record.previous_checksums == {"v1"}
        assert record.status == Status.OBSOLETE

    def test_current_version_leaves_history(
        self,
        store: RecordStore,
        registry: SiteRegistry,
        make_record: Callable[..., FileRecord],
    ) -> None:
        record = store.add(make_record("a.jar", local="v1", previous=("v1",)))
        apply_remote_index(store, registry, "Base", RemoteIndex(files=[_entry("a.jar", "v1")]))
        assert record.previous_checksums == set()
        assert record.status == Status.INSTALLED

    def test_shadowed_version_is_remembered(
        self, store: RecordStore, registry: SiteRegistry
    ) -> None:
        apply_remote_index(store, registry, "Base", RemoteIndex(files=[_entry("x.jar", "b1")]))
        apply_remote_index(store, registry, "Extra", RemoteIndex(files=[_entry("x.jar", "e1")]))
        apply_remote_index(store, registry, "Base", RemoteIndex(files=[_entry("x.jar", "b2")]))

        record = store.require("x.jar")
        assert record.remote_checksum == "e1"
        assert list(record.shadowed) == ["Base"]
        assert record.shadowed["Base"].checksum == "b2"

    def test_owner_dropping_file_falls_back_to_shadowed_site(
        self, store: RecordStore, registry: SiteRegistry
    ) -> None:
        apply_remote_index(store, registry, "Base", RemoteIndex(files=[_entry("x.jar", "b1")]))
        apply_remote_index(store, registry, "Extra", RemoteIndex(files=[_entry("x.jar", "e1")]))
        apply_remote_index(store, registry, "Extra", RemoteIndex(timestamp="20200401000000"))

        record = store.require("x.jar")
        assert record.update_site == "Base"
        assert record.remote_checksum == "b1"
        assert record.shadowed == {}
        assert "e1" in record.previous_checksums
        assert "b1" not in record.previous_checksums

    def test_shadowed_site_dropping_file(
        self, store: RecordStore, registry: SiteRegistry
    ) -> None:
        apply_remote_index(store, registry, "Base", RemoteIndex(files=[_entry("x.jar", "b1")]))
        apply_remote_index(store, registry, "Extra", RemoteIndex(files=[_entry("x.jar", "e1")]))
        apply_remote_index(store, registry, "Base", RemoteIndex(timestamp="20200401000000"))

        record = store.require("x.jar")
        assert record.update_site == "Extra"
        assert record.shadowed == {}


class TestBuildRemoteIndex:
    def test_reflects_pending_upload(
        self,
        store: RecordStore,
        make_record: Callable[..., FileRecord],
    ) -> None:
        store.add(make_record("a.jar", local="v1", remote="v1", site="Extra"))
        store.add(make_record("b.jar", local="v1", remote="v1", site="Base"))
        store.add(make_record("c.jar", remote="v2", previous=("v1",), site="Extra"))
        store.add(make_record("n.jar", local="n1", site=None))

        index = build_remote_index(
            store,
            "Extra",
            "20200501000000",
            uploaded={"n.jar": Version("n1", "20200501000000", 3)},
            removed=["c.jar"],
        )

        entries = {e.filename: e for e in index.files}
        assert index.timestamp == "20200501000000"
        assert sorted(entries) == ["a.jar", "c.jar", "n.jar"]
        assert entries["c.jar"].checksum is None
        assert [v.checksum for v in entries["c.jar"].previous] == ["v1", "v2"]
        assert (entries["n.jar"].checksum, entries["n.jar"].size) == ("n1", 3)

    def test_keeps_files_shadowed_by_another_site(
        self, store: RecordStore, registry: SiteRegistry
    ) -> None:
        apply_remote_index(
            store,
            registry,
            "Base",
            RemoteIndex(files=[_entry("jars/foo.jar", "b1", "b0"), _entry("jars/bar.jar", "r1")]),
        )
        apply_remote_index(
            store, registry, "Extra", RemoteIndex(files=[_entry("jars/foo.jar", "e1")])
        )

        base = {e.filename: e for e in build_remote_index(store, "Base", "20200501000000").files}
        extra = {e.filename: e for e in build_remote_index(store, "Extra", "20200501000000").files}

        assert sorted(base) == ["jars/bar.jar", "jars/foo.jar"]
        assert base["jars/foo.jar"].checksum == "b1"
        assert "b1" not in [v.checksum for v in base["jars/foo.jar"].previous]
        assert sorted(extra) == ["jars/foo.jar"]
        assert extra["jars/foo.jar"].checksum == "e1"

    def test_index_round_trips_through_json(
        self, store: RecordStore, make_record: Callable[..., FileRecord]
    ) -> None:
        store.add(make_record("a.jar", local="v1", remote="v1", site="Extra", depends=("b.jar",)))
        index = build_remote_index(store, "Extra", "20200501000000")
        parsed = RemoteIndex.model_validate_json(index.model_dump_json())
        assert parsed == index


class TestDetachSite:
    def test_owned_files_lose_remote_state(
        self,
        store: RecordStore,
        registry: SiteRegistry,
        make_record: Callable[..., FileRecord],
    ) -> None:
        installed = store.add(make_record("a.jar", local="v1", remote="v1", previous=("v0",)))
        store.add(make_record("b.jar", remote="v1"))
        other = store.add(make_record("c.jar", local="v1", remote="v1", site="Extra"))
        installed.set_action(Action.UNINSTALL)

        site = detach_site(store, registry, "Base")

        assert site.name == "Base"
        assert "Base" not in registry
        assert installed.update_site is None
        assert installed.remote is None
        assert installed.previous_versions == []
        assert installed.action == Action.NONE
        assert installed.status == Status.LOCAL_ONLY
        assert "b.jar" not in store
        assert other.update_site == "Extra"

    def test_shadowed_site_takes_over(
        self, store: RecordStore, registry: SiteRegistry
    ) -> None:
        apply_remote_index(store, registry, "Base", RemoteIndex(files=[_entry("x.jar", "b1")]))
        apply_remote_index(store, registry, "Extra", RemoteIndex(files=[_entry("x.jar", "e1")]))

        detach_site(store, registry, "Extra")

        record = store.require("x.jar")
        assert record.update_site == "Base"
        assert record.remote_checksum == "b1"
        assert record.shadowed == {}

    def test_removed_site_is_no_longer_shadowed(
        self, store: RecordStore, registry: SiteRegistry
    ) -> None:
        apply_remote_index(store, registry, "Base", RemoteIndex(files=[_entry("x.jar", "b1")]))
        apply_remote_index(store, registry, "Extra", RemoteIndex(files=[_entry("x.jar", "e1")]))

        detach_site(store, registry, "Base")

        record = store.require("x.jar")
        assert record.update_site == "Extra"
        assert record.shadowed == {}

    def test_unknown_site(self, store: RecordStore, registry: SiteRegistry) -> None:
        with pytest.raises(InputError, match="Unknown update site"):
            detach_site(store, registry, "Nope")


class TestRefreshRemote:
    def test_unreachable_site_is_skipped(
        self,
        store: RecordStore,
        registry: SiteRegistry,
        index_source: FakeIndexSource,
    ) -> None:
        index_source.indexes["Base"] = RemoteIndex(
            timestamp="20200301000000", files=[_entry("a.jar", "a1")]
        )

        notes = refresh_remote(store, registry, index_source)

        assert index_source.fetched == ["Base", "Extra"]
        assert len(notes) == 1
        assert notes[0].startswith("Extra: ")
        assert store.require("a.jar").update_site == "Base"
        assert registry.require("Extra").timestamp == "0"


class TestRemoteEntrySchema:
    def test_normalizes_separators(self) -> None:
        assert _entry("jars\\a.jar", "c").filename == "jars/a.jar"

    @pytest.mark.parametrize("filename", ["../evil.jar", "/etc/passwd", "jars/../../x"])
    def test_rejects_paths_outside_tree(self, filename: str) -> None:
        with pytest.raises(ValidationError):
            _entry(filename, "c")

    def test_current_version_needs_timestamp(self) -> None:
        with pytest.raises(ValidationError):
            RemoteEntry(filename="a.jar", checksum="c")

    def test_obsolete_entry_needs_history(self) -> None:
        with pytest.raises(ValidationError):
            RemoteEntry(filename="a.jar")
        assert _entry("a.jar", None, "c0").checksum is None
