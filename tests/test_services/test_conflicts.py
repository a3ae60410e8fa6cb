"""Tests for conflict detection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from updater.exceptions import ConflictError
from updater.services.conflicts import (
    ConflictKind,
    Overrides,
    detect_conflicts,
    ensure_no_conflicts,
)
from updater.services.records import Action, RecordStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from updater.services.records import FileRecord


class TestUploadConflicts:
    def test_site_ownership(
        self, store: RecordStore, make_record: Callable[..., FileRecord]
    ) -> None:
        record = store.add(make_record("a.jar", local="x", remote="v1"))
        record.set_action(Action.UPLOAD, "Extra")

        conflicts = detect_conflicts(store, for_upload=True)
        assert [c.kind for c in conflicts] == [ConflictKind.SITE_OWNERSHIP]
        assert conflicts[0].filename == "a.jar"
        assert "Base" in conflicts[0].reason

    def test_site_ownership_accepted_by_force_shadow(
        self, store: RecordStore, make_record: Callable[..., FileRecord]
    ) -> None:
        store.add(make_record("a.jar", local="x", remote="v1")).set_action(Action.UPLOAD, "Extra")
        assert detect_conflicts(store, True, Overrides(force_shadow=True)) == []

    def test_same_checksum_is_not_a_clash(
        self, store: RecordStore, make_record: Callable[..., FileRecord]
    ) -> None:
        store.add(make_record("a.jar", local="v1", remote="v1")).set_action(
            Action.UPLOAD, "Extra"
        )
        assert detect_conflicts(store, for_upload=True) == []

    def test_stale_dependency(
        self, store: RecordStore, make_record: Callable[..., FileRecord]
    ) -> None:
        app = store.add(make_record("app.jar", local="x", site=None, depends=("lib.jar",)))
        lib = store.add(make_record("lib.jar", remote="v1", site="Extra"))
        app.set_action(Action.UPLOAD, "Extra")
        lib.set_action(Action.REMOVE, "Extra")

        conflicts = detect_conflicts(store, for_upload=True)
        assert [(c.filename, c.kind) for c in conflicts] == [
            ("app.jar", ConflictKind.STALE_DEPENDENCY)
        ]

    def test_install_checks_do_not_run_for_upload(
        self, store: RecordStore, make_record: Callable[..., FileRecord]
    ) -> None:
        store.add(make_record("a.jar", local="x", remote="v2", previous=("v1",))).set_action(
            Action.UPDATE
        )
        assert detect_conflicts(store, for_upload=True) == []


class TestInstallConflicts:
    def test_local_modification(
        self, store: RecordStore, make_record: Callable[..., FileRecord]
    ) -> None:
        store.add(make_record("a.jar", local="x", remote="v2", previous=("v1",))).set_action(
            Action.UPDATE
        )
        conflicts = detect_conflicts(store, for_upload=False)
        assert [c.kind for c in conflicts] == [ConflictKind.LOCAL_MODIFICATION]
        assert detect_conflicts(store, False, Overrides(force=True)) == []

    def test_required_by_others(
        self, store: RecordStore, make_record: Callable[..., FileRecord]
    ) -> None:
        store.add(make_record("app.jar", local="v1", remote="v1", depends=("lib.jar",)))
        store.add(make_record("lib.jar", local="v1", previous=("v1",))).set_action(
            Action.UNINSTALL
        )
        conflicts = detect_conflicts(store, for_upload=False)
        assert [c.kind for c in conflicts] == [ConflictKind.REQUIRED_BY_OTHERS]
        assert "app.jar" in conflicts[0].reason

    def test_co_obsolete_group_is_removable(
        self, store: RecordStore, make_record: Callable[..., FileRecord]
    ) -> None:
        store.add(
            make_record("app.jar", local="v1", previous=("v1",), depends=("lib.jar",))
        ).set_action(Action.UNINSTALL)
        store.add(make_record("lib.jar", local="v1", previous=("v1",))).set_action(
            Action.UNINSTALL
        )
        assert detect_conflicts(store, for_upload=False) == []

    def test_ensure_raises_structured_error(
        self, store: RecordStore, make_record: Callable[..., FileRecord]
    ) -> None:
        store.add(make_record("a.jar", local="x", previous=("v1",))).set_action(Action.UNINSTALL)
        with pytest.raises(ConflictError) as exc_info:
            ensure_no_conflicts(store, for_upload=False)
        assert len(exc_info.value.conflicts) == 1
        assert "a.jar: locally modified file would be removed" in str(exc_info.value)

    def test_no_staged_actions(
        self, store: RecordStore, make_record: Callable[..., FileRecord]
    ) -> None:
        store.add(make_record("a.jar", local="x", remote="v2", previous=("v1",)))
        ensure_no_conflicts(store, for_upload=False)
