"""
Unit tests for rollback and import history.

These tests verify that:
1. Rollback restores the exact pre-import catalog
2. Only the newest active import can be rolled back
3. Edits made after an import block its rollback and leave the store untouched
4. History lists imports newest first with rollback flags
"""

from dataclasses import replace
from uuid import uuid4

import pytest

from partsync.diff import generate_diff
from partsync.errors import (
    ImportAlreadyRolledBackError,
    ImportNotFoundError,
    RollbackConflictError,
    RollbackExecutionError,
    SequentialRollbackError,
    StoreError,
)
from partsync.importer import ImportMeta, execute_import
from partsync.rollback import detect_conflicts, list_import_history, rollback_import
from partsync.schema import CROSS_REFERENCES, PARTS, VEHICLE_APPLICATIONS
from partsync.store.memory_store import InMemoryCatalogStore
from partsync.store.snapshot import fetch_store_snapshot

from builders import (
    FixedClock,
    RecordingStore,
    export_store,
    make_seeded_store,
    make_store,
    make_workbook,
    parse,
    part_row,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FixedClock()


def run_import(store, data, clock, actor="admin@example.com", file_name="catalog.xlsx"):
    document = parse(data, file_name)
    diff = generate_diff(document, fetch_store_snapshot(store))
    meta = ImportMeta(actor=actor, file_name=file_name, file_size=document.file_size)
    return execute_import(document, diff, meta, store, clock=clock)


def table_state(store):
    return {
        entity: sorted((r.to_dict() for r in store.list_records(entity)), key=lambda d: d["id"])
        for entity in (PARTS, VEHICLE_APPLICATIONS, CROSS_REFERENCES)
    }


def edit_part(store, part_id, clock, actor="other@example.com", **values):
    current = store.get_record(PARTS, part_id)
    store.update_record(PARTS, replace(current, updated_at=clock(), updated_by=actor, **values))


# =============================================================================
# RESTORE
# =============================================================================

class TestRollbackRestore:

    def test_new_part_import_rolls_back_to_empty(self, clock):
        store = make_store()
        data = make_workbook(
            [["", "ACR-100", "Brake Rotor", None, None, None, None, None]],
            [["", "", "ACR-100", "Ford", "F-150", 2015, 2018]],
        )
        diff = generate_diff(parse(data), fetch_store_snapshot(store))
        assert diff.parts.summary["adds"] == 1
        assert diff.vehicle_applications.summary["adds"] == 1

        result = run_import(store, data, clock)
        assert len(store.list_records(PARTS)) == 1

        rollback = rollback_import(store, result.import_id, actor="admin@example.com", clock=clock)

        assert store.list_records(PARTS) == []
        assert store.list_records(VEHICLE_APPLICATIONS) == []
        assert rollback.restored_counts == {PARTS: 0, VEHICLE_APPLICATIONS: 0, CROSS_REFERENCES: 0}

    def test_restores_records_verbatim(self, clock):
        store, rotor, hub = make_seeded_store()
        before = table_state(store)
        result = run_import(store, make_workbook([part_row(rotor, part_type="Drum")]), clock)
        assert table_state(store) != before

        rollback = rollback_import(store, result.import_id, clock=clock)

        assert table_state(store) == before
        assert rollback.restored_counts == {PARTS: 2, VEHICLE_APPLICATIONS: 2, CROSS_REFERENCES: 2}

    def test_import_record_is_kept(self, clock):
        store = make_seeded_store()[0]
        result = run_import(store, export_store(store), clock)
        rollback_import(store, result.import_id, actor="ops@example.com", clock=clock)

        assert store.get_import(result.import_id) is not None
        rollbacks = store.list_rollbacks()
        assert [r.import_id for r in rollbacks] == [result.import_id]
        assert rollbacks[0].rolled_back_by == "ops@example.com"


# =============================================================================
# PRECONDITIONS
# =============================================================================

class TestRollbackPreconditions:

    def test_unknown_import(self):
        with pytest.raises(ImportNotFoundError):
            rollback_import(make_store(), uuid4())

    def test_already_rolled_back(self, clock):
        store = make_seeded_store()[0]
        result = run_import(store, export_store(store), clock)
        rollback_import(store, result.import_id, clock=clock)

        with pytest.raises(ImportAlreadyRolledBackError):
            rollback_import(store, result.import_id, clock=clock)

    def test_sequential_order_enforced(self, clock):
        store, rotor, hub = make_seeded_store()
        import_a = run_import(store, make_workbook([part_row(rotor), part_row(hub)]), clock)
        import_b = run_import(store, make_workbook([part_row(rotor, part_type="Drum")]), clock)

        with pytest.raises(SequentialRollbackError) as exc_info:
            rollback_import(store, import_a.import_id, clock=clock)

        assert exc_info.value.newest_import_id == import_b.import_id
        assert exc_info.value.requested_import_id == import_a.import_id

        rollback_import(store, import_b.import_id, clock=clock)
        rollback_import(store, import_a.import_id, clock=clock)

        assert {p.acr_sku for p in store.list_records(PARTS)} == {"ACR-001", "ACR-002"}
        assert len(store.list_records(VEHICLE_APPLICATIONS)) == 2

    def test_same_timestamp_imports_use_insertion_order(self):
        store = make_seeded_store()[0]
        frozen = FixedClock()
        instant = frozen()
        import_a = run_import(store, export_store(store), lambda: instant)
        import_b = run_import(store, export_store(store), lambda: instant)

        with pytest.raises(SequentialRollbackError) as exc_info:
            rollback_import(store, import_a.import_id, clock=frozen)
        assert exc_info.value.newest_import_id == import_b.import_id


# =============================================================================
# CONFLICTS
# =============================================================================

class TestRollbackConflicts:

    def test_later_edit_blocks_rollback(self, clock):
        store, rotor, hub = make_seeded_store()
        result = run_import(store, make_workbook(
            [part_row(rotor, part_type="Drum"), part_row(hub)]
        ), clock)
        edit_part(store, rotor.id, clock, part_type="Disc")
        before = table_state(store)

        with pytest.raises(RollbackConflictError) as exc_info:
            rollback_import(store, result.import_id, clock=clock)

        error = exc_info.value
        assert error.conflict_count == 1
        conflict = error.conflicts[0]
        assert conflict.record_id == rotor.id
        assert conflict.entity == PARTS
        assert conflict.modified_by == "other@example.com"
        assert error.conflicting_skus == ["ACR-001"]
        assert table_state(store) == before
        assert store.list_rollbacks() == []

    def test_edit_to_untouched_record_reports_fields(self, clock):
        store, rotor, hub = make_seeded_store()
        result = run_import(store, make_workbook(
            [part_row(rotor, part_type="Drum"), part_row(hub)]
        ), clock)
        edit_part(store, hub.id, clock, bolt_pattern="5x114.3")

        with pytest.raises(RollbackConflictError) as exc_info:
            rollback_import(store, result.import_id, clock=clock)

        conflict = exc_info.value.conflicts[0]
        assert conflict.record_id == hub.id
        assert conflict.fields == ["bolt_pattern"]

    def test_deleted_record_is_a_conflict(self, clock):
        store, rotor, hub = make_seeded_store()
        result = run_import(store, export_store(store), clock)
        store.delete_record(CROSS_REFERENCES, store.list_records(CROSS_REFERENCES)[0].id)

        with pytest.raises(RollbackConflictError) as exc_info:
            rollback_import(store, result.import_id, clock=clock)

        conflict = exc_info.value.conflicts[0]
        assert conflict.deleted
        assert conflict.entity == CROSS_REFERENCES
        assert conflict.modified_by is None

    def test_rows_deleted_by_the_import_are_not_conflicts(self, clock):
        store, rotor, hub = make_seeded_store()
        result = run_import(store, make_workbook([part_row(rotor), part_row(hub)]), clock)
        record = store.get_import(result.import_id)

        assert detect_conflicts(record, fetch_store_snapshot(store)) == []

    def test_edits_before_the_import_are_not_conflicts(self, clock):
        store, rotor, hub = make_seeded_store()
        edit_part(store, hub.id, clock, bolt_pattern="5x100")
        result = run_import(store, export_store(store), clock)

        rollback_import(store, result.import_id, clock=clock)

        assert store.get_record(PARTS, hub.id).bolt_pattern == "5x100"


# =============================================================================
# ISOLATION
# =============================================================================

class TestRollbackIsolation:

    def test_checks_run_under_the_catalog_lock(self, clock):
        store, rotor, hub = make_seeded_store(store_class=RecordingStore)
        result = run_import(store, make_workbook([part_row(rotor, part_type="Drum")]), clock)
        store.events.clear()

        rollback_import(store, result.import_id, clock=clock)

        assert store.events[:2] == [("begin", False), ("lock",)]
        assert store.reads()
        assert all(in_transaction for _, _, in_transaction in store.reads())

    def test_refused_rollback_releases_the_transaction(self, clock):
        store, rotor, hub = make_seeded_store(store_class=RecordingStore)
        import_a = run_import(store, export_store(store), clock)
        run_import(store, export_store(store), clock)

        with pytest.raises(SequentialRollbackError):
            rollback_import(store, import_a.import_id, clock=clock)

        assert not store.in_transaction


# =============================================================================
# EXECUTION FAILURE
# =============================================================================

class FailingRollbackStore(InMemoryCatalogStore):

    def insert_rollback(self, record):
        raise StoreError("simulated ledger failure")


class TestRollbackFailure:

    @pytest.mark.parametrize("transactional", [True, False])
    def test_failed_restore_leaves_store_unchanged(self, clock, transactional):
        store = FailingRollbackStore(transactional=transactional)
        seed_store, rotor, hub = make_seeded_store()
        for entity in (PARTS, VEHICLE_APPLICATIONS, CROSS_REFERENCES):
            for record in seed_store.list_records(entity):
                store.insert_record(entity, record)
        result = run_import(store, make_workbook([part_row(rotor, part_type="Drum")]), clock)
        after_import = table_state(store)

        with pytest.raises(RollbackExecutionError):
            rollback_import(store, result.import_id, clock=clock)

        assert table_state(store) == after_import


# =============================================================================
# HISTORY
# =============================================================================

class TestImportHistory:

    def test_newest_first_with_flags(self, clock):
        store = make_seeded_store()[0]
        first = run_import(store, export_store(store), clock, actor="ana@example.com", file_name="a.xlsx")
        second = run_import(store, export_store(store), clock, actor="ben@example.com", file_name="b.xlsx")
        rollback_import(store, second.import_id, actor="ops@example.com", clock=clock)

        history = list_import_history(store)

        assert [h.id for h in history] == [second.import_id, first.import_id]
        assert history[0].rolled_back
        assert history[0].rolled_back_by == "ops@example.com"
        assert not history[1].rolled_back
        assert history[1].imported_by == "ana@example.com"
        assert history[1].file_name == "a.xlsx"

    def test_limit(self, clock):
        store = make_seeded_store()[0]
        for _ in range(3):
            run_import(store, export_store(store), clock)

        assert len(list_import_history(store, limit=2)) == 2

    def test_summary_serializes(self, clock):
        store = make_seeded_store()[0]
        result = run_import(store, export_store(store), clock)
        item = list_import_history(store)[0].to_dict()

        assert item["id"] == str(result.import_id)
        assert item["summary"] == {"adds": 0, "updates": 0, "deletes": 0}
        assert item["rolled_back_at"] is None

    def test_listing_leaves_snapshot_payload_out(self, clock):
        store = make_seeded_store()[0]
        result = run_import(store, export_store(store), clock)

        assert store.list_imports()[0].snapshot is None
        assert store.get_import(result.import_id).snapshot.counts()[PARTS] == 2
