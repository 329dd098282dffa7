"""
Unit tests for the catalog diff engine.

These tests verify that:
1. An untouched export diffs to nothing
2. Rows are matched by identity only
3. Omitted records become deletes
4. Output order is deterministic
"""

from uuid import uuid4

from partsync.diff import DiffOperation, diff_record, generate_diff
from partsync.schema import PARTS
from partsync.store.snapshot import fetch_store_snapshot
from partsync.validation import ValidationEngine

from builders import (
    REFERENCE_YEAR,
    cross_reference_row,
    export_store,
    make_part,
    make_seeded_store,
    make_store,
    make_workbook,
    parse,
    part_row,
    vehicle_application_row,
)


def diff_bytes(data, store):
    return generate_diff(parse(data), fetch_store_snapshot(store))


def seeded_rows(store, rotor, hub):
    snapshot = fetch_store_snapshot(store)
    vas = sorted(snapshot.vehicle_applications.values(), key=lambda va: va.make != "Toyota")
    crs = sorted(snapshot.cross_references.values(), key=lambda cr: cr.competitor_brand != "TMK")
    return (
        [part_row(rotor), part_row(hub)],
        [vehicle_application_row(vas[0], "ACR-001"), vehicle_application_row(vas[1], "ACR-002")],
        [cross_reference_row(crs[0], "ACR-001"), cross_reference_row(crs[1], "ACR-002")],
    )


# =============================================================================
# ROUND TRIP
# =============================================================================

class TestRoundTrip:

    def test_export_reimport_is_a_no_op(self):
        store = make_seeded_store()[0]
        data = export_store(store)
        document = parse(data)
        snapshot = fetch_store_snapshot(store)

        validation = ValidationEngine(REFERENCE_YEAR).validate(document, snapshot)
        diff = generate_diff(document, snapshot)

        assert validation.valid
        assert validation.warnings == []
        assert diff.total_adds == 0
        assert diff.total_updates == 0
        assert diff.total_deletes == 0
        assert not diff.has_changes
        assert diff.parts.unchanged_count == 2
        assert diff.vehicle_applications.unchanged_count == 2
        assert diff.cross_references.unchanged_count == 2

    def test_optional_fields_round_trip_as_null(self):
        part = make_part("ACR-500", "Caliper")
        store = make_store([part])
        diff = diff_bytes(export_store(store), store)

        assert not diff.has_changes


# =============================================================================
# IDENTITY MATCHING
# =============================================================================

class TestIdentityMatching:

    def test_changed_field_is_an_update(self):
        store, rotor, hub = make_seeded_store()
        parts, vas, crs = seeded_rows(store, rotor, hub)
        parts[1] = part_row(hub, drive_type="AWD")
        diff = diff_bytes(make_workbook(parts, vas, crs), store)

        assert diff.summary == {"total_adds": 0, "total_updates": 1, "total_deletes": 0, "total_changes": 1}
        update = diff.parts.updates[0]
        assert update.operation is DiffOperation.UPDATE
        assert update.record_id == hub.id
        assert update.changed_fields == ["drive_type"]
        assert update.changes[0].from_value is None
        assert update.changes[0].to_value == "AWD"
        assert update.before.acr_sku == "ACR-002"

    def test_rows_matched_by_identity_not_position(self):
        store, rotor, hub = make_seeded_store()
        parts, vas, crs = seeded_rows(store, rotor, hub)
        diff = diff_bytes(make_workbook(list(reversed(parts)), list(reversed(vas)), crs), store)

        assert not diff.has_changes

    def test_empty_id_is_an_add(self):
        store, rotor, hub = make_seeded_store()
        parts, vas, crs = seeded_rows(store, rotor, hub)
        parts.append(["", "ACR-003", "Caliper", "Front", None, None, None, None])
        vas.append(["", "", "ACR-003", "Mazda", "3", 2014, 2018])
        diff = diff_bytes(make_workbook(parts, vas, crs), store)

        assert len(diff.parts.adds) == 1
        add = diff.parts.adds[0]
        assert add.record_id is None
        assert add.values["acr_sku"] == "ACR-003"

        va_add = diff.vehicle_applications.adds[0]
        assert va_add.values["part_id"] is None
        assert va_add.part_sku == "ACR-003"

    def test_child_added_to_existing_part_by_sku(self):
        store, rotor, hub = make_seeded_store()
        parts, vas, crs = seeded_rows(store, rotor, hub)
        crs.append(["", "", "ACR-002", "Brembo", "09.1234"])
        diff = diff_bytes(make_workbook(parts, vas, crs), store)

        add = diff.cross_references.adds[0]
        assert add.values["acr_part_id"] == hub.id
        assert add.values["competitor_sku"] == "09.1234"

    def test_moving_child_to_another_part(self):
        store, rotor, hub = make_seeded_store()
        parts, vas, crs = seeded_rows(store, rotor, hub)
        vas[0][1] = str(hub.id)
        vas[0][2] = "ACR-002"
        diff = diff_bytes(make_workbook(parts, vas, crs), store)

        update = diff.vehicle_applications.updates[0]
        assert update.changed_fields == ["part_id"]
        assert update.values["part_id"] == hub.id

    def test_unknown_id_is_added_with_that_id(self):
        store = make_store()
        supplied = uuid4()
        data = make_workbook([[str(supplied), "ACR-9", "Rotor", None, None, None, None, None]])
        diff = diff_bytes(data, store)

        assert diff.parts.adds[0].record_id == supplied


# =============================================================================
# FULL REPLACEMENT
# =============================================================================

class TestOmission:

    def test_omitted_records_are_deleted(self):
        store, rotor, hub = make_seeded_store()
        parts, vas, crs = seeded_rows(store, rotor, hub)
        diff = diff_bytes(make_workbook(parts[:1], vas[:1], crs[:1]), store)

        assert [d.record_id for d in diff.parts.deletes] == [hub.id]
        assert len(diff.vehicle_applications.deletes) == 1
        assert len(diff.cross_references.deletes) == 1
        assert diff.parts.deletes[0].before.acr_sku == "ACR-002"

    def test_empty_sheets_delete_everything(self):
        store = make_seeded_store()[0]
        diff = diff_bytes(make_workbook(), store)

        assert diff.total_deletes == 6
        assert diff.total_adds == 0


# =============================================================================
# DETERMINISM
# =============================================================================

class TestOrdering:

    def test_updates_and_deletes_follow_identity_order(self):
        parts = [make_part(f"ACR-{n:03d}") for n in range(6)]
        store = make_store(parts)
        by_id = sorted(parts, key=lambda p: p.id)
        rows = [part_row(p, part_type="Drum") for p in parts[:3]]
        diff = diff_bytes(make_workbook(rows), store)

        kept = {p.id for p in parts[:3]}
        assert [u.record_id for u in diff.parts.updates] == [p.id for p in by_id if p.id in kept]
        assert [d.record_id for d in diff.parts.deletes] == [p.id for p in by_id if p.id not in kept]

    def test_adds_follow_row_order(self):
        data = make_workbook([
            ["", sku, "Rotor", None, None, None, None, None] for sku in ("ACR-Z", "ACR-A", "ACR-M")
        ])
        diff = diff_bytes(data, make_store())

        assert [a.values["acr_sku"] for a in diff.parts.adds] == ["ACR-Z", "ACR-A", "ACR-M"]


# =============================================================================
# FIELD COMPARISON
# =============================================================================

class TestDiffRecord:

    def test_null_and_blank_are_equal(self):
        part = make_part("ACR-1", "Rotor")
        values = {"acr_sku": "ACR-1", "part_type": "Rotor", "position_type": "",
                  "abs_type": None, "bolt_pattern": "  ", "drive_type": None, "specifications": None}

        assert diff_record(PARTS, part, values) == []

    def test_whitespace_is_ignored(self):
        part = make_part("ACR-1", "Rotor")
        values = {"acr_sku": "ACR-1 ", "part_type": " Rotor"}

        assert diff_record(PARTS, part, values) == []
