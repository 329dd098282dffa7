"""
Tests for the import pipeline facade and the command-line entry point.
"""

import pytest

from partsync.cli import EXIT_INVALID, EXIT_NEEDS_CONFIRMATION, EXIT_OK, main
from partsync.config import Settings
from partsync.errors import AuthorizationError, MalformedDocumentError
from partsync.pipeline import ImportPipeline
from partsync.schema import CROSS_REFERENCES, PARTS, VEHICLE_APPLICATIONS

from builders import (
    REFERENCE_YEAR,
    FixedClock,
    RecordingStore,
    export_store,
    make_seeded_store,
    make_store,
    make_workbook,
    part_row,
)


@pytest.fixture
def settings():
    return Settings(reference_year=REFERENCE_YEAR)


def make_pipeline(store, settings, **kwargs):
    kwargs.setdefault("clock", FixedClock())
    return ImportPipeline(store, settings, **kwargs)


# =============================================================================
# PREVIEW / EXECUTE
# =============================================================================

class TestPipeline:

    def test_preview_does_not_write(self, settings):
        store, rotor, hub = make_seeded_store()
        pipeline = make_pipeline(store, settings)
        preview = pipeline.preview(make_workbook([part_row(rotor)]), "catalog.xlsx")

        assert preview.valid
        assert preview.diff.total_deletes == 5
        assert len(store.list_records(PARTS)) == 2
        assert store.list_imports() == []

    def test_invalid_document_has_no_diff(self, settings):
        pipeline = make_pipeline(make_store(), settings)
        data = make_workbook([
            ["", "ACR-200", "Rotor", None, None, None, None, None],
            ["", "ACR-200", "Rotor", None, None, None, None, None],
        ])
        outcome = pipeline.execute(data, "dupes.xlsx", actor="admin@example.com")

        assert not outcome.preview.valid
        assert outcome.preview.diff is None
        assert not outcome.applied
        assert not outcome.needs_confirmation

    def test_empty_workbook_is_blocked(self, settings):
        store = make_seeded_store()[0]
        pipeline = make_pipeline(store, settings)
        outcome = pipeline.execute(make_workbook(), "blank.xlsx", actor="admin@example.com")

        assert not outcome.applied
        assert "E10" in outcome.preview.validation.codes()
        assert len(store.list_records(PARTS)) == 2

    def test_preview_reads_one_consistent_snapshot(self, settings):
        store = make_seeded_store(store_class=RecordingStore)[0]
        data = export_store(store)
        store.events.clear()

        make_pipeline(store, settings).preview(data, "catalog.xlsx")

        assert store.events[0] == ("begin", True)
        assert [name for _, name, _ in store.reads()] == [PARTS, VEHICLE_APPLICATIONS, CROSS_REFERENCES]
        assert all(in_transaction for _, _, in_transaction in store.reads())
        assert not store.in_transaction

    def test_warnings_require_confirmation(self, settings):
        store, rotor, hub = make_seeded_store()
        pipeline = make_pipeline(store, settings)
        edited = make_workbook([part_row(rotor, part_type="Drum"), part_row(hub)])

        outcome = pipeline.execute(edited, "types.xlsx", actor="admin@example.com")
        assert outcome.needs_confirmation
        assert store.list_imports() == []

        outcome = pipeline.execute(edited, "types.xlsx", actor="admin@example.com", confirm_warnings=True)
        assert outcome.applied
        assert store.get_record(PARTS, rotor.id).part_type == "Drum"

    def test_execute_then_rollback_and_history(self, settings):
        store = make_store()
        pipeline = make_pipeline(store, settings)
        data = make_workbook(
            [["", "ACR-100", "Brake Rotor", None, None, None, None, None]],
            [["", "", "ACR-100", "Ford", "F-150", 2015, 2018]],
        )
        outcome = pipeline.execute(data, "new.xlsx", actor="admin@example.com")
        assert outcome.applied
        assert len(store.list_records(VEHICLE_APPLICATIONS)) == 1

        pipeline.rollback(outcome.result.import_id, actor="admin@example.com")

        history = pipeline.history()
        assert store.list_records(PARTS) == []
        assert history[0].rolled_back
        assert history[0].file_name == "new.xlsx"

    def test_malformed_upload_raises(self, settings):
        pipeline = make_pipeline(make_store(), settings)
        with pytest.raises(MalformedDocumentError):
            pipeline.preview(b"not a workbook", "broken.xlsx")

    def test_file_size_limit_from_settings(self):
        pipeline = make_pipeline(make_store(), Settings(reference_year=REFERENCE_YEAR, max_file_size_mb=0))
        with pytest.raises(MalformedDocumentError):
            pipeline.preview(make_workbook(), "catalog.xlsx")


class TestAuthorization:

    def test_rejected_actor(self, settings):
        store = make_seeded_store()[0]
        pipeline = make_pipeline(store, settings, authorizer=lambda actor: actor == "admin@example.com")

        with pytest.raises(AuthorizationError):
            pipeline.execute(export_store(store), "catalog.xlsx", actor="guest@example.com")
        with pytest.raises(AuthorizationError):
            pipeline.export(actor=None)
        assert store.list_imports() == []

    def test_accepted_actor(self, settings):
        store = make_seeded_store()[0]
        pipeline = make_pipeline(store, settings, authorizer=lambda actor: actor == "admin@example.com")

        outcome = pipeline.execute(export_store(store), "catalog.xlsx", actor="admin@example.com")
        assert outcome.applied


# =============================================================================
# CLI
# =============================================================================

class TestCli:

    def test_export_then_preview(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PARTSYNC_REFERENCE_YEAR", str(REFERENCE_YEAR))
        store = make_seeded_store()[0]
        output = tmp_path / "catalog.xlsx"

        assert main(["--env-file", str(tmp_path / "missing.env"), "export", "-o", str(output)], store=store) == EXIT_OK
        assert output.exists()
        assert main(["preview", str(output)], store=store) == EXIT_OK

    def test_import_exit_codes(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PARTSYNC_REFERENCE_YEAR", str(REFERENCE_YEAR))
        store, rotor, hub = make_seeded_store()
        edited = tmp_path / "edited.xlsx"
        edited.write_bytes(make_workbook([part_row(rotor, part_type="Drum"), part_row(hub)]))
        invalid = tmp_path / "invalid.xlsx"
        invalid.write_bytes(make_workbook([part_row(rotor, part_type=None)]))

        assert main(["import", str(invalid)], store=store) == EXIT_INVALID
        assert main(["import", str(edited)], store=store) == EXIT_NEEDS_CONFIRMATION
        assert main(["import", str(edited), "--confirm-warnings"], store=store) == EXIT_OK
        assert len(store.list_imports()) == 1

    def test_missing_file(self, tmp_path, capsys):
        code = main(["preview", str(tmp_path / "nope.xlsx")], store=make_store())

        assert code != EXIT_OK
        assert "File not found" in capsys.readouterr().err
