"""
Unit tests for the workbook parser and exporter.

These tests verify that:
1. Cells are coerced to the scalar types validation expects
2. Structurally broken inputs raise MalformedDocumentError
3. Hidden identity columns are detected by presence
4. An export parses back into the same records
"""

import io
import zipfile

import pytest

from partsync.errors import MalformedDocumentError
from partsync.parser import (
    CrossReferenceRow,
    PartRow,
    VehicleApplicationRow,
    WorkbookParser,
    coerce_text,
    coerce_year,
)
from partsync.adapters.excel_adapter import ExcelAdapter
from partsync.schema import PARTS_COLUMNS, PARTS_SHEET, VEHICLE_APPLICATIONS_COLUMNS

from builders import export_store, make_seeded_store, make_store, make_workbook, parse


# =============================================================================
# CELL COERCION
# =============================================================================

class TestCoercion:

    def test_text_is_trimmed(self):
        assert coerce_text("  ACR-001  ") == "ACR-001"

    def test_blank_text_is_none(self):
        assert coerce_text("   ") is None
        assert coerce_text(None) is None

    def test_integral_float_renders_without_fraction(self):
        assert coerce_text(123.0) == "123"
        assert coerce_text(12.5) == "12.5"

    def test_year_from_float(self):
        assert coerce_year(2019.0) == 2019

    def test_year_from_digit_string(self):
        assert coerce_year(" 2019 ") == 2019
        assert coerce_year("2019.0") == 2019

    def test_uncoercible_year_kept_as_text(self):
        assert coerce_year("twenty") == "twenty"
        assert coerce_year(2019.5) == "2019.5"

    def test_empty_year_is_none(self):
        assert coerce_year("") is None
        assert coerce_year(None) is None


# =============================================================================
# STRUCTURAL ERRORS
# =============================================================================

class TestMalformedDocuments:

    def test_empty_bytes(self):
        with pytest.raises(MalformedDocumentError):
            WorkbookParser().parse(b"")

    def test_not_a_zip(self):
        with pytest.raises(MalformedDocumentError):
            WorkbookParser().parse(b"ACR_SKU,Part_Type\nACR-001,Rotor\n")

    def test_truncated_workbook(self):
        data = make_workbook()
        with pytest.raises(MalformedDocumentError):
            WorkbookParser().parse(data[: len(data) // 2])

    def test_corrupted_worksheet_xml(self):
        original = zipfile.ZipFile(io.BytesIO(make_workbook([["", "ACR-1", "Rotor", None, None, None, None, None]])))
        damaged = io.BytesIO()
        with zipfile.ZipFile(damaged, "w") as out:
            for info in original.infolist():
                content = original.read(info.filename)
                if info.filename == "xl/worksheets/sheet1.xml":
                    content = content[: len(content) // 2]
                out.writestr(info, content)

        with pytest.raises(MalformedDocumentError):
            WorkbookParser().parse(damaged.getvalue())

    def test_missing_sheet(self):
        data = ExcelAdapter().write([(PARTS_SHEET, PARTS_COLUMNS, [])])
        with pytest.raises(MalformedDocumentError) as exc_info:
            WorkbookParser().parse(data)
        assert "Vehicle Applications" in str(exc_info.value)
        assert "Cross References" in str(exc_info.value)

    def test_file_too_large(self):
        data = make_workbook()
        with pytest.raises(MalformedDocumentError):
            WorkbookParser().parse(data, max_file_size=len(data) - 1)

    def test_unsupported_extension(self):
        with pytest.raises(MalformedDocumentError):
            WorkbookParser().parse(make_workbook(), file_name="catalog.csv")

    def test_size_limit_can_be_disabled(self):
        data = make_workbook()
        document = WorkbookParser().parse(data, max_file_size=None)
        assert document.total_rows == 0


# =============================================================================
# SHEET PARSING
# =============================================================================

class TestSheetParsing:

    def test_rows_are_typed_per_sheet(self):
        data = make_workbook(
            parts_rows=[["", "ACR-100", "Brake Rotor", None, None, None, None, None]],
            vehicle_application_rows=[["", "", "ACR-100", "Ford", "F-150", 2015.0, "2018"]],
            cross_reference_rows=[["", "", "ACR-100", "TMK", "TM-1"]],
        )
        document = parse(data)

        part = document.parts.rows[0]
        va = document.vehicle_applications.rows[0]
        cr = document.cross_references.rows[0]
        assert isinstance(part, PartRow)
        assert isinstance(va, VehicleApplicationRow)
        assert isinstance(cr, CrossReferenceRow)
        assert part.id is None
        assert part.acr_sku == "ACR-100"
        assert va.start_year == 2015
        assert va.end_year == 2018
        assert va.part_id is None
        assert cr.competitor_sku == "TM-1"

    def test_row_numbers_are_sheet_rows(self):
        data = make_workbook(parts_rows=[
            ["", "ACR-1", "Rotor", None, None, None, None, None],
            [None] * 8,
            ["", "ACR-2", "Hub", None, None, None, None, None],
        ])
        document = parse(data)

        assert [r.row_number for r in document.parts.rows] == [2, 4]

    def test_identity_columns_detected(self):
        document = parse(make_workbook())
        assert all(sheet.has_identity_columns for sheet in document.sheets())

    def test_missing_identity_columns(self):
        visible_only = [c for c in VEHICLE_APPLICATIONS_COLUMNS if not c[0].startswith("_")]
        data = make_workbook(
            vehicle_application_rows=[["ACR-1", "Ford", "F-150", 2015, 2018]],
            vehicle_application_columns=visible_only,
        )
        document = parse(data)

        assert document.parts.has_identity_columns
        assert not document.vehicle_applications.has_identity_columns
        assert document.vehicle_applications.rows[0].make == "Ford"

    def test_unknown_columns_ignored(self):
        columns = PARTS_COLUMNS + [("Notes", 20, False)]
        data = make_workbook(
            parts_rows=[["", "ACR-1", "Rotor", None, None, None, None, None, "check stock"]],
            parts_columns=columns,
        )
        document = parse(data)

        assert document.parts.ignored_columns == ["Notes"]
        assert document.parts.rows[0].acr_sku == "ACR-1"

    def test_file_metadata_recorded(self):
        data = make_workbook()
        document = parse(data, file_name="catalog (1).xlsx")

        assert document.file_name == "catalog (1).xlsx"
        assert document.file_size == len(data)


# =============================================================================
# EXPORT
# =============================================================================

class TestExport:

    def test_export_parses_back(self):
        store, rotor, hub = make_seeded_store()
        document = parse(export_store(store))

        assert [r.acr_sku for r in document.parts.rows] == ["ACR-001", "ACR-002"]
        assert document.parts.rows[0].id == str(rotor.id)
        assert document.parts.rows[0].specifications == "Vented rotor, 300mm diameter"
        assert document.vehicle_applications.rows[1].part_id == str(hub.id)
        assert document.vehicle_applications.rows[1].acr_sku == "ACR-002"
        assert document.cross_references.rows[0].acr_part_id == str(rotor.id)

    def test_export_of_empty_store(self):
        document = parse(export_store(make_store()))

        assert document.total_rows == 0
        assert all(sheet.has_identity_columns for sheet in document.sheets())
