"""
Workbook parser and exporter.

parse() turns a catalog workbook byte stream into typed row collections,
one per sheet, with cell values coerced to the scalar types the rest of the
pipeline expects. export_workbook() writes the store contents back out in
the same layout, hidden identity columns included, so an untouched export
re-imports as a no-op.

Parsing is a pure transform: it never touches the store. Row identities are
kept as raw tokens here and classified against a store snapshot later (see
identity.classify_identity).
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Container, Dict, Iterable, List, Optional, Union
from uuid import UUID

from .adapters.excel_adapter import ExcelAdapter, RawSheet
from .errors import MalformedDocumentError
from .identity import RowIdentity, classify_identity
from .records import CrossReferenceRecord, PartRecord, VehicleApplicationRecord
from .schema import (
    CROSS_REFERENCES_COLUMNS,
    CROSS_REFERENCES_SHEET,
    HIDDEN_IDENTITY_COLUMNS,
    MAX_FILE_SIZE_BYTES,
    PARTS_COLUMNS,
    PARTS_SHEET,
    REQUIRED_SHEETS,
    VEHICLE_APPLICATIONS_COLUMNS,
    VEHICLE_APPLICATIONS_SHEET,
    YEAR_FIELDS,
    header_to_property,
)

logger = logging.getLogger(__name__)

YearValue = Union[int, str, None]


# ============================================================================
# Parsed rows
# ============================================================================

@dataclass
class _ParsedRow:
    row_number: int
    id: Optional[str]

    def identity(self, known_ids: Container[UUID]) -> RowIdentity:
        return classify_identity(self.id, known_ids)


@dataclass
class PartRow(_ParsedRow):
    acr_sku: Optional[str] = None
    part_type: Optional[str] = None
    position_type: Optional[str] = None
    abs_type: Optional[str] = None
    bolt_pattern: Optional[str] = None
    drive_type: Optional[str] = None
    specifications: Optional[str] = None


@dataclass
class VehicleApplicationRow(_ParsedRow):
    part_id: Optional[str] = None
    acr_sku: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    start_year: YearValue = None
    end_year: YearValue = None

    # Property name of the hidden foreign-key column on this sheet
    FK_COLUMN = "_part_id"


@dataclass
class CrossReferenceRow(_ParsedRow):
    acr_part_id: Optional[str] = None
    acr_sku: Optional[str] = None
    competitor_brand: Optional[str] = None
    competitor_sku: Optional[str] = None

    FK_COLUMN = "_acr_part_id"


@dataclass
class ParsedSheet:
    sheet_name: str
    rows: list
    has_identity_columns: bool
    ignored_columns: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass
class ParsedDocument:
    parts: ParsedSheet
    vehicle_applications: ParsedSheet
    cross_references: ParsedSheet
    file_name: Optional[str] = None
    file_size: int = 0

    def sheets(self) -> List[ParsedSheet]:
        return [self.parts, self.vehicle_applications, self.cross_references]

    @property
    def total_rows(self) -> int:
        return sum(sheet.row_count for sheet in self.sheets())


# ============================================================================
# Cell coercion
# ============================================================================

def coerce_text(value: Any) -> Optional[str]:
    """Trimmed string, or None for an empty cell.

    Numeric cells in text columns come back from openpyxl as int/float; an
    integral float is rendered without its ".0" so "123" survives a re-save.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        text = str(value).upper()
    elif isinstance(value, float) and value.is_integer():
        text = str(int(value))
    elif isinstance(value, (datetime, date, time)):
        text = value.isoformat()
    else:
        text = str(value)
    text = text.strip()
    return text or None


def coerce_year(value: Any) -> YearValue:
    """Integer year, or the raw trimmed text when the cell is not a whole number."""
    if value is None or isinstance(value, bool):
        return coerce_text(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else coerce_text(value)

    text = coerce_text(value)
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    return int(number) if number.is_integer() else text


def _is_empty_row(cells: Dict[str, Any]) -> bool:
    return all(coerce_text(v) is None for v in cells.values())


# ============================================================================
# Parser
# ============================================================================

class WorkbookParser:
    """Parser for catalog workbooks (Parts / Vehicle Applications / Cross References)."""

    ROW_TYPES = {
        PARTS_SHEET: PartRow,
        VEHICLE_APPLICATIONS_SHEET: VehicleApplicationRow,
        CROSS_REFERENCES_SHEET: CrossReferenceRow,
    }

    def __init__(self, adapter: Optional[ExcelAdapter] = None):
        self.adapter = adapter or ExcelAdapter()

    def parse(
        self,
        data: bytes,
        file_name: Optional[str] = None,
        max_file_size: Optional[int] = MAX_FILE_SIZE_BYTES,
    ) -> ParsedDocument:
        """Parse a workbook byte stream.

        Args:
            data: Raw workbook bytes
            file_name: Originating file name (kept verbatim for the audit record)
            max_file_size: Reject inputs larger than this many bytes (None disables)

        Returns:
            ParsedDocument with one ParsedSheet per entity sheet

        Raises:
            MalformedDocumentError: If the bytes are not a catalog workbook
        """
        if file_name and not self.adapter.can_handle(file_name):
            raise MalformedDocumentError(
                f"Unsupported file type: {file_name!r}. Upload an .xlsx workbook exported from the catalog."
            )

        size = len(data or b"")
        if max_file_size is not None and size > max_file_size:
            raise MalformedDocumentError(
                f"File too large: {size} bytes exceeds limit of {max_file_size} bytes"
            )

        raw_sheets = self.adapter.read(data)

        missing = [name for name in REQUIRED_SHEETS if name not in raw_sheets]
        if missing:
            raise MalformedDocumentError(
                f"Missing required sheet(s): {', '.join(missing)}. "
                f"Found: {', '.join(raw_sheets) or 'none'}"
            )

        document = ParsedDocument(
            parts=self._parse_sheet(raw_sheets[PARTS_SHEET]),
            vehicle_applications=self._parse_sheet(raw_sheets[VEHICLE_APPLICATIONS_SHEET]),
            cross_references=self._parse_sheet(raw_sheets[CROSS_REFERENCES_SHEET]),
            file_name=file_name,
            file_size=size,
        )

        logger.info(
            f"Parsed workbook {file_name!r}: {document.parts.row_count} parts, "
            f"{document.vehicle_applications.row_count} vehicle applications, "
            f"{document.cross_references.row_count} cross references"
        )
        return document

    def _parse_sheet(self, raw: RawSheet) -> ParsedSheet:
        row_type = self.ROW_TYPES[raw.name]
        row_fields = {f for f in row_type.__dataclass_fields__ if f != "row_number"}

        # header -> property, for the columns this sheet understands
        column_map = {}
        ignored = []
        for header in raw.headers:
            prop = header_to_property(header)
            if prop == "_id":
                column_map[header] = "id"
            elif prop in ("_part_id", "_acr_part_id") and prop[1:] in row_fields:
                column_map[header] = prop[1:]
            elif prop in row_fields:
                column_map[header] = prop
            else:
                ignored.append(header)

        present = {header_to_property(h) for h in raw.headers}
        has_identity_columns = all(
            col in present for col in HIDDEN_IDENTITY_COLUMNS[raw.name]
        )

        rows = []
        for row_number, cells in raw.rows:
            if _is_empty_row(cells):
                continue
            values = {}
            for header, value in cells.items():
                prop = column_map.get(header)
                if prop is None:
                    continue
                values[prop] = coerce_year(value) if prop in YEAR_FIELDS else coerce_text(value)
            values.setdefault("id", None)
            rows.append(row_type(row_number=row_number, **values))

        if ignored:
            logger.debug(f"Sheet {raw.name!r}: ignoring unknown columns {ignored}")
        if not has_identity_columns:
            logger.debug(f"Sheet {raw.name!r}: hidden identity columns absent")

        return ParsedSheet(
            sheet_name=raw.name,
            rows=rows,
            has_identity_columns=has_identity_columns,
            ignored_columns=ignored,
        )


def parse_workbook(data: bytes, file_name: Optional[str] = None, **kwargs) -> ParsedDocument:
    """Convenience wrapper around WorkbookParser().parse()."""
    return WorkbookParser().parse(data, file_name=file_name, **kwargs)


# ============================================================================
# Export
# ============================================================================

def _sort_text(value: Optional[str]) -> str:
    return value or ""


def export_workbook(
    parts: Iterable[PartRecord],
    vehicle_applications: Iterable[VehicleApplicationRecord],
    cross_references: Iterable[CrossReferenceRecord],
    adapter: Optional[ExcelAdapter] = None,
) -> bytes:
    """Write the catalog to a workbook that re-imports as a no-op.

    Children carry their owning part's SKU as a denormalized column so the
    administrator can read the sheet; the hidden _part_id/_acr_part_id column
    is what the importer actually matches on.
    """
    adapter = adapter or ExcelAdapter()
    parts = sorted(parts, key=lambda p: _sort_text(p.acr_sku))
    sku_by_id = {p.id: p.acr_sku for p in parts}

    part_rows = [
        [
            str(p.id),
            p.acr_sku,
            p.part_type,
            p.position_type,
            p.abs_type,
            p.bolt_pattern,
            p.drive_type,
            p.specifications,
        ]
        for p in parts
    ]

    va_rows = [
        [
            str(va.id),
            str(va.part_id),
            sku_by_id.get(va.part_id),
            va.make,
            va.model,
            va.start_year,
            va.end_year,
        ]
        for va in sorted(
            vehicle_applications,
            key=lambda va: (
                _sort_text(sku_by_id.get(va.part_id)),
                _sort_text(va.make),
                _sort_text(va.model),
                va.start_year or 0,
            ),
        )
    ]

    cr_rows = [
        [
            str(cr.id),
            str(cr.acr_part_id),
            sku_by_id.get(cr.acr_part_id),
            cr.competitor_brand,
            cr.competitor_sku,
        ]
        for cr in sorted(
            cross_references,
            key=lambda cr: (
                _sort_text(sku_by_id.get(cr.acr_part_id)),
                _sort_text(cr.competitor_brand),
                _sort_text(cr.competitor_sku),
            ),
        )
    ]

    logger.info(
        f"Exporting {len(part_rows)} parts, {len(va_rows)} vehicle applications, "
        f"{len(cr_rows)} cross references"
    )

    return adapter.write([
        (PARTS_SHEET, PARTS_COLUMNS, part_rows),
        (VEHICLE_APPLICATIONS_SHEET, VEHICLE_APPLICATIONS_COLUMNS, va_rows),
        (CROSS_REFERENCES_SHEET, CROSS_REFERENCES_COLUMNS, cr_rows),
    ])
