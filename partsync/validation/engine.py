"""
Validation engine.

validate(document, snapshot) checks a parsed workbook against structural
and business rules and returns every problem it finds in one pass:

- Errors (E-codes) block the import.
- Warnings (W-codes) flag risky edits to existing records and require the
  administrator's confirmation, but never block.

Rules never short-circuit each other: a row with three problems yields three
errors, and a bad row does not hide problems on other rows or sheets.

The engine is a pure function of (document, snapshot). The upper year bound
is derived from reference_year, an explicit constructor argument, so the
same input always produces the same result.
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from ..compare import normalize_value, values_differ
from ..identity import IdentityKind
from ..parser import CrossReferenceRow, ParsedDocument, ParsedSheet, PartRow, VehicleApplicationRow
from ..resolution import PartIndex, ReferenceKind
from ..schema import (
    CROSS_REFERENCES_SHEET,
    HIDDEN_IDENTITY_COLUMNS,
    MAX_LENGTHS,
    MIN_YEAR,
    PARTS_SHEET,
    PROPERTY_HEADERS,
    VEHICLE_APPLICATIONS_SHEET,
    YEARS_AHEAD,
)
from ..store.snapshot import StoreSnapshot
from .types import ErrorCode, Severity, ValidationIssue, ValidationResult, WarningCode

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = {
    PARTS_SHEET: ["acr_sku", "part_type"],
    VEHICLE_APPLICATIONS_SHEET: ["acr_sku", "make", "model", "start_year", "end_year"],
    CROSS_REFERENCES_SHEET: ["acr_sku", "competitor_sku"],
}

LENGTH_CHECKED_FIELDS = {
    PARTS_SHEET: ["acr_sku", "part_type", "position_type", "abs_type", "bolt_pattern", "drive_type"],
    VEHICLE_APPLICATIONS_SHEET: ["make", "model"],
    CROSS_REFERENCES_SHEET: ["competitor_brand", "competitor_sku"],
}


class _IssueCollector:
    """Accumulates issues for one validate() call."""

    def __init__(self):
        self.result = ValidationResult()

    def error(self, code: ErrorCode, message: str, sheet: Optional[str], row: Optional[int] = None,
              column: Optional[str] = None, value: Any = None, record_id: Optional[UUID] = None,
              acr_sku: Optional[str] = None) -> None:
        self.result.errors.append(ValidationIssue(
            code=code,
            severity=Severity.ERROR,
            message=message,
            sheet=sheet,
            row=row,
            column=column,
            value=value,
            record_id=record_id,
            acr_sku=acr_sku,
        ))

    def warning(self, code: WarningCode, message: str, sheet: str, row: int, column: str,
                new_value: Any, old_value: Any, record_id: UUID, acr_sku: Optional[str]) -> None:
        self.result.warnings.append(ValidationIssue(
            code=code,
            severity=Severity.WARNING,
            message=message,
            sheet=sheet,
            row=row,
            column=column,
            value=new_value,
            expected=old_value,
            record_id=record_id,
            acr_sku=acr_sku,
        ))


class ValidationEngine:
    """
    Validates parsed catalog workbooks.

    Args:
        reference_year: Year the upper bound is computed from (max year is
                        reference_year + years_ahead)
        min_year: Earliest accepted vehicle year
        years_ahead: How far beyond reference_year a model year may be
    """

    def __init__(self, reference_year: int, min_year: int = MIN_YEAR, years_ahead: int = YEARS_AHEAD):
        self.min_year = min_year
        self.max_year = reference_year + years_ahead

    def validate(self, document: ParsedDocument, snapshot: StoreSnapshot) -> ValidationResult:
        issues = _IssueCollector()
        index = PartIndex(document, snapshot)

        for sheet in document.sheets():
            self._check_identity_columns(sheet, issues)
        self._check_not_empty(document, issues)

        self._validate_parts(document.parts, snapshot, issues)
        self._validate_vehicle_applications(document.vehicle_applications, snapshot, index, issues)
        self._validate_cross_references(document.cross_references, snapshot, index, issues)

        result = issues.result
        logger.info(
            f"Validation finished: {len(result.errors)} errors, "
            f"{len(result.warnings)} warnings (valid={result.valid})"
        )
        return result

    # ========================================================================
    # Shared rules
    # ========================================================================

    def _check_identity_columns(self, sheet: ParsedSheet, issues: _IssueCollector) -> None:
        # E1: without identities adds, updates and omissions cannot be told apart
        if sheet.has_identity_columns:
            return
        expected = HIDDEN_IDENTITY_COLUMNS[sheet.sheet_name]
        issues.error(
            ErrorCode.E1_MISSING_HIDDEN_COLUMNS,
            f"Sheet \"{sheet.sheet_name}\" is missing hidden identity column(s) "
            f"{', '.join(expected)}. Export a fresh workbook and edit that copy.",
            sheet.sheet_name,
            column=", ".join(expected),
        )

    def _check_not_empty(self, document: ParsedDocument, issues: _IssueCollector) -> None:
        # E10: an all-empty upload would delete the whole catalog
        if document.total_rows:
            return
        issues.error(
            ErrorCode.E10_REQUIRED_SHEET_MISSING,
            "All sheets are empty. File must contain data.",
            None,
        )

    def _check_required(self, row, sheet_name: str, issues: _IssueCollector) -> None:
        for prop in REQUIRED_FIELDS[sheet_name]:
            if normalize_value(getattr(row, prop)) is None:
                header = PROPERTY_HEADERS[prop]
                issues.error(
                    ErrorCode.E3_EMPTY_REQUIRED_FIELD,
                    f"{header} is required",
                    sheet_name,
                    row.row_number,
                    header,
                )

    def _check_lengths(self, row, sheet_name: str, issues: _IssueCollector) -> None:
        for prop in LENGTH_CHECKED_FIELDS[sheet_name]:
            value = getattr(row, prop)
            limit = MAX_LENGTHS[prop]
            if value is not None and len(value) > limit:
                header = PROPERTY_HEADERS[prop]
                issues.error(
                    ErrorCode.E7_STRING_EXCEEDS_MAX_LENGTH,
                    f"{header} exceeds maximum length of {limit} characters "
                    f"(got {len(value)})",
                    sheet_name,
                    row.row_number,
                    header,
                    value,
                )

    def _check_identity(self, row, sheet_name: str, known_ids, issues: _IssueCollector):
        """E4/E19 for the row's own _id. Returns the RowIdentity."""
        identity = row.identity(known_ids)
        if identity.kind is IdentityKind.MALFORMED:
            issues.error(
                ErrorCode.E4_INVALID_UUID_FORMAT,
                f"Invalid UUID format: \"{identity.raw}\"",
                sheet_name,
                row.row_number,
                "_id",
                identity.raw,
            )
        elif identity.kind is IdentityKind.UNKNOWN:
            issues.error(
                ErrorCode.E19_UUID_NOT_IN_DATABASE,
                f"Record with _id \"{identity.raw}\" does not exist in database",
                sheet_name,
                row.row_number,
                "_id",
                identity.raw,
                record_id=identity.value,
            )
        return identity

    def _check_part_reference(self, row, sheet_name: str, index: PartIndex,
                              issues: _IssueCollector) -> None:
        fk_column = row.FK_COLUMN
        fk_value = getattr(row, fk_column[1:])
        reference = index.resolve(fk_value, row.acr_sku)

        if reference.kind is ReferenceKind.MALFORMED:
            issues.error(
                ErrorCode.E4_INVALID_UUID_FORMAT,
                f"Invalid UUID format for {fk_column}: \"{reference.raw}\"",
                sheet_name,
                row.row_number,
                fk_column,
                reference.raw,
            )
        elif reference.kind is ReferenceKind.UNRESOLVED:
            if reference.via == "fk":
                issues.error(
                    ErrorCode.E5_ORPHANED_FOREIGN_KEY,
                    f"{fk_column} \"{reference.raw}\" does not reference any part "
                    f"in the Parts sheet or the database",
                    sheet_name,
                    row.row_number,
                    fk_column,
                    reference.raw,
                )
            elif reference.acr_sku is not None:
                issues.error(
                    ErrorCode.E5_ORPHANED_FOREIGN_KEY,
                    f"ACR_SKU \"{reference.acr_sku}\" does not match any part "
                    f"in the Parts sheet or the database",
                    sheet_name,
                    row.row_number,
                    "ACR_SKU",
                    reference.acr_sku,
                )
            # An empty SKU with no foreign key is already an E3
        elif reference.kind is ReferenceKind.OMITTED_PART:
            column = fk_column if reference.via == "fk" else "ACR_SKU"
            issues.error(
                ErrorCode.E18_REFERENTIAL_INTEGRITY_VIOLATION,
                f"References part \"{reference.acr_sku}\" which is not in the Parts sheet "
                f"and would be deleted by this import",
                sheet_name,
                row.row_number,
                column,
                reference.raw or reference.acr_sku,
                acr_sku=reference.acr_sku,
            )

    # ========================================================================
    # Parts
    # ========================================================================

    def _validate_parts(self, sheet: ParsedSheet, snapshot: StoreSnapshot,
                        issues: _IssueCollector) -> None:
        seen_skus = set()

        for row in sheet.rows:
            self._check_required(row, PARTS_SHEET, issues)

            # E2: one error per extra occurrence of a SKU
            if row.acr_sku:
                if row.acr_sku in seen_skus:
                    issues.error(
                        ErrorCode.E2_DUPLICATE_ACR_SKU,
                        f"Duplicate ACR_SKU \"{row.acr_sku}\" found in file",
                        PARTS_SHEET,
                        row.row_number,
                        "ACR_SKU",
                        row.acr_sku,
                        acr_sku=row.acr_sku,
                    )
                seen_skus.add(row.acr_sku)

            identity = self._check_identity(row, PARTS_SHEET, snapshot.parts, issues)
            self._check_lengths(row, PARTS_SHEET, issues)

            if identity.is_existing:
                self._part_warnings(row, snapshot.parts[identity.value], issues)

    def _part_warnings(self, row: PartRow, existing, issues: _IssueCollector) -> None:
        changes = [
            (WarningCode.W1_ACR_SKU_CHANGED, "acr_sku"),
            (WarningCode.W3_PART_TYPE_CHANGED, "part_type"),
            (WarningCode.W4_POSITION_TYPE_CHANGED, "position_type"),
        ]
        for code, prop in changes:
            old, new = getattr(existing, prop), getattr(row, prop)
            if values_differ(old, new):
                header = PROPERTY_HEADERS[prop]
                issues.warning(
                    code,
                    f"{header} changed from \"{old or ''}\" to \"{new or ''}\"",
                    PARTS_SHEET,
                    row.row_number,
                    header,
                    new,
                    old,
                    existing.id,
                    existing.acr_sku,
                )

        # W7: any shortening of the specifications text
        old_length = len(normalize_value(existing.specifications) or "")
        new_length = len(normalize_value(row.specifications) or "")
        if new_length < old_length:
            issues.warning(
                WarningCode.W7_SPECIFICATIONS_SHORTENED,
                f"Specifications shortened from {old_length} to {new_length} characters",
                PARTS_SHEET,
                row.row_number,
                "Specifications",
                row.specifications,
                existing.specifications,
                existing.id,
                existing.acr_sku,
            )

    # ========================================================================
    # Vehicle Applications
    # ========================================================================

    def _check_years(self, row: VehicleApplicationRow, issues: _IssueCollector) -> None:
        valid_years: Dict[str, int] = {}
        for prop in ("start_year", "end_year"):
            value = getattr(row, prop)
            header = PROPERTY_HEADERS[prop]
            if value is None:
                continue
            if not isinstance(value, int):
                issues.error(
                    ErrorCode.E9_INVALID_NUMBER_FORMAT,
                    f"{header} must be an integer, got: {value}",
                    VEHICLE_APPLICATIONS_SHEET,
                    row.row_number,
                    header,
                    value,
                )
                continue
            if value < self.min_year or value > self.max_year:
                issues.error(
                    ErrorCode.E8_YEAR_OUT_OF_RANGE,
                    f"{header} {value} is out of valid range ({self.min_year}-{self.max_year})",
                    VEHICLE_APPLICATIONS_SHEET,
                    row.row_number,
                    header,
                    value,
                )
            valid_years[prop] = value

        if len(valid_years) == 2 and valid_years["start_year"] > valid_years["end_year"]:
            issues.error(
                ErrorCode.E6_INVALID_YEAR_RANGE,
                f"End_Year ({row.end_year}) cannot be before Start_Year ({row.start_year})",
                VEHICLE_APPLICATIONS_SHEET,
                row.row_number,
                "End_Year",
                row.end_year,
            )

    def _validate_vehicle_applications(self, sheet: ParsedSheet, snapshot: StoreSnapshot,
                                       index: PartIndex, issues: _IssueCollector) -> None:
        for row in sheet.rows:
            identity = self._check_identity(
                row, VEHICLE_APPLICATIONS_SHEET, snapshot.vehicle_applications, issues
            )
            self._check_required(row, VEHICLE_APPLICATIONS_SHEET, issues)
            self._check_part_reference(row, VEHICLE_APPLICATIONS_SHEET, index, issues)
            self._check_years(row, issues)
            self._check_lengths(row, VEHICLE_APPLICATIONS_SHEET, issues)

            if identity.is_existing:
                existing = snapshot.vehicle_applications[identity.value]
                self._vehicle_warnings(row, existing, snapshot.sku_of_part(existing.part_id), issues)

    def _vehicle_warnings(self, row: VehicleApplicationRow, existing, sku: Optional[str],
                          issues: _IssueCollector) -> None:
        # W2: new range is a strict subset of the old one
        if isinstance(row.start_year, int) and isinstance(row.end_year, int):
            old_range = (existing.start_year, existing.end_year)
            new_range = (row.start_year, row.end_year)
            if (new_range != old_range
                    and row.start_year >= existing.start_year
                    and row.end_year <= existing.end_year):
                issues.warning(
                    WarningCode.W2_YEAR_RANGE_NARROWED,
                    f"Year range narrowed from {old_range[0]}-{old_range[1]} "
                    f"to {new_range[0]}-{new_range[1]}",
                    VEHICLE_APPLICATIONS_SHEET,
                    row.row_number,
                    "Start_Year / End_Year",
                    f"{new_range[0]}-{new_range[1]}",
                    f"{old_range[0]}-{old_range[1]}",
                    existing.id,
                    sku,
                )

        for code, prop in ((WarningCode.W8_VEHICLE_MAKE_CHANGED, "make"),
                           (WarningCode.W9_VEHICLE_MODEL_CHANGED, "model")):
            old, new = getattr(existing, prop), getattr(row, prop)
            if values_differ(old, new):
                header = PROPERTY_HEADERS[prop]
                issues.warning(
                    code,
                    f"{header} changed from \"{old or ''}\" to \"{new or ''}\"",
                    VEHICLE_APPLICATIONS_SHEET,
                    row.row_number,
                    header,
                    new,
                    old,
                    existing.id,
                    sku,
                )

    # ========================================================================
    # Cross References
    # ========================================================================

    def _validate_cross_references(self, sheet: ParsedSheet, snapshot: StoreSnapshot,
                                   index: PartIndex, issues: _IssueCollector) -> None:
        for row in sheet.rows:
            identity = self._check_identity(
                row, CROSS_REFERENCES_SHEET, snapshot.cross_references, issues
            )
            self._check_required(row, CROSS_REFERENCES_SHEET, issues)
            self._check_part_reference(row, CROSS_REFERENCES_SHEET, index, issues)
            self._check_lengths(row, CROSS_REFERENCES_SHEET, issues)

            if not identity.is_existing:
                continue

            existing = snapshot.cross_references[identity.value]
            if values_differ(existing.competitor_brand, row.competitor_brand):
                issues.warning(
                    WarningCode.W10_COMPETITOR_BRAND_CHANGED,
                    f"Competitor_Brand changed from \"{existing.competitor_brand or ''}\" "
                    f"to \"{row.competitor_brand or ''}\"",
                    CROSS_REFERENCES_SHEET,
                    row.row_number,
                    "Competitor_Brand",
                    row.competitor_brand,
                    existing.competitor_brand,
                    existing.id,
                    snapshot.sku_of_part(existing.acr_part_id),
                )


def validate(document: ParsedDocument, snapshot: StoreSnapshot, reference_year: int,
             min_year: int = MIN_YEAR, years_ahead: int = YEARS_AHEAD) -> ValidationResult:
    """Convenience wrapper around ValidationEngine.validate()."""
    engine = ValidationEngine(reference_year, min_year=min_year, years_ahead=years_ahead)
    return engine.validate(document, snapshot)
