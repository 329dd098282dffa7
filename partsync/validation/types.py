"""
Validation vocabulary: stable error and warning codes, issues and results.

Codes are identifiers, not prose, so callers and tests can branch on them.
Errors block an import; warnings require confirmation but never block.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID


class Severity(Enum):
    ERROR = "ERROR"      # Blocks import
    WARNING = "WARNING"  # Allows import with user confirmation


class ErrorCode(Enum):
    E1_MISSING_HIDDEN_COLUMNS = "E1"
    E2_DUPLICATE_ACR_SKU = "E2"
    E3_EMPTY_REQUIRED_FIELD = "E3"
    E4_INVALID_UUID_FORMAT = "E4"
    E5_ORPHANED_FOREIGN_KEY = "E5"
    E6_INVALID_YEAR_RANGE = "E6"
    E7_STRING_EXCEEDS_MAX_LENGTH = "E7"
    E8_YEAR_OUT_OF_RANGE = "E8"
    E9_INVALID_NUMBER_FORMAT = "E9"
    E10_REQUIRED_SHEET_MISSING = "E10"
    E18_REFERENTIAL_INTEGRITY_VIOLATION = "E18"
    E19_UUID_NOT_IN_DATABASE = "E19"


class WarningCode(Enum):
    W1_ACR_SKU_CHANGED = "W1"
    W2_YEAR_RANGE_NARROWED = "W2"
    W3_PART_TYPE_CHANGED = "W3"
    W4_POSITION_TYPE_CHANGED = "W4"
    # W5 and W6 are reserved; their triggers are pending product clarification
    # and the engine never emits them.
    W5_RESERVED = "W5"
    W6_RESERVED = "W6"
    W7_SPECIFICATIONS_SHORTENED = "W7"
    W8_VEHICLE_MAKE_CHANGED = "W8"
    W9_VEHICLE_MODEL_CHANGED = "W9"
    W10_COMPETITOR_BRAND_CHANGED = "W10"


RESERVED_WARNING_CODES = {WarningCode.W5_RESERVED, WarningCode.W6_RESERVED}


@dataclass
class ValidationIssue:
    """
    One error or warning.

    row is the 1-based sheet row (header is row 1). For warnings, value is
    the new value and expected the value currently in the store.
    """
    code: Any  # ErrorCode | WarningCode
    severity: Severity
    message: str
    sheet: Optional[str] = None
    row: Optional[int] = None
    column: Optional[str] = None
    value: Any = None
    expected: Any = None
    record_id: Optional[UUID] = None
    acr_sku: Optional[str] = None

    @property
    def code_id(self) -> str:
        """Short stable code ("E2", "W7", ...)."""
        return self.code.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "severity": self.severity.value,
            "message": self.message,
            "sheet": self.sheet,
            "row": self.row,
            "column": self.column,
            "value": self.value,
            "expected": self.expected,
            "record_id": str(self.record_id) if self.record_id else None,
            "acr_sku": self.acr_sku,
        }


@dataclass
class ValidationResult:
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def codes(self) -> List[str]:
        return [issue.code_id for issue in self.errors + self.warnings]

    def errors_with(self, code: ErrorCode) -> List[ValidationIssue]:
        return [e for e in self.errors if e.code is code]

    def warnings_with(self, code: WarningCode) -> List[ValidationIssue]:
        return [w for w in self.warnings if w.code is code]

    @property
    def summary(self) -> Dict[str, Any]:
        errors_by_sheet: Dict[str, int] = {}
        warnings_by_sheet: Dict[str, int] = {}
        for issue in self.errors:
            errors_by_sheet[issue.sheet] = errors_by_sheet.get(issue.sheet, 0) + 1
        for issue in self.warnings:
            warnings_by_sheet[issue.sheet] = warnings_by_sheet.get(issue.sheet, 0) + 1
        return {
            "total_errors": len(self.errors),
            "total_warnings": len(self.warnings),
            "errors_by_sheet": errors_by_sheet,
            "warnings_by_sheet": warnings_by_sheet,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "summary": self.summary,
        }
