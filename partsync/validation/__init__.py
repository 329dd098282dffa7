"""Validation of parsed workbooks against catalog rules."""

from .engine import ValidationEngine, validate
from .types import (
    ErrorCode,
    RESERVED_WARNING_CODES,
    Severity,
    ValidationIssue,
    ValidationResult,
    WarningCode,
)

__all__ = [
    "ValidationEngine",
    "validate",
    "ErrorCode",
    "WarningCode",
    "Severity",
    "ValidationIssue",
    "ValidationResult",
    "RESERVED_WARNING_CODES",
]
