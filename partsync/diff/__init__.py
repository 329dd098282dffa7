"""Catalog diff module: workbook vs. store snapshot."""

from .catalog_diff import (
    generate_diff,
    diff_record,
    diff_sheet,
    DiffOperation,
    DiffItem,
    DiffResult,
    FieldChange,
    SheetDiff,
)

__all__ = [
    "generate_diff",
    "diff_record",
    "diff_sheet",
    "DiffOperation",
    "DiffItem",
    "DiffResult",
    "FieldChange",
    "SheetDiff",
]
