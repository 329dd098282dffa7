"""Import rollback and history listing."""

from .service import (
    ImportSummary,
    RollbackResult,
    detect_conflicts,
    find_latest_active_import,
    list_import_history,
    rollback_import,
)

__all__ = [
    "ImportSummary",
    "RollbackResult",
    "detect_conflicts",
    "find_latest_active_import",
    "list_import_history",
    "rollback_import",
]
