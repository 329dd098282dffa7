from .parser import WorkbookParser, ParsedDocument, parse_workbook, export_workbook
from .validation import ValidationEngine, ValidationResult, ErrorCode, WarningCode
from .diff import generate_diff, DiffResult
from .importer import ImportMeta, ImportResult, execute_import
from .rollback import RollbackResult, ImportSummary, rollback_import, list_import_history
from .pipeline import ImportPipeline, ImportPreview, ImportOutcome
from .store import CatalogStore, InMemoryCatalogStore, SupabaseClient, StoreSnapshot, fetch_store_snapshot
from .config import Settings, load_settings

__all__ = [
    "WorkbookParser", "ParsedDocument", "parse_workbook", "export_workbook",
    "ValidationEngine", "ValidationResult", "ErrorCode", "WarningCode",
    "generate_diff", "DiffResult",
    "ImportMeta", "ImportResult", "execute_import",
    "RollbackResult", "ImportSummary", "rollback_import", "list_import_history",
    "ImportPipeline", "ImportPreview", "ImportOutcome",
    "CatalogStore", "InMemoryCatalogStore", "SupabaseClient", "StoreSnapshot", "fetch_store_snapshot",
    "Settings", "load_settings",
]
