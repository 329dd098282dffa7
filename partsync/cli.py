"""
partsync command-line entry point.

    partsync export   --output catalog.xlsx
    partsync preview  catalog.xlsx
    partsync import   catalog.xlsx --actor admin@example.com [--confirm-warnings]
    partsync rollback <import-id> --actor admin@example.com
    partsync history  [--limit 10]

Connection settings come from the environment or a .env file
(SUPABASE_DB_URL, PARTSYNC_*).
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional
from uuid import UUID

from .config import Settings, load_settings
from .errors import (
    MalformedDocumentError,
    PartsyncError,
    RollbackConflictError,
    SequentialRollbackError,
)
from .logging_config import setup_logging
from .pipeline import ImportPipeline, ImportPreview
from .store.catalog_store import CatalogStore
from .store.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_NEEDS_CONFIRMATION = 3


def _create_store(settings: Settings) -> CatalogStore:
    return SupabaseClient(db_url=settings.db_url)


def _print_preview(preview: ImportPreview) -> None:
    document = preview.document
    print(f"File: {document.file_name} ({document.file_size} bytes)")
    for sheet in document.sheets():
        print(f"  {sheet.sheet_name}: {sheet.row_count} rows")

    validation = preview.validation
    print(f"\nValidation: {'VALID' if validation.valid else 'INVALID'} "
          f"({len(validation.errors)} errors, {len(validation.warnings)} warnings)")
    for issue in validation.errors:
        location = f"{issue.sheet} row {issue.row}" if issue.row else issue.sheet
        print(f"  [{issue.code_id}] {location}: {issue.message}")
    for issue in validation.warnings:
        print(f"  [{issue.code_id}] {issue.sheet} row {issue.row}: {issue.message}")

    if preview.diff is not None:
        print("\nChanges:")
        for sheet in preview.diff.sheets():
            s = sheet.summary
            print(f"  {sheet.entity}: +{s['adds']} ~{s['updates']} -{s['deletes']} "
                  f"({s['unchanged']} unchanged)")


def _read_workbook(path: str) -> bytes:
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return file_path.read_bytes()


def cmd_export(pipeline: ImportPipeline, args) -> int:
    data = pipeline.export(actor=args.actor)
    Path(args.output).write_bytes(data)
    print(f"Exported catalog to {args.output} ({len(data)} bytes)")
    return EXIT_OK


def cmd_preview(pipeline: ImportPipeline, args) -> int:
    data = _read_workbook(args.file)
    preview = pipeline.preview(data, Path(args.file).name, actor=args.actor)
    if args.json:
        payload = {
            "validation": preview.validation.to_dict(),
            "diff": preview.diff.summary if preview.diff else None,
        }
        print(json.dumps(payload, indent=2, default=str))
    else:
        _print_preview(preview)
    return EXIT_OK if preview.valid else EXIT_INVALID


def cmd_import(pipeline: ImportPipeline, args) -> int:
    data = _read_workbook(args.file)
    outcome = pipeline.execute(
        data, Path(args.file).name, actor=args.actor, confirm_warnings=args.confirm_warnings
    )
    _print_preview(outcome.preview)

    if not outcome.preview.valid:
        print("\nImport blocked: fix the errors above and upload again.")
        return EXIT_INVALID
    if outcome.needs_confirmation:
        print("\nImport not applied: re-run with --confirm-warnings to accept the warnings above.")
        return EXIT_NEEDS_CONFIRMATION

    result = outcome.result
    print(f"\nImport {result.import_id} applied in {result.elapsed_ms:.0f} ms: {result.summary}")
    return EXIT_OK


def cmd_rollback(pipeline: ImportPipeline, args) -> int:
    try:
        result = pipeline.rollback(UUID(args.import_id), actor=args.actor)
    except SequentialRollbackError as e:
        print(f"Rollback refused: roll back import {e.newest_import_id} first.")
        return EXIT_FAILED
    except RollbackConflictError as e:
        print(f"Rollback refused: {e.conflict_count} record(s) changed since the import:")
        for conflict in e.conflicts:
            if conflict.deleted:
                print(f"  {conflict.entity} {conflict.record_id} ({conflict.acr_sku}): deleted")
            else:
                fields = f" [{', '.join(conflict.fields)}]" if conflict.fields else ""
                print(f"  {conflict.entity} {conflict.record_id} ({conflict.acr_sku}): "
                      f"modified by {conflict.modified_by} at {conflict.modified_at}{fields}")
        return EXIT_FAILED

    print(f"Rolled back import {result.import_id}: restored {result.restored_counts}")
    return EXIT_OK


def cmd_history(pipeline: ImportPipeline, args) -> int:
    history = pipeline.history(limit=args.limit, actor=args.actor)
    if args.json:
        print(json.dumps([item.to_dict() for item in history], indent=2))
        return EXIT_OK

    if not history:
        print("No imports yet.")
    for item in history:
        status = " (rolled back)" if item.rolled_back else ""
        print(f"{item.id}  {item.created_at:%Y-%m-%d %H:%M}  {item.imported_by or '-'}  "
              f"{item.file_name}  rows={item.rows_imported}  {item.summary}{status}")
    return EXIT_OK


COMMANDS = {
    "export": cmd_export,
    "preview": cmd_preview,
    "import": cmd_import,
    "rollback": cmd_rollback,
    "history": cmd_history,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="partsync",
        description="Spreadsheet round-trip import and rollback for the parts catalog",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", type=str, help="Write logs to file")
    parser.add_argument("--env-file", type=str, help="Load settings from this .env file")
    parser.add_argument("--actor", type=str, help="Who is performing the action")

    subparsers = parser.add_subparsers(dest="command", required=True)

    parser_export = subparsers.add_parser("export", help="Export the catalog to a workbook")
    parser_export.add_argument("--output", "-o", default="catalog.xlsx", help="Output path")

    parser_preview = subparsers.add_parser("preview", help="Validate a workbook and show changes")
    parser_preview.add_argument("file", help="Workbook to check")
    parser_preview.add_argument("--json", action="store_true", help="Print JSON")

    parser_import = subparsers.add_parser("import", help="Import a workbook")
    parser_import.add_argument("file", help="Workbook to import")
    parser_import.add_argument(
        "--confirm-warnings", action="store_true", help="Apply even when warnings exist"
    )

    parser_rollback = subparsers.add_parser("rollback", help="Undo the most recent import")
    parser_rollback.add_argument("import_id", help="Import id to roll back")

    parser_history = subparsers.add_parser("history", help="List past imports")
    parser_history.add_argument("--limit", type=int, help="Number of imports to show")
    parser_history.add_argument("--json", action="store_true", help="Print JSON")

    return parser


def main(argv: Optional[list] = None, store: Optional[CatalogStore] = None) -> int:
    """Main entry point for the partsync CLI."""
    args = build_parser().parse_args(argv)
    settings = load_settings(args.env_file)
    setup_logging("DEBUG" if args.verbose else settings.log_level, args.log_file)

    own_store = store is None
    try:
        if own_store:
            store = _create_store(settings)
        pipeline = ImportPipeline(store, settings)
        return COMMANDS[args.command](pipeline, args)
    except MalformedDocumentError as e:
        print(f"Invalid workbook: {e}", file=sys.stderr)
        return EXIT_INVALID
    except (PartsyncError, FileNotFoundError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        if own_store and store is not None:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
