"""
Import pipeline facade.

Ties the stages together for one administrator request:

    parse -> fetch one store snapshot -> validate -> diff -> execute

The snapshot is read once and shared by validation and diff so the two
passes cannot disagree about current state. Diff runs only on a valid
document, and execute() refuses to write while errors exist or while
warnings have not been confirmed.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional
from uuid import UUID

from .config import Settings
from .diff import DiffResult, generate_diff
from .errors import AuthorizationError
from .importer.executor import Clock, ImportMeta, ImportResult, execute_import
from .parser import ParsedDocument, WorkbookParser, export_workbook
from .rollback.service import ImportSummary, RollbackResult, list_import_history, rollback_import
from .store.catalog_store import CatalogStore
from .store.snapshot import StoreSnapshot, read_store_snapshot
from .validation import ValidationEngine, ValidationResult

logger = logging.getLogger(__name__)

Authorizer = Callable[[Optional[str]], bool]


@dataclass
class ImportPreview:
    document: ParsedDocument
    snapshot: StoreSnapshot
    validation: ValidationResult
    diff: Optional[DiffResult] = None

    @property
    def valid(self) -> bool:
        return self.validation.valid


@dataclass
class ImportOutcome:
    """
    Result of execute().

    result is None when nothing was written: the document had errors, or it
    had warnings that were not confirmed.
    """
    preview: ImportPreview
    result: Optional[ImportResult] = None

    @property
    def applied(self) -> bool:
        return self.result is not None

    @property
    def needs_confirmation(self) -> bool:
        return self.preview.valid and self.preview.validation.has_warnings and not self.applied


class ImportPipeline:
    """
    Request-scoped entry point for previews, imports, rollbacks and exports.

    Args:
        store: Catalog store
        settings: Year bounds, file size limit and history limit
        authorizer: Called with the actor before any read or write; a falsy
                    answer raises AuthorizationError
        clock: Timestamp source for imports and rollbacks (defaults to UTC now)
    """

    def __init__(self, store: CatalogStore, settings: Optional[Settings] = None,
                 authorizer: Optional[Authorizer] = None, clock: Optional[Clock] = None):
        self.store = store
        self.settings = settings or Settings()
        self.authorizer = authorizer
        self.clock = clock
        self.parser = WorkbookParser()
        self.validator = ValidationEngine(
            reference_year=self.settings.reference_year,
            min_year=self.settings.min_year,
            years_ahead=self.settings.years_ahead,
        )

    def _authorize(self, actor: Optional[str]) -> None:
        if self.authorizer is not None and not self.authorizer(actor):
            logger.info(f"Actor {actor!r} is not authorized")
            raise AuthorizationError(f"{actor or 'Anonymous caller'} is not allowed to manage the catalog")

    def preview(self, data: bytes, file_name: str, actor: Optional[str] = None) -> ImportPreview:
        """Parse, validate and (when valid) diff a workbook without writing."""
        self._authorize(actor)
        document = self.parser.parse(
            data, file_name=file_name, max_file_size=self.settings.max_file_size_bytes
        )
        snapshot = read_store_snapshot(self.store)
        validation = self.validator.validate(document, snapshot)

        diff = generate_diff(document, snapshot) if validation.valid else None
        return ImportPreview(document=document, snapshot=snapshot, validation=validation, diff=diff)

    def execute(self, data: bytes, file_name: str, actor: Optional[str] = None,
                confirm_warnings: bool = False) -> ImportOutcome:
        """
        Preview and, when allowed, apply a workbook.

        Raises:
            MalformedDocumentError: If the bytes are not a catalog workbook
            ImportExecutionError: If applying the diff fails
        """
        preview = self.preview(data, file_name, actor)

        if not preview.valid:
            logger.info(f"Import of {file_name!r} blocked by {len(preview.validation.errors)} error(s)")
            return ImportOutcome(preview)

        if preview.validation.has_warnings and not confirm_warnings:
            logger.info(
                f"Import of {file_name!r} waiting for confirmation of "
                f"{len(preview.validation.warnings)} warning(s)"
            )
            return ImportOutcome(preview)

        meta = ImportMeta(actor=actor, file_name=file_name, file_size=preview.document.file_size)
        result = execute_import(preview.document, preview.diff, meta, self.store, clock=self.clock)
        return ImportOutcome(preview, result)

    def rollback(self, import_id: UUID, actor: Optional[str] = None) -> RollbackResult:
        self._authorize(actor)
        return rollback_import(self.store, import_id, actor=actor, clock=self.clock)

    def history(self, limit: Optional[int] = None, actor: Optional[str] = None) -> List[ImportSummary]:
        self._authorize(actor)
        return list_import_history(self.store, limit=limit or self.settings.history_limit)

    def export(self, actor: Optional[str] = None) -> bytes:
        """Export the current catalog as a workbook that re-imports as a no-op."""
        self._authorize(actor)
        snapshot = read_store_snapshot(self.store)
        return export_workbook(
            snapshot.parts.values(),
            snapshot.vehicle_applications.values(),
            snapshot.cross_references.values(),
        )
