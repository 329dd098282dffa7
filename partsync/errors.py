"""
Typed failures raised by the reconciliation pipeline.

Three families are handled differently by callers:
- Structural errors (MalformedDocumentError): the upload must be corrected.
- Execution errors (ImportExecutionError): generic failure, store untouched.
- Rollback errors: each subclass renders differently in the history UI
  (a "rollback the newer import first" prompt, a conflict list, etc).

Validation problems are never raised; they are returned as data by the
validation engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID


class PartsyncError(Exception):
    """Base class for all partsync errors."""


class MalformedDocumentError(PartsyncError):
    """The uploaded byte stream is not a usable catalog workbook."""


class AuthorizationError(PartsyncError):
    """The caller is not allowed to import or roll back."""


class StoreError(PartsyncError):
    """A store write or read failed (wraps driver errors)."""


class ImportExecutionError(PartsyncError):
    """Applying a validated diff failed; the store was left as it was."""

    def __init__(self, message: str, import_id: Optional[UUID] = None):
        super().__init__(message)
        self.import_id = import_id


class RollbackError(PartsyncError):
    """Base class for rollback failures."""


class ImportNotFoundError(RollbackError):
    def __init__(self, import_id: UUID):
        super().__init__(f"Import {import_id} not found")
        self.import_id = import_id


class ImportAlreadyRolledBackError(RollbackError):
    def __init__(self, import_id: UUID):
        super().__init__(f"Import {import_id} has already been rolled back")
        self.import_id = import_id


class SequentialRollbackError(RollbackError):
    """Raised when the requested import is not the newest active import."""

    def __init__(self, newest_import_id: UUID, requested_import_id: UUID):
        super().__init__(
            "Sequential rollback enforced. Must rollback newest import "
            f"{newest_import_id} before {requested_import_id}."
        )
        self.newest_import_id = newest_import_id
        self.requested_import_id = requested_import_id


@dataclass
class RollbackConflict:
    """
    A record that changed after the import being rolled back.

    modified_by is None when the record was deleted (the store keeps no
    tombstones, so the deleting actor is unknown).
    """
    entity: str
    record_id: UUID
    acr_sku: Optional[str]
    modified_at: Optional[datetime]
    modified_by: Optional[str]
    fields: List[str] = field(default_factory=list)
    deleted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "record_id": str(self.record_id),
            "acr_sku": self.acr_sku,
            "modified_at": self.modified_at.isoformat() if self.modified_at else None,
            "modified_by": self.modified_by,
            "fields": list(self.fields),
            "deleted": self.deleted,
        }


class RollbackConflictError(RollbackError):
    """Records touched by the import were modified afterwards.

    The rollback is rejected outright: restoring the snapshot would silently
    overwrite those edits.
    """

    def __init__(self, import_id: UUID, conflicts: List[RollbackConflict]):
        self.import_id = import_id
        self.conflicts = conflicts
        self.conflict_count = len(conflicts)
        super().__init__(
            f"Cannot rollback: {self.conflict_count} record(s) were modified after "
            f"import {import_id}. Rollback would cause data loss."
        )

    @property
    def conflicting_skus(self) -> List[str]:
        skus = []
        for conflict in self.conflicts:
            if conflict.acr_sku and conflict.acr_sku not in skus:
                skus.append(conflict.acr_sku)
        return skus


class RollbackExecutionError(RollbackError):
    """Restoring the snapshot failed; the store was left as it was."""

    def __init__(self, message: str, import_id: Optional[UUID] = None):
        super().__init__(message)
        self.import_id = import_id
