"""
Rollback service and import history.

An import can be undone only while it is the newest import that has not
already been rolled back, and only if nothing it left behind has changed
since. Rollback restores the three catalog tables to the snapshot captured
by the import (delete everything, then reinsert the captured rows in
dependency order) and appends a rollback record. The import record itself
is never modified or deleted, so history stays inspectable.

Preconditions are checked in this order:
1. The import exists                      (ImportNotFoundError)
2. It has not been rolled back already    (ImportAlreadyRolledBackError)
3. It is the newest active import         (SequentialRollbackError)
4. No conflicting modifications since     (RollbackConflictError)
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID

from ..compare import values_differ
from ..diff.catalog_diff import COMPARED_FIELDS
from ..errors import (
    ImportAlreadyRolledBackError,
    ImportNotFoundError,
    RollbackConflict,
    RollbackConflictError,
    RollbackExecutionError,
    SequentialRollbackError,
)
from ..importer.executor import Clock, utc_now
from ..records import ImportRecord, RollbackRecord, TableSnapshot, owning_part_id
from ..schema import ENTITY_KEYS, PARTS
from ..store.catalog_store import CatalogStore
from ..store.snapshot import StoreSnapshot, fetch_store_snapshot

logger = logging.getLogger(__name__)


@dataclass
class RollbackResult:
    import_id: UUID
    restored_counts: Dict[str, int]
    rolled_back_at: datetime
    elapsed_ms: float = 0.0


@dataclass
class ImportSummary:
    """One row of the import history list."""
    id: UUID
    created_at: datetime
    imported_by: Optional[str]
    file_name: str
    file_size_bytes: int
    rows_imported: int
    summary: Dict[str, int] = field(default_factory=dict)
    rolled_back: bool = False
    rolled_back_at: Optional[datetime] = None
    rolled_back_by: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "id": str(self.id),
            "created_at": self.created_at.isoformat(),
            "imported_by": self.imported_by,
            "file_name": self.file_name,
            "file_size_bytes": self.file_size_bytes,
            "rows_imported": self.rows_imported,
            "summary": dict(self.summary),
            "rolled_back": self.rolled_back,
            "rolled_back_at": self.rolled_back_at.isoformat() if self.rolled_back_at else None,
            "rolled_back_by": self.rolled_back_by,
        }


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# History
# ============================================================================

def list_import_history(store: CatalogStore, limit: Optional[int] = None) -> List[ImportSummary]:
    """Return past imports newest first, flagged when rolled back."""
    rollbacks = {r.import_id: r for r in store.list_rollbacks()}
    history = []
    for record in store.list_imports(limit=limit):
        rollback = rollbacks.get(record.id)
        history.append(ImportSummary(
            id=record.id,
            created_at=record.created_at,
            imported_by=record.imported_by,
            file_name=record.file_name,
            file_size_bytes=record.file_size_bytes,
            rows_imported=record.rows_imported,
            summary=dict(record.summary),
            rolled_back=rollback is not None,
            rolled_back_at=rollback.rolled_back_at if rollback else None,
            rolled_back_by=rollback.rolled_back_by if rollback else None,
        ))
    return history


def find_latest_active_import(store: CatalogStore) -> Optional[ImportRecord]:
    rolled_back = {r.import_id for r in store.list_rollbacks()}
    for record in store.list_imports():
        if record.id not in rolled_back:
            return record
    return None


# ============================================================================
# Conflict detection
# ============================================================================

def _owning_sku(entity: str, record, current: StoreSnapshot, captured: Dict[UUID, str]) -> Optional[str]:
    if entity == PARTS:
        return record.acr_sku
    part_id = owning_part_id(entity, record)
    return current.sku_of_part(part_id) or captured.get(part_id)


def detect_conflicts(record: ImportRecord, current: StoreSnapshot) -> List[RollbackConflict]:
    """
    Find records that changed after the import.

    A conflict is any current row modified later than the import timestamp,
    and any row the import left in place (snapshot rows it did not delete
    plus rows it added) that no longer exists.
    """
    imported_at = _as_utc(record.created_at)
    snapshot: TableSnapshot = record.snapshot
    captured_skus = {p.id: p.acr_sku for p in snapshot.parts}
    conflicts = []

    for entity in ENTITY_KEYS:
        before = {r.id: r for r in snapshot.table(entity)}
        touched = record.affected_ids.get(entity, {})
        added = set(touched.get("added", []))
        deleted = set(touched.get("deleted", []))
        affected = added | set(touched.get("updated", [])) | deleted
        rows = current.table(entity)

        for row in rows.values():
            modified_at = _as_utc(row.updated_at)
            if modified_at is None or modified_at <= imported_at:
                continue
            # Post-import state is only known for rows the import did not touch
            fields = []
            if row.id in before and row.id not in affected:
                fields = [
                    name for name in COMPARED_FIELDS[entity]
                    if values_differ(getattr(before[row.id], name), getattr(row, name))
                ]
            conflicts.append(RollbackConflict(
                entity=entity,
                record_id=row.id,
                acr_sku=_owning_sku(entity, row, current, captured_skus),
                modified_at=row.updated_at,
                modified_by=row.updated_by,
                fields=fields,
            ))

        expected: Set[UUID] = (set(before) - deleted) | added
        for record_id in sorted(expected - set(rows)):
            original = before.get(record_id)
            conflicts.append(RollbackConflict(
                entity=entity,
                record_id=record_id,
                acr_sku=_owning_sku(entity, original, current, captured_skus) if original else None,
                modified_at=None,
                modified_by=None,
                deleted=True,
            ))

    return conflicts


# ============================================================================
# Rollback
# ============================================================================

def _restore(store: CatalogStore, snapshot: TableSnapshot) -> None:
    for entity in reversed(ENTITY_KEYS):
        store.delete_all(entity)
    for entity in ENTITY_KEYS:
        for row in snapshot.table(entity):
            store.insert_record(entity, row)


def _check_preconditions(store: CatalogStore, import_id: UUID) -> Tuple[ImportRecord, StoreSnapshot]:
    record = store.get_import(import_id)
    if record is None:
        raise ImportNotFoundError(import_id)

    if any(r.import_id == import_id for r in store.list_rollbacks()):
        raise ImportAlreadyRolledBackError(import_id)

    latest = find_latest_active_import(store)
    if latest is not None and latest.id != import_id:
        logger.info(f"Rollback of {import_id} refused: newer import {latest.id} is active")
        raise SequentialRollbackError(latest.id, import_id)

    current = fetch_store_snapshot(store)
    conflicts = detect_conflicts(record, current)
    if conflicts:
        logger.info(f"Rollback of {import_id} refused: {len(conflicts)} conflicting record(s)")
        raise RollbackConflictError(import_id, conflicts)

    return record, current


def rollback_import(
    store: CatalogStore,
    import_id: UUID,
    actor: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> RollbackResult:
    """
    Restore the catalog to the snapshot captured by an import.

    With a transactional store the precondition checks and the restore share
    one transaction holding the catalog lock, so no write can land between
    the conflict check and the restore.

    Args:
        store: Catalog store
        import_id: Import to undo (must be the newest active import)
        actor: Who is rolling back (recorded on the rollback record)
        clock: Returns the rollback timestamp (defaults to UTC now)

    Returns:
        RollbackResult with per-table restored counts

    Raises:
        ImportNotFoundError, ImportAlreadyRolledBackError,
        SequentialRollbackError, RollbackConflictError, RollbackExecutionError
    """
    started = time.monotonic()
    transactional = store.supports_transactions
    if transactional:
        store.begin_transaction()

    try:
        if transactional:
            store.lock_catalog()
        record, current = _check_preconditions(store, import_id)
    except Exception:
        if transactional:
            store.rollback_transaction()
        raise

    now = (clock or utc_now)()

    try:
        _restore(store, record.snapshot)
        store.insert_rollback(RollbackRecord(import_id=import_id, rolled_back_at=now, rolled_back_by=actor))
        if transactional:
            store.commit_transaction()
    except Exception as e:
        if transactional:
            store.rollback_transaction()
        else:
            try:
                _restore(store, current.to_table_snapshot(now))
            except Exception:
                logger.error(
                    f"Could not restore pre-rollback state for import {import_id}",
                    exc_info=True,
                )
        logger.error(f"Rollback of import {import_id} failed: {e}", exc_info=True)
        raise RollbackExecutionError(f"Rollback failed: {e}", import_id=import_id) from e

    restored_counts = record.snapshot.counts()
    elapsed_ms = (time.monotonic() - started) * 1000
    logger.info(f"Rolled back import {import_id} in {elapsed_ms:.0f} ms: restored {restored_counts}")

    return RollbackResult(
        import_id=import_id,
        restored_counts=restored_counts,
        rolled_back_at=now,
        elapsed_ms=elapsed_ms,
    )
