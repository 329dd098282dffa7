"""
Import executor.

Applies a validated diff to the store as one unit of work and records an
import history entry carrying a full snapshot of the catalog tables as they
stood immediately before the change. The snapshot is what rollback restores.

Apply order (avoids transient foreign-key violations and cascades):
1. Child deletes: cross references, then vehicle applications
2. Child updates whose part already exists
3. Parts: deletes, updates, then adds
4. Child updates linked to a part added in step 3
5. Child adds: vehicle applications, then cross references

Every written row is stamped with the import timestamp and the importing
actor; rollback conflict detection relies on those stamps.

CRITICAL: the import either applies completely or not at all. With a
transactional store everything runs in one transaction. With a store that
cannot roll back, the executor records an undo log and replays it in reverse
before surfacing the failure.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from ..diff import DiffItem, DiffResult
from ..errors import ImportExecutionError
from ..parser import ParsedDocument
from ..records import RECORD_TYPES, ImportRecord
from ..schema import CROSS_REFERENCES, ENTITY_KEYS, PARTS, VEHICLE_APPLICATIONS
from ..store.catalog_store import CatalogStore
from ..store.snapshot import fetch_store_snapshot

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

CHILD_REFERENCE_FIELDS = {
    VEHICLE_APPLICATIONS: "part_id",
    CROSS_REFERENCES: "acr_part_id",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ImportMeta:
    """Audit information supplied by the caller."""
    actor: Optional[str]
    file_name: str
    file_size: int = 0


@dataclass
class ImportResult:
    import_id: UUID
    created_at: datetime
    summary: Dict[str, int]
    applied_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    elapsed_ms: float = 0.0


class _UndoLog:
    """Compensating writes for stores without transactions."""

    def __init__(self, store: CatalogStore):
        self.store = store
        self.entries: List[Tuple[str, str, object]] = []

    def inserted(self, entity: str, record) -> None:
        self.entries.append(("delete", entity, record.id))

    def updated(self, entity: str, before) -> None:
        self.entries.append(("restore", entity, before))

    def deleted(self, entity: str, before) -> None:
        self.entries.append(("insert", entity, before))

    def replay(self) -> None:
        for action, entity, payload in reversed(self.entries):
            if action == "delete":
                self.store.delete_record(entity, payload)
            elif action == "restore":
                self.store.update_record(entity, payload)
            else:
                self.store.insert_record(entity, payload)
        logger.info(f"Compensated {len(self.entries)} write(s)")


class _Applier:
    """Applies one diff, tracking counts, affected ids and the SKU map."""

    def __init__(self, store: CatalogStore, actor: Optional[str], now: datetime,
                 sku_to_part_id: Dict[str, UUID], undo: Optional[_UndoLog]):
        self.store = store
        self.actor = actor
        self.now = now
        self.sku_to_part_id = sku_to_part_id
        self.undo = undo
        self.applied_counts = {
            entity: {"adds": 0, "updates": 0, "deletes": 0} for entity in ENTITY_KEYS
        }
        self.affected_ids: Dict[str, Dict[str, List[UUID]]] = {
            entity: {"added": [], "updated": [], "deleted": []} for entity in ENTITY_KEYS
        }

    def _link_part(self, item: DiffItem, values: Dict) -> Dict:
        reference_field = CHILD_REFERENCE_FIELDS.get(item.entity)
        if reference_field is None or values.get(reference_field) is not None:
            return values
        # Part created by this import: resolve through the SKU map
        part_id = self.sku_to_part_id.get(item.part_sku)
        if part_id is None:
            raise ImportExecutionError(
                f"Cannot link {item.entity} row {getattr(item.row, 'row_number', '?')} "
                f"to part {item.part_sku!r}: part not found"
            )
        return dict(values, **{reference_field: part_id})

    def delete(self, item: DiffItem) -> None:
        self.store.delete_record(item.entity, item.record_id)
        if self.undo:
            self.undo.deleted(item.entity, item.before)
        self.applied_counts[item.entity]["deletes"] += 1
        self.affected_ids[item.entity]["deleted"].append(item.record_id)

    def update(self, item: DiffItem) -> None:
        values = self._link_part(item, item.values)
        record = replace(item.before, **values, updated_at=self.now, updated_by=self.actor)
        self.store.update_record(item.entity, record)
        if self.undo:
            self.undo.updated(item.entity, item.before)
        if item.entity == PARTS:
            self.sku_to_part_id[record.acr_sku] = record.id
        self.applied_counts[item.entity]["updates"] += 1
        self.affected_ids[item.entity]["updated"].append(record.id)

    def add(self, item: DiffItem) -> None:
        values = self._link_part(item, item.values)
        record = RECORD_TYPES[item.entity](
            id=item.record_id or uuid4(),
            created_at=self.now,
            updated_at=self.now,
            updated_by=self.actor,
            **values,
        )
        self.store.insert_record(item.entity, record)
        if self.undo:
            self.undo.inserted(item.entity, record)
        if item.entity == PARTS:
            self.sku_to_part_id[record.acr_sku] = record.id
        self.applied_counts[item.entity]["adds"] += 1
        self.affected_ids[item.entity]["added"].append(record.id)

    def apply(self, diff: DiffResult) -> None:
        children = [VEHICLE_APPLICATIONS, CROSS_REFERENCES]

        for entity in reversed(children):
            for item in diff.sheet(entity).deletes:
                self.delete(item)

        # Must run before part deletes: a cascade from the old part would drop them
        deferred = []
        for entity in children:
            for item in diff.sheet(entity).updates:
                if item.values.get(CHILD_REFERENCE_FIELDS[entity]) is None:
                    deferred.append(item)
                else:
                    self.update(item)

        parts = diff.sheet(PARTS)
        for item in parts.deletes:
            self.delete(item)
        for item in parts.updates:
            self.update(item)
        for item in parts.adds:
            self.add(item)

        # Updates that point at a part created above
        for item in deferred:
            self.update(item)
        for entity in children:
            for item in diff.sheet(entity).adds:
                self.add(item)


def execute_import(
    document: ParsedDocument,
    diff: DiffResult,
    meta: ImportMeta,
    store: CatalogStore,
    clock: Optional[Clock] = None,
) -> ImportResult:
    """
    Apply a validated diff and record the import.

    Args:
        document: The parsed workbook the diff was computed from
        diff: Diff produced by generate_diff() on a valid document
        meta: Actor and file identity for the audit record
        store: Catalog store to write to
        clock: Returns the import timestamp (defaults to UTC now)

    Returns:
        ImportResult with the new import id and applied counts

    Raises:
        ImportExecutionError: If any write fails (the store is left as it was)
    """
    started = time.monotonic()
    now = (clock or utc_now)()
    import_id = uuid4()
    transactional = store.supports_transactions
    undo = None if transactional else _UndoLog(store)

    logger.info(
        f"Starting import {import_id} of {meta.file_name!r} by {meta.actor}: "
        f"{diff.total_adds} adds, {diff.total_updates} updates, {diff.total_deletes} deletes "
        f"({document.total_rows} rows)"
    )

    if transactional:
        store.begin_transaction()

    try:
        if transactional:
            store.lock_catalog()

        # ========================================================================
        # STEP 1: Capture full pre-change snapshot
        # ========================================================================
        # Whole tables, not just touched rows, so rollback restores a clean
        # baseline even if other writes landed between diff and apply
        current = fetch_store_snapshot(store)
        table_snapshot = current.to_table_snapshot(now)

        # ========================================================================
        # STEP 2: Apply deletes, updates, adds
        # ========================================================================
        applier = _Applier(store, meta.actor, now, dict(current.part_id_by_sku), undo)
        applier.apply(diff)

        # ========================================================================
        # STEP 3: Record the import (same unit of work)
        # ========================================================================
        summary = {
            "adds": diff.total_adds,
            "updates": diff.total_updates,
            "deletes": diff.total_deletes,
        }
        store.insert_import(ImportRecord(
            id=import_id,
            created_at=now,
            imported_by=meta.actor,
            file_name=meta.file_name,
            file_size_bytes=meta.file_size,
            rows_imported=diff.total_changes,
            summary=summary,
            snapshot=table_snapshot,
            affected_ids=applier.affected_ids,
            applied_counts=applier.applied_counts,
        ))

        if transactional:
            store.commit_transaction()

    except Exception as e:
        if transactional:
            store.rollback_transaction()
        else:
            try:
                undo.replay()
            except Exception:
                logger.error(
                    f"Compensating undo for import {import_id} failed; "
                    f"store may be partially modified",
                    exc_info=True,
                )
                raise ImportExecutionError(
                    f"Import failed and could not be undone: {e}", import_id=import_id
                ) from e
        logger.error(f"Import {import_id} failed: {e}", exc_info=True)
        raise ImportExecutionError(f"Import failed: {e}", import_id=import_id) from e

    elapsed_ms = (time.monotonic() - started) * 1000
    logger.info(f"Import {import_id} complete in {elapsed_ms:.0f} ms: {summary}")

    return ImportResult(
        import_id=import_id,
        created_at=now,
        summary=summary,
        applied_counts=applier.applied_counts,
        elapsed_ms=elapsed_ms,
    )
