"""
In-process catalog store.

Used by the test suite and by callers that run the pipeline without a
database (pass it to partsync.cli.main). It enforces the same
constraints as the Postgres schema (unique part SKU, child foreign keys,
ON DELETE CASCADE) so the pipeline sees the same failures it would see
against the real database.
"""

import copy
import logging
from dataclasses import replace
from typing import Dict, List, Optional
from uuid import UUID

from ..errors import StoreError
from ..records import ImportRecord, RollbackRecord
from ..schema import CROSS_REFERENCES, ENTITY_KEYS, PARTS, VEHICLE_APPLICATIONS
from .catalog_store import CatalogStore

logger = logging.getLogger(__name__)

CHILD_FOREIGN_KEYS = {
    VEHICLE_APPLICATIONS: "part_id",
    CROSS_REFERENCES: "acr_part_id",
}


class InMemoryCatalogStore(CatalogStore):
    """
    Dictionary-backed store.

    Args:
        transactional: When False, begin/commit/rollback are unavailable and
                       supports_transactions reports False.
    """

    def __init__(self, transactional: bool = True):
        self.supports_transactions = transactional
        self._tables: Dict[str, Dict[UUID, object]] = {entity: {} for entity in ENTITY_KEYS}
        self._imports: List[ImportRecord] = []
        self._rollbacks: List[RollbackRecord] = []
        self._saved_state = None

    # ========================================================================
    # Transactions
    # ========================================================================

    def begin_transaction(self, read_only: bool = False) -> None:
        if not self.supports_transactions:
            raise StoreError("Store does not support transactions")
        if self._saved_state is not None:
            raise RuntimeError("Transaction already in progress")
        self._saved_state = copy.deepcopy((self._tables, self._imports, self._rollbacks))

    def commit_transaction(self) -> None:
        if self._saved_state is None:
            raise RuntimeError("No transaction in progress")
        self._saved_state = None

    def rollback_transaction(self) -> None:
        if self._saved_state is None:
            raise RuntimeError("No transaction in progress")
        self._tables, self._imports, self._rollbacks = self._saved_state
        self._saved_state = None

    @property
    def in_transaction(self) -> bool:
        return self._saved_state is not None

    # ========================================================================
    # Catalog tables
    # ========================================================================

    def _table(self, entity: str) -> Dict[UUID, object]:
        if entity not in self._tables:
            raise StoreError(f"Unknown table: {entity}")
        return self._tables[entity]

    def _check_constraints(self, entity: str, record) -> None:
        if entity == PARTS:
            for other in self._tables[PARTS].values():
                if other.id != record.id and other.acr_sku == record.acr_sku:
                    raise StoreError(
                        f"duplicate key value violates unique constraint "
                        f"\"parts_acr_sku_key\": {record.acr_sku}"
                    )
            return

        fk = CHILD_FOREIGN_KEYS[entity]
        part_id = getattr(record, fk)
        if part_id not in self._tables[PARTS]:
            raise StoreError(
                f"insert or update on table \"{entity}\" violates foreign key "
                f"constraint: {fk}={part_id} is not present in table \"parts\""
            )

    def list_records(self, entity: str) -> list:
        return [replace(r) for r in self._table(entity).values()]

    def get_record(self, entity: str, record_id: UUID):
        record = self._table(entity).get(record_id)
        return replace(record) if record is not None else None

    def insert_record(self, entity: str, record) -> None:
        table = self._table(entity)
        if record.id in table:
            raise StoreError(f"duplicate key value violates primary key of \"{entity}\": {record.id}")
        self._check_constraints(entity, record)
        table[record.id] = replace(record)

    def update_record(self, entity: str, record) -> None:
        table = self._table(entity)
        if record.id not in table:
            raise StoreError(f"{entity} record {record.id} does not exist")
        self._check_constraints(entity, record)
        table[record.id] = replace(record)

    def delete_record(self, entity: str, record_id: UUID) -> None:
        table = self._table(entity)
        if record_id not in table:
            raise StoreError(f"{entity} record {record_id} does not exist")
        del table[record_id]

        if entity == PARTS:
            for child, fk in CHILD_FOREIGN_KEYS.items():
                orphans = [
                    r.id for r in self._tables[child].values()
                    if getattr(r, fk) == record_id
                ]
                for orphan_id in orphans:
                    del self._tables[child][orphan_id]
                if orphans:
                    logger.debug(f"Cascade deleted {len(orphans)} {child} of part {record_id}")

    def delete_all(self, entity: str) -> int:
        if entity == PARTS:
            for child in CHILD_FOREIGN_KEYS:
                self._tables[child].clear()
        table = self._table(entity)
        count = len(table)
        table.clear()
        return count

    # ========================================================================
    # Import history
    # ========================================================================

    def insert_import(self, record: ImportRecord) -> None:
        if any(existing.id == record.id for existing in self._imports):
            raise StoreError(f"Import {record.id} already exists")
        self._imports.append(copy.deepcopy(record))

    def get_import(self, import_id: UUID) -> Optional[ImportRecord]:
        for record in self._imports:
            if record.id == import_id:
                return copy.deepcopy(record)
        return None

    def list_imports(self, limit: Optional[int] = None) -> List[ImportRecord]:
        # Equal timestamps fall back to insertion order
        ordered = sorted(
            enumerate(self._imports),
            key=lambda pair: (pair[1].created_at, pair[0]),
            reverse=True,
        )
        # Summaries only, as the Postgres store returns them
        records = [copy.deepcopy(replace(record, snapshot=None)) for _, record in ordered]
        return records[:limit] if limit is not None else records

    def insert_rollback(self, record: RollbackRecord) -> None:
        if any(r.import_id == record.import_id for r in self._rollbacks):
            raise StoreError(f"Import {record.import_id} already rolled back")
        self._rollbacks.append(replace(record))

    def list_rollbacks(self) -> List[RollbackRecord]:
        return [replace(r) for r in self._rollbacks]
