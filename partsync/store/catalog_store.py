"""
Abstract catalog store interface.

The reconciliation pipeline only needs simple select/insert/update/delete
primitives over the three catalog tables plus the import history tables.
Implement this interface with your actual database client (psycopg2 in
SupabaseClient, or the in-process InMemoryCatalogStore used by tests).

Write methods raise StoreError on failure. Reads may run outside a
transaction; writes made by the executor and rollback service run inside one
when supports_transactions is True, after lock_catalog() has shut out other
writers.
"""

from typing import List, Optional
from uuid import UUID

from ..records import ImportRecord, RollbackRecord


class CatalogStore:
    """
    Abstract catalog store.

    Entity arguments are the keys from partsync.schema.ENTITY_KEYS
    ("parts", "vehicle_applications", "cross_references").
    """

    # False for stores that cannot roll back a multi-table unit of work; the
    # executor then applies compensating writes itself.
    supports_transactions: bool = True

    # ========================================================================
    # Transactions
    # ========================================================================

    def begin_transaction(self, read_only: bool = False) -> None:
        """
        Start a unit of work.

        Args:
            read_only: Only reads follow, and every one of them must see the
                       same committed state
        """
        raise NotImplementedError

    def commit_transaction(self) -> None:
        raise NotImplementedError

    def rollback_transaction(self) -> None:
        raise NotImplementedError

    def lock_catalog(self) -> None:
        """Block other writers to the catalog and history tables until the transaction ends."""

    # ========================================================================
    # Catalog tables
    # ========================================================================

    def list_records(self, entity: str) -> list:
        """
        Return every record of one catalog table.

        Args:
            entity: Entity key

        Returns:
            List of PartRecord / VehicleApplicationRecord / CrossReferenceRecord
        """
        raise NotImplementedError

    def insert_record(self, entity: str, record) -> None:
        """Insert a record, keeping its id and modification stamps as given."""
        raise NotImplementedError

    def update_record(self, entity: str, record) -> None:
        """Replace the stored record with the same id."""
        raise NotImplementedError

    def delete_record(self, entity: str, record_id: UUID) -> None:
        """
        Delete one record.

        Deleting a part also deletes its vehicle applications and cross
        references (ON DELETE CASCADE).
        """
        raise NotImplementedError

    def delete_all(self, entity: str) -> int:
        """Delete every record of one table and return how many were removed."""
        raise NotImplementedError

    # ========================================================================
    # Import history
    # ========================================================================

    def insert_import(self, record: ImportRecord) -> None:
        raise NotImplementedError

    def get_import(self, import_id: UUID) -> Optional[ImportRecord]:
        raise NotImplementedError

    def list_imports(self, limit: Optional[int] = None) -> List[ImportRecord]:
        """
        Return import records newest first, without their snapshot payload.

        Imports sharing a created_at are ordered newest-inserted first.
        """
        raise NotImplementedError

    def insert_rollback(self, record: RollbackRecord) -> None:
        raise NotImplementedError

    def list_rollbacks(self) -> List[RollbackRecord]:
        raise NotImplementedError

    def close(self) -> None:
        pass
