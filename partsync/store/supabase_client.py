"""
Supabase Postgres catalog store.

This module provides a concrete implementation of CatalogStore that connects
to the Supabase Postgres instance backing the catalog using direct database
connections (not the REST API keys).

Connection string:
- Supabase Dashboard → Project Settings → Database → Connection string
- Format: postgresql://postgres:[password]@[host]:5432/postgres

The tables this client expects are defined in schema.sql next to this module.
"""

import logging
import os
from dataclasses import fields
from typing import Any, Dict, List, Optional
from uuid import UUID

import psycopg2
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import SimpleConnectionPool

from ..errors import StoreError
from ..records import RECORD_TYPES, ImportRecord, RollbackRecord
from ..schema import ENTITY_KEYS
from .catalog_store import CatalogStore

logger = logging.getLogger(__name__)

# Every writer locks in this order
LOCKED_TABLES = ENTITY_KEYS + ["import_history", "import_rollbacks"]


def _column_names(entity: str) -> List[str]:
    return [f.name for f in fields(RECORD_TYPES[entity])]


def _db_value(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    return value


class SupabaseClient(CatalogStore):
    """
    Postgres catalog store using a psycopg2 connection pool.

    Connection can be configured via:
    - Constructor parameters
    - Environment variables (SUPABASE_DB_URL or individual connection params)
    """

    def __init__(
        self,
        db_url: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        database: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        minconn: int = 1,
        maxconn: int = 10
    ):
        """
        Initialize the store client. No connection is opened until first use.

        Args:
            db_url: Full database URL. If not provided, checks SUPABASE_DB_URL,
                    then builds one from individual params or env vars.
            host: Database host (defaults to SUPABASE_DB_HOST env var)
            port: Database port (defaults to SUPABASE_DB_PORT or 5432)
            database: Database name (defaults to SUPABASE_DB_NAME env var)
            user: Database user (defaults to SUPABASE_DB_USER env var)
            password: Database password (defaults to SUPABASE_DB_PASSWORD env var)
            minconn: Minimum connections in pool
            maxconn: Maximum connections in pool
        """
        # Priority: 1) db_url param, 2) SUPABASE_DB_URL env var, 3) individual params/env vars
        if db_url:
            self.db_url = db_url
        elif os.getenv("SUPABASE_DB_URL"):
            self.db_url = os.getenv("SUPABASE_DB_URL")
        else:
            self.db_url = self._build_connection_string(
                host=host or os.getenv("SUPABASE_DB_HOST"),
                port=port or int(os.getenv("SUPABASE_DB_PORT", "5432")),
                database=database or os.getenv("SUPABASE_DB_NAME"),
                user=user or os.getenv("SUPABASE_DB_USER"),
                password=password or os.getenv("SUPABASE_DB_PASSWORD")
            )

        self.minconn = minconn
        self.maxconn = maxconn
        self._pool = None
        self._transaction_conn = None

    @staticmethod
    def _build_connection_string(
        host: Optional[str],
        port: Optional[int],
        database: Optional[str],
        user: Optional[str],
        password: Optional[str]
    ) -> str:
        """Build PostgreSQL connection string from components."""
        if not all([host, database, user, password]):
            raise ValueError(
                "Missing required connection parameters. Provide db_url or set "
                "SUPABASE_DB_HOST, SUPABASE_DB_NAME, SUPABASE_DB_USER, "
                "SUPABASE_DB_PASSWORD environment variables."
            )

        port = port or 5432
        return f"postgresql://{user}:{password}@{host}:{port}/{database}"

    def _get_connection_pool(self) -> SimpleConnectionPool:
        if self._pool is None:
            try:
                self._pool = SimpleConnectionPool(self.minconn, self.maxconn, dsn=self.db_url)
            except psycopg2.Error as e:
                raise StoreError(f"Failed to create database connection pool: {e}") from e
        return self._pool

    def _get_connection(self):
        return self._get_connection_pool().getconn()

    def _return_connection(self, conn):
        self._get_connection_pool().putconn(conn)

    # ========================================================================
    # Transactions
    # ========================================================================

    def begin_transaction(self, read_only: bool = False) -> None:
        if self._transaction_conn is not None:
            raise RuntimeError("Transaction already in progress")

        self._transaction_conn = self._get_connection()
        self._transaction_conn.autocommit = False
        if read_only:
            # Must be the first statement: the snapshot is taken by the first query
            try:
                self._execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ, READ ONLY")
            except StoreError:
                self.rollback_transaction()
                raise

    def commit_transaction(self) -> None:
        if self._transaction_conn is None:
            raise RuntimeError("No transaction in progress")

        try:
            self._transaction_conn.commit()
        except psycopg2.Error as e:
            raise StoreError(f"Commit failed: {e}") from e
        finally:
            self._return_connection(self._transaction_conn)
            self._transaction_conn = None

    def rollback_transaction(self) -> None:
        if self._transaction_conn is None:
            raise RuntimeError("No transaction in progress")

        try:
            self._transaction_conn.rollback()
        finally:
            self._return_connection(self._transaction_conn)
            self._transaction_conn = None

    def lock_catalog(self) -> None:
        if self._transaction_conn is None:
            raise RuntimeError("No transaction in progress")

        # EXCLUSIVE mode still lets other sessions run plain SELECTs
        self._execute(
            f"LOCK TABLE {', '.join(LOCKED_TABLES)} IN EXCLUSIVE MODE"
        )
        logger.debug(f"Locked {LOCKED_TABLES} for this transaction")

    def _execute(self, query: str, params: tuple = (), fetch: Optional[str] = None):
        """
        Run one statement.

        Inside a transaction the transaction connection is used; otherwise a
        pooled connection is borrowed and committed immediately (reads only in
        practice).
        """
        own_conn = self._transaction_conn is None
        conn = self._get_connection() if own_conn else self._transaction_conn
        cursor = conn.cursor(cursor_factory=RealDictCursor)

        try:
            cursor.execute(query, params)
            if fetch == "all":
                result = cursor.fetchall()
            elif fetch == "one":
                result = cursor.fetchone()
            else:
                result = cursor.rowcount
            if own_conn:
                conn.commit()
            return result
        except psycopg2.Error as e:
            if own_conn:
                conn.rollback()
            raise StoreError(str(e).strip()) from e
        finally:
            cursor.close()
            if own_conn:
                self._return_connection(conn)

    # ========================================================================
    # Catalog tables
    # ========================================================================

    @staticmethod
    def _check_entity(entity: str) -> None:
        # Table names are interpolated into SQL; only the three catalog tables are allowed
        if entity not in ENTITY_KEYS:
            raise StoreError(f"Unknown table: {entity}")

    def list_records(self, entity: str) -> list:
        self._check_entity(entity)
        columns = _column_names(entity)
        rows = self._execute(
            f"SELECT {', '.join(columns)} FROM {entity} ORDER BY id",
            fetch="all",
        )
        record_type = RECORD_TYPES[entity]
        return [record_type.from_dict(dict(row)) for row in rows]

    def insert_record(self, entity: str, record) -> None:
        self._check_entity(entity)
        columns = _column_names(entity)
        placeholders = ", ".join(["%s"] * len(columns))
        self._execute(
            f"INSERT INTO {entity} ({', '.join(columns)}) VALUES ({placeholders})",
            tuple(_db_value(getattr(record, c)) for c in columns),
        )

    def update_record(self, entity: str, record) -> None:
        self._check_entity(entity)
        columns = [c for c in _column_names(entity) if c != "id"]
        assignments = ", ".join(f"{c} = %s" for c in columns)
        count = self._execute(
            f"UPDATE {entity} SET {assignments} WHERE id = %s",
            tuple(_db_value(getattr(record, c)) for c in columns) + (str(record.id),),
        )
        if count == 0:
            raise StoreError(f"{entity} record {record.id} does not exist")

    def delete_record(self, entity: str, record_id: UUID) -> None:
        self._check_entity(entity)
        count = self._execute(f"DELETE FROM {entity} WHERE id = %s", (str(record_id),))
        if count == 0:
            raise StoreError(f"{entity} record {record_id} does not exist")

    def delete_all(self, entity: str) -> int:
        self._check_entity(entity)
        return self._execute(f"DELETE FROM {entity}")

    # ========================================================================
    # Import history
    # ========================================================================

    @staticmethod
    def _import_from_row(row: Dict[str, Any]) -> ImportRecord:
        return ImportRecord.from_dict({
            "id": row["id"],
            "created_at": row["created_at"],
            "imported_by": row["imported_by"],
            "file_name": row["file_name"],
            "file_size_bytes": row["file_size_bytes"],
            "rows_imported": row["rows_imported"],
            "summary": row["import_summary"],
            "snapshot": row.get("snapshot_data"),
            "affected_ids": row.get("affected_ids"),
            "applied_counts": row.get("applied_counts"),
        })

    def insert_import(self, record: ImportRecord) -> None:
        payload = record.to_dict()
        self._execute("""
            INSERT INTO import_history (
                id, created_at, imported_by, file_name, file_size_bytes,
                rows_imported, import_summary, snapshot_data, affected_ids, applied_counts
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s::jsonb, %s::jsonb)
        """, (
            str(record.id),
            record.created_at,
            record.imported_by,
            record.file_name,
            record.file_size_bytes,
            record.rows_imported,
            Json(payload["summary"]),
            Json(payload["snapshot"]),
            Json(payload["affected_ids"]),
            Json(payload["applied_counts"]),
        ))

    def get_import(self, import_id: UUID) -> Optional[ImportRecord]:
        row = self._execute(
            "SELECT * FROM import_history WHERE id = %s",
            (str(import_id),),
            fetch="one",
        )
        return self._import_from_row(row) if row else None

    def list_imports(self, limit: Optional[int] = None) -> List[ImportRecord]:
        # Summary columns only; get_import() loads the snapshot payload
        query = (
            "SELECT id, created_at, imported_by, file_name, file_size_bytes, "
            "rows_imported, import_summary FROM import_history "
            "ORDER BY created_at DESC, seq DESC"
        )
        params: tuple = ()
        if limit is not None:
            query += " LIMIT %s"
            params = (limit,)
        rows = self._execute(query, params, fetch="all")
        return [self._import_from_row(row) for row in rows]

    def insert_rollback(self, record: RollbackRecord) -> None:
        self._execute("""
            INSERT INTO import_rollbacks (import_id, rolled_back_at, rolled_back_by)
            VALUES (%s, %s, %s)
        """, (str(record.import_id), record.rolled_back_at, record.rolled_back_by))

    def list_rollbacks(self) -> List[RollbackRecord]:
        rows = self._execute(
            "SELECT import_id, rolled_back_at, rolled_back_by FROM import_rollbacks "
            "ORDER BY rolled_back_at",
            fetch="all",
        )
        return [
            RollbackRecord(
                import_id=UUID(str(row["import_id"])),
                rolled_back_at=row["rolled_back_at"],
                rolled_back_by=row["rolled_back_by"],
            )
            for row in rows
        ]

    def close(self):
        """Close the connection pool."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
