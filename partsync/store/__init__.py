"""Catalog store implementations and the per-request snapshot view."""

from .catalog_store import CatalogStore
from .memory_store import InMemoryCatalogStore
from .snapshot import StoreSnapshot, fetch_store_snapshot, read_store_snapshot
from .supabase_client import SupabaseClient

__all__ = [
    "CatalogStore",
    "InMemoryCatalogStore",
    "SupabaseClient",
    "StoreSnapshot",
    "fetch_store_snapshot",
    "read_store_snapshot",
]
