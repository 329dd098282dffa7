"""
Read-only store snapshot view.

One snapshot is fetched per request and shared by validation and diffing so
both passes see the same state. Records are keyed by identity in ascending
identity order, which is the order the diff engine reports updates and
deletes in.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional
from uuid import UUID

from ..records import (
    CrossReferenceRecord,
    PartRecord,
    TableSnapshot,
    VehicleApplicationRecord,
)
from ..schema import CROSS_REFERENCES, PARTS, VEHICLE_APPLICATIONS
from .catalog_store import CatalogStore

logger = logging.getLogger(__name__)


@dataclass
class StoreSnapshot:
    parts: Dict[UUID, PartRecord] = field(default_factory=dict)
    vehicle_applications: Dict[UUID, VehicleApplicationRecord] = field(default_factory=dict)
    cross_references: Dict[UUID, CrossReferenceRecord] = field(default_factory=dict)
    part_id_by_sku: Dict[str, UUID] = field(default_factory=dict)

    @classmethod
    def from_records(cls, parts, vehicle_applications, cross_references) -> "StoreSnapshot":
        by_id = lambda records: {r.id: r for r in sorted(records, key=lambda r: r.id)}
        snapshot = cls(
            parts=by_id(parts),
            vehicle_applications=by_id(vehicle_applications),
            cross_references=by_id(cross_references),
        )
        for part in snapshot.parts.values():
            snapshot.part_id_by_sku[part.acr_sku] = part.id
        return snapshot

    def table(self, entity: str) -> Dict[UUID, object]:
        return getattr(self, entity)

    def sku_of_part(self, part_id: Optional[UUID]) -> Optional[str]:
        part = self.parts.get(part_id) if part_id is not None else None
        return part.acr_sku if part else None

    def to_table_snapshot(self, timestamp: datetime) -> TableSnapshot:
        return TableSnapshot(
            parts=list(self.parts.values()),
            vehicle_applications=list(self.vehicle_applications.values()),
            cross_references=list(self.cross_references.values()),
            timestamp=timestamp,
        )


def fetch_store_snapshot(store: CatalogStore) -> StoreSnapshot:
    """Read the three catalog tables once and build the snapshot view."""
    snapshot = StoreSnapshot.from_records(
        store.list_records(PARTS),
        store.list_records(VEHICLE_APPLICATIONS),
        store.list_records(CROSS_REFERENCES),
    )
    logger.debug(
        f"Fetched store snapshot: {len(snapshot.parts)} parts, "
        f"{len(snapshot.vehicle_applications)} vehicle applications, "
        f"{len(snapshot.cross_references)} cross references"
    )
    return snapshot


def read_store_snapshot(store: CatalogStore) -> StoreSnapshot:
    """Fetch a snapshot inside a read-only transaction so the three tables agree."""
    if not store.supports_transactions:
        return fetch_store_snapshot(store)

    store.begin_transaction(read_only=True)
    try:
        snapshot = fetch_store_snapshot(store)
    except Exception:
        store.rollback_transaction()
        raise
    store.commit_transaction()
    return snapshot
