"""
Store record types.

These are the rows of the three catalog tables plus the import history
tables. Every catalog row carries modification stamps (updated_at,
updated_by); rollback conflict detection depends on them.

Records are serialized to plain JSON-safe dictionaries for the snapshot
payload of an import record, and restored from them verbatim on rollback
(identities and stamps included).
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from .schema import CROSS_REFERENCES, PARTS, VEHICLE_APPLICATIONS


def _parse_uuid(value: Any) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _serialize(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class _RecordMixin:
    """Shared (de)serialization for catalog records."""

    UUID_FIELDS: tuple = ("id",)
    DATETIME_FIELDS: tuple = ("created_at", "updated_at")

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: _serialize(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        kwargs = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            if f.name in cls.UUID_FIELDS:
                value = _parse_uuid(value)
            elif f.name in cls.DATETIME_FIELDS:
                value = _parse_datetime(value)
            kwargs[f.name] = value
        return cls(**kwargs)


@dataclass
class PartRecord(_RecordMixin):
    id: UUID
    acr_sku: str
    part_type: str
    position_type: Optional[str] = None
    abs_type: Optional[str] = None
    bolt_pattern: Optional[str] = None
    drive_type: Optional[str] = None
    specifications: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


@dataclass
class VehicleApplicationRecord(_RecordMixin):
    id: UUID
    part_id: UUID
    make: str
    model: str
    start_year: int
    end_year: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    UUID_FIELDS = ("id", "part_id")


@dataclass
class CrossReferenceRecord(_RecordMixin):
    id: UUID
    acr_part_id: UUID
    competitor_sku: str
    competitor_brand: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    UUID_FIELDS = ("id", "acr_part_id")


RECORD_TYPES = {
    PARTS: PartRecord,
    VEHICLE_APPLICATIONS: VehicleApplicationRecord,
    CROSS_REFERENCES: CrossReferenceRecord,
}


def owning_part_id(entity: str, record) -> UUID:
    """Part that owns a record (a part owns itself)."""
    if entity == PARTS:
        return record.id
    if entity == VEHICLE_APPLICATIONS:
        return record.part_id
    return record.acr_part_id


@dataclass
class TableSnapshot:
    """
    Complete contents of the three catalog tables at one instant.

    This is the payload stored on an import record and restored by rollback.
    """
    parts: List[PartRecord]
    vehicle_applications: List[VehicleApplicationRecord]
    cross_references: List[CrossReferenceRecord]
    timestamp: datetime

    def table(self, entity: str) -> list:
        return getattr(self, entity)

    def counts(self) -> Dict[str, int]:
        return {
            PARTS: len(self.parts),
            VEHICLE_APPLICATIONS: len(self.vehicle_applications),
            CROSS_REFERENCES: len(self.cross_references),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            PARTS: [r.to_dict() for r in self.parts],
            VEHICLE_APPLICATIONS: [r.to_dict() for r in self.vehicle_applications],
            CROSS_REFERENCES: [r.to_dict() for r in self.cross_references],
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableSnapshot":
        return cls(
            parts=[PartRecord.from_dict(r) for r in data.get(PARTS) or []],
            vehicle_applications=[
                VehicleApplicationRecord.from_dict(r)
                for r in data.get(VEHICLE_APPLICATIONS) or []
            ],
            cross_references=[
                CrossReferenceRecord.from_dict(r)
                for r in data.get(CROSS_REFERENCES) or []
            ],
            timestamp=_parse_datetime(data["timestamp"]),
        )


@dataclass
class ImportRecord:
    """
    One successful import.

    Created atomically with the import and never mutated afterwards.
    A rollback appends a RollbackRecord instead of touching this one.
    """
    id: UUID
    created_at: datetime
    imported_by: Optional[str]
    file_name: str
    file_size_bytes: int
    rows_imported: int
    summary: Dict[str, int]  # {"adds", "updates", "deletes"}
    # None on history listings, which leave the payload in the store
    snapshot: Optional[TableSnapshot]
    # {entity: {"added": [...], "updated": [...], "deleted": [...]}}
    affected_ids: Dict[str, Dict[str, List[UUID]]] = field(default_factory=dict)
    applied_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "created_at": self.created_at.isoformat(),
            "imported_by": self.imported_by,
            "file_name": self.file_name,
            "file_size_bytes": self.file_size_bytes,
            "rows_imported": self.rows_imported,
            "summary": dict(self.summary),
            "snapshot": self.snapshot.to_dict() if self.snapshot is not None else None,
            "affected_ids": {
                entity: {op: [str(i) for i in ids] for op, ids in by_op.items()}
                for entity, by_op in self.affected_ids.items()
            },
            "applied_counts": self.applied_counts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportRecord":
        return cls(
            id=_parse_uuid(data["id"]),
            created_at=_parse_datetime(data["created_at"]),
            imported_by=data.get("imported_by"),
            file_name=data["file_name"],
            file_size_bytes=data.get("file_size_bytes") or 0,
            rows_imported=data.get("rows_imported") or 0,
            summary=dict(data.get("summary") or {}),
            snapshot=TableSnapshot.from_dict(data["snapshot"]) if data.get("snapshot") else None,
            affected_ids={
                entity: {op: [_parse_uuid(i) for i in ids] for op, ids in by_op.items()}
                for entity, by_op in (data.get("affected_ids") or {}).items()
            },
            applied_counts=data.get("applied_counts") or {},
        )


@dataclass
class RollbackRecord:
    import_id: UUID
    rolled_back_at: datetime
    rolled_back_by: Optional[str] = None
