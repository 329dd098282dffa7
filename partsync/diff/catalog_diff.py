"""
Catalog diff engine.

Computes, per entity type, the records to add, update and delete so the
store matches the workbook. The sheet is the complete desired state of its
entity type (full-replacement semantics):

- A row with an empty _id is an add.
- A row whose _id matches a snapshot record is an update only if at least
  one business field differs (null-aware); identical rows are dropped.
- A snapshot record whose id appears on no row is a delete.

Identity is the only matching key; rows are never matched by position or
content. Adds keep document row order; updates and deletes follow snapshot
identity order so the output is deterministic.

The diff is a pure computation over (document, snapshot) and is only run on
documents that passed validation.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from ..compare import values_differ
from ..identity import IdentityKind
from ..parser import ParsedDocument, ParsedSheet
from ..resolution import PartIndex
from ..schema import (
    CROSS_REFERENCE_FIELDS,
    CROSS_REFERENCES,
    ENTITY_KEYS,
    PART_FIELDS,
    PARTS,
    VEHICLE_APPLICATION_FIELDS,
    VEHICLE_APPLICATIONS,
)
from ..store.snapshot import StoreSnapshot

logger = logging.getLogger(__name__)

COMPARED_FIELDS = {
    PARTS: PART_FIELDS,
    VEHICLE_APPLICATIONS: VEHICLE_APPLICATION_FIELDS,
    CROSS_REFERENCES: CROSS_REFERENCE_FIELDS,
}

# Field on each child entity that points at the owning part
PART_REFERENCE_FIELDS = {
    VEHICLE_APPLICATIONS: "part_id",
    CROSS_REFERENCES: "acr_part_id",
}


class DiffOperation(Enum):
    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class FieldChange:
    """A single business field that differs between the store and the sheet."""
    field: str
    from_value: Any
    to_value: Any


@dataclass
class DiffItem:
    """
    One pending change.

    values holds the desired business fields for adds and updates. For a
    child whose part is created by the same import the part reference in
    values is None and part_sku names the part to link to at apply time.
    """
    operation: DiffOperation
    entity: str
    record_id: Optional[UUID] = None  # None for adds that get an id at apply time
    row: Any = None                   # Parsed row (adds and updates)
    before: Any = None                # Snapshot record (updates and deletes)
    values: Dict[str, Any] = field(default_factory=dict)
    part_sku: Optional[str] = None
    changes: List[FieldChange] = field(default_factory=list)

    @property
    def changed_fields(self) -> List[str]:
        return [c.field for c in self.changes]


@dataclass
class SheetDiff:
    entity: str
    adds: List[DiffItem] = field(default_factory=list)
    updates: List[DiffItem] = field(default_factory=list)
    deletes: List[DiffItem] = field(default_factory=list)
    unchanged_count: int = 0

    @property
    def change_count(self) -> int:
        return len(self.adds) + len(self.updates) + len(self.deletes)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "adds": len(self.adds),
            "updates": len(self.updates),
            "deletes": len(self.deletes),
            "unchanged": self.unchanged_count,
            "changes": self.change_count,
        }


@dataclass
class DiffResult:
    parts: SheetDiff
    vehicle_applications: SheetDiff
    cross_references: SheetDiff

    def sheet(self, entity: str) -> SheetDiff:
        return getattr(self, entity)

    def sheets(self) -> List[SheetDiff]:
        return [self.sheet(entity) for entity in ENTITY_KEYS]

    @property
    def total_adds(self) -> int:
        return sum(len(s.adds) for s in self.sheets())

    @property
    def total_updates(self) -> int:
        return sum(len(s.updates) for s in self.sheets())

    @property
    def total_deletes(self) -> int:
        return sum(len(s.deletes) for s in self.sheets())

    @property
    def total_changes(self) -> int:
        return self.total_adds + self.total_updates + self.total_deletes

    @property
    def has_changes(self) -> bool:
        return self.total_changes > 0

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "total_adds": self.total_adds,
            "total_updates": self.total_updates,
            "total_deletes": self.total_deletes,
            "total_changes": self.total_changes,
        }


# ============================================================================
# Field-level comparison
# ============================================================================

def diff_record(entity: str, before, values: Dict[str, Any]) -> List[FieldChange]:
    """
    Compare a snapshot record against the desired business values.

    Optional fields compare null-aware, so an empty cell matches a NULL
    column and never shows up as a change.
    """
    changes = []
    for name in COMPARED_FIELDS[entity]:
        old = getattr(before, name)
        new = values.get(name)
        if values_differ(old, new):
            changes.append(FieldChange(field=name, from_value=old, to_value=new))
    return changes


def _desired_values(entity: str, row, index: PartIndex):
    """Business values a row asks for, plus the owning part SKU for children."""
    if entity == PARTS:
        return {name: getattr(row, name) for name in PART_FIELDS}, None

    reference_field = PART_REFERENCE_FIELDS[entity]
    reference = index.resolve(getattr(row, reference_field), row.acr_sku)
    values = {name: getattr(row, name) for name in COMPARED_FIELDS[entity] if name != reference_field}
    values[reference_field] = reference.part_id
    return values, reference.acr_sku


def diff_sheet(entity: str, sheet: ParsedSheet, snapshot: StoreSnapshot,
               index: PartIndex) -> SheetDiff:
    records = snapshot.table(entity)
    result = SheetDiff(entity=entity)
    seen_ids = set()
    updates_by_id: Dict[UUID, DiffItem] = {}

    for row in sheet.rows:
        identity = row.identity(records)
        values, part_sku = _desired_values(entity, row, index)

        if identity.kind is IdentityKind.NEW:
            result.adds.append(DiffItem(
                DiffOperation.ADD, entity, row=row, values=values, part_sku=part_sku,
            ))

        elif identity.kind is IdentityKind.UNKNOWN:
            # Well-formed id the store does not know: created with that id
            result.adds.append(DiffItem(
                DiffOperation.ADD, entity, record_id=identity.value, row=row,
                values=values, part_sku=part_sku,
            ))

        elif identity.kind is IdentityKind.EXISTING:
            seen_ids.add(identity.value)
            before = records[identity.value]
            changes = diff_record(entity, before, values)
            if changes:
                updates_by_id[identity.value] = DiffItem(
                    DiffOperation.UPDATE, entity, record_id=identity.value, row=row,
                    before=before, values=values, part_sku=part_sku, changes=changes,
                )
            else:
                result.unchanged_count += 1

        else:
            logger.debug(f"{entity} row {row.row_number}: skipping malformed _id {identity.raw!r}")

    for record_id, before in records.items():
        if record_id in updates_by_id:
            result.updates.append(updates_by_id[record_id])
        elif record_id not in seen_ids:
            result.deletes.append(DiffItem(
                DiffOperation.DELETE, entity, record_id=record_id, before=before,
            ))

    return result


def generate_diff(document: ParsedDocument, snapshot: StoreSnapshot) -> DiffResult:
    """
    Compute the change set that brings the store in line with the workbook.

    Args:
        document: Parsed (and validated) workbook
        snapshot: The same store snapshot validation ran against

    Returns:
        DiffResult with adds, updates and deletes per entity type
    """
    index = PartIndex(document, snapshot)
    result = DiffResult(
        parts=diff_sheet(PARTS, document.parts, snapshot, index),
        vehicle_applications=diff_sheet(
            VEHICLE_APPLICATIONS, document.vehicle_applications, snapshot, index
        ),
        cross_references=diff_sheet(CROSS_REFERENCES, document.cross_references, snapshot, index),
    )

    logger.info(
        f"Diff computed: {result.total_adds} adds, {result.total_updates} updates, "
        f"{result.total_deletes} deletes"
    )
    return result
