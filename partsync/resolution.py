"""
Part reference resolution for child rows.

A Vehicle Applications or Cross References row points at its part either
through the hidden foreign-key column (_part_id / _acr_part_id) or, when that
is empty, through its ACR_SKU. The target may be a Parts row in the same
document or a part already in the store.

Validation turns unresolved references into E5/E18 errors and the diff
engine uses the resolved part id, so both passes share this one index.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
from uuid import UUID

from .identity import parse_identity_token
from .parser import ParsedDocument, PartRow
from .store.snapshot import StoreSnapshot


class ReferenceKind(Enum):
    RESOLVED = "RESOLVED"
    # Target part exists in the store but is omitted from the Parts sheet,
    # so applying the import would delete it
    OMITTED_PART = "OMITTED_PART"
    UNRESOLVED = "UNRESOLVED"
    MALFORMED = "MALFORMED"


@dataclass(frozen=True)
class PartReference:
    kind: ReferenceKind
    via: str  # "fk" or "sku"
    part_id: Optional[UUID] = None  # None when the part is created by this import
    acr_sku: Optional[str] = None
    raw: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.kind is ReferenceKind.RESOLVED


class PartIndex:
    """Parts of one document plus the store snapshot, indexed for lookups."""

    def __init__(self, document: ParsedDocument, snapshot: StoreSnapshot):
        self.snapshot = snapshot
        self.rows_by_id: Dict[UUID, PartRow] = {}
        self.rows_by_sku: Dict[str, PartRow] = {}

        for row in document.parts.rows:
            part_id = parse_identity_token(row.id)
            if part_id is not None:
                self.rows_by_id.setdefault(part_id, row)
            if row.acr_sku:
                self.rows_by_sku.setdefault(row.acr_sku, row)

        # Without identity columns on the Parts sheet there is no way to tell
        # which store parts were omitted (E1 is reported instead)
        self.tracks_omissions = document.parts.has_identity_columns

    def _store_part(self, part_id: UUID, via: str, raw: Optional[str]) -> PartReference:
        sku = self.snapshot.sku_of_part(part_id)
        if part_id in self.rows_by_id:
            return PartReference(ReferenceKind.RESOLVED, via, part_id, self.rows_by_id[part_id].acr_sku, raw)
        if self.tracks_omissions:
            return PartReference(ReferenceKind.OMITTED_PART, via, part_id, sku, raw)
        return PartReference(ReferenceKind.RESOLVED, via, part_id, sku, raw)

    def resolve(self, fk_value: Optional[str], acr_sku: Optional[str]) -> PartReference:
        """Resolve a child row's part reference.

        Args:
            fk_value: Raw hidden foreign-key cell (None when empty)
            acr_sku: The row's ACR_SKU cell
        """
        if fk_value:
            part_id = parse_identity_token(fk_value)
            if part_id is None:
                return PartReference(ReferenceKind.MALFORMED, "fk", raw=fk_value)
            if part_id in self.rows_by_id:
                row = self.rows_by_id[part_id]
                return PartReference(ReferenceKind.RESOLVED, "fk", part_id, row.acr_sku, fk_value)
            if part_id in self.snapshot.parts:
                return self._store_part(part_id, "fk", fk_value)
            return PartReference(ReferenceKind.UNRESOLVED, "fk", part_id, raw=fk_value)

        if not acr_sku:
            return PartReference(ReferenceKind.UNRESOLVED, "sku")

        row = self.rows_by_sku.get(acr_sku)
        if row is not None:
            return PartReference(ReferenceKind.RESOLVED, "sku", parse_identity_token(row.id), acr_sku)

        part_id = self.snapshot.part_id_by_sku.get(acr_sku)
        if part_id is not None:
            return self._store_part(part_id, "sku", None)
        return PartReference(ReferenceKind.UNRESOLVED, "sku", acr_sku=acr_sku)
