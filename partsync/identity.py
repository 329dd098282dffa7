"""
Row identity classification.

A parsed workbook row is exactly one of:
- NEW: hidden _id empty, the row is an add candidate
- EXISTING: _id populated and present in the store snapshot (update or no-op)
- UNKNOWN: _id is a well-formed UUID the store does not know
- MALFORMED: _id populated but not a UUID

classify_identity() is the single place that decides the branch. The
validation engine and the diff engine both consume its result, so the two
passes can never disagree about what a row is.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Container, Optional
from uuid import UUID

UUID_REGEX = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


class IdentityKind(Enum):
    NEW = "NEW"
    EXISTING = "EXISTING"
    UNKNOWN = "UNKNOWN"
    MALFORMED = "MALFORMED"


@dataclass(frozen=True)
class RowIdentity:
    kind: IdentityKind
    raw: Optional[str] = None
    value: Optional[UUID] = None

    @property
    def is_new(self) -> bool:
        return self.kind is IdentityKind.NEW

    @property
    def is_existing(self) -> bool:
        return self.kind is IdentityKind.EXISTING


def parse_identity_token(raw: Any) -> Optional[UUID]:
    """Return the UUID for a well-formed identity token, else None."""
    if raw is None:
        return None
    if isinstance(raw, UUID):
        return raw
    text = str(raw).strip()
    if not UUID_REGEX.match(text):
        return None
    return UUID(text)


def classify_identity(raw: Any, known_ids: Container[UUID]) -> RowIdentity:
    """Classify a hidden _id cell against the identities in the store snapshot."""
    if raw is None or str(raw).strip() == "":
        return RowIdentity(IdentityKind.NEW)

    text = str(raw).strip()
    value = parse_identity_token(text)
    if value is None:
        return RowIdentity(IdentityKind.MALFORMED, raw=text)
    if value in known_ids:
        return RowIdentity(IdentityKind.EXISTING, raw=text, value=value)
    return RowIdentity(IdentityKind.UNKNOWN, raw=text, value=value)
