"""Null-aware field comparison shared by the validation and diff engines."""

from typing import Any


def normalize_value(value: Any) -> Any:
    """None and blank strings compare equal; strings compare trimmed."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def values_differ(old: Any, new: Any) -> bool:
    return normalize_value(old) != normalize_value(new)
