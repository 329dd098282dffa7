"""Import execution: apply a validated diff and record the import."""

from .executor import ImportMeta, ImportResult, execute_import, utc_now

__all__ = ["ImportMeta", "ImportResult", "execute_import", "utc_now"]
