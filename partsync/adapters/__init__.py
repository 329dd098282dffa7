from .excel_adapter import ExcelAdapter, RawSheet

__all__ = ["ExcelAdapter", "RawSheet"]
