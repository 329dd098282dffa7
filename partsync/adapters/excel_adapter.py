import io
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import openpyxl
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import MalformedDocumentError
from ..schema import VALID_EXTENSIONS


class RawSheet:
    """Header row plus data rows of one worksheet, cell values untouched.

    rows holds (sheet_row_number, {header: value}) pairs.
    """

    def __init__(self, name: str, headers: List[str], rows: List[Tuple[int, Dict[str, Any]]]):
        self.name = name
        self.headers = headers
        self.rows = rows


class ExcelAdapter:
    def can_handle(self, file_name):
        return Path(file_name).suffix.lower() in VALID_EXTENSIONS

    def read(self, data: bytes) -> Dict[str, RawSheet]:
        """Read every worksheet of a workbook byte stream.

        Raises:
            MalformedDocumentError: If the bytes are empty or not a readable workbook
        """
        if not data:
            raise MalformedDocumentError("Workbook is empty (zero-length input)")

        # SyntaxError covers damaged XML parts (ElementTree ParseError, lxml XMLSyntaxError)
        try:
            wb = openpyxl.load_workbook(io.BytesIO(data), data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError, SyntaxError) as e:
            raise MalformedDocumentError(f"Failed to parse workbook: {e}") from e

        sheets = {}
        try:
            for ws in wb.worksheets:
                sheets[ws.title] = self._read_sheet(ws)
        finally:
            wb.close()
        return sheets

    def _read_sheet(self, ws) -> RawSheet:
        rows_iter = ws.iter_rows(values_only=True)
        header_cells = next(rows_iter, None) or ()

        headers: List[Optional[str]] = []
        for value in header_cells:
            header = str(value).strip() if value is not None else ""
            headers.append(header or None)

        rows = []
        for row_number, values in enumerate(rows_iter, start=2):
            row_dict = {}
            for header, value in zip(headers, values):
                if header is None:
                    continue
                row_dict[header] = value
            rows.append((row_number, row_dict))

        return RawSheet(ws.title, [h for h in headers if h], rows)

    def write(self, sheets: List[Tuple[str, List[Tuple[str, int, bool]], List[List[Any]]]]) -> bytes:
        """Write sheets to a workbook and return its bytes.

        Args:
            sheets: (sheet_name, columns, rows) triples. columns are
                    (header, width, hidden) tuples; rows are value lists in
                    column order.
        """
        wb = openpyxl.Workbook()
        wb.remove(wb.active)

        for sheet_name, columns, rows in sheets:
            ws = wb.create_sheet(title=sheet_name)

            for col_idx, (header, width, hidden) in enumerate(columns, start=1):
                ws.cell(row=1, column=col_idx, value=header)
                letter = get_column_letter(col_idx)
                ws.column_dimensions[letter].width = width
                if hidden:
                    ws.column_dimensions[letter].hidden = True

            for row_idx, values in enumerate(rows, start=2):
                for col_idx, value in enumerate(values, start=1):
                    ws.cell(row=row_idx, column=col_idx, value=value)

            ws.freeze_panes = "A2"

        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()
