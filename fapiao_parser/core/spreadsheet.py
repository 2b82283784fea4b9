"""Template spreadsheet readers.

Only the header row of a template matters: the first row of the first sheet.
CSV templates count as a workbook with a single implicit sheet.
"""
import csv
import io
import logging
from typing import List, Protocol

import openpyxl

from .exceptions import InputError
from .models import SourceFile

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xltx", ".xltm")
TEXT_SUFFIXES = (".csv", ".txt")
SPREADSHEET_SUFFIXES = EXCEL_SUFFIXES + TEXT_SUFFIXES + (".xls",)


def _trim_header_row(cells) -> List[str]:
    headers = ["" if cell is None else str(cell).strip() for cell in cells]
    while headers and not headers[-1]:
        headers.pop()
    return headers


class SpreadsheetReader(Protocol):
    """Reads the header row of a template file."""

    def read_headers(self, source: SourceFile) -> List[str]:
        ...


class OpenpyxlSpreadsheetReader:
    """Reads xlsx/xlsm workbooks with openpyxl and CSV/TXT files with the csv module."""

    def read_headers(self, source: SourceFile) -> List[str]:
        suffix = source.suffix
        if suffix in TEXT_SUFFIXES:
            return self._read_csv_headers(source)
        if suffix in EXCEL_SUFFIXES:
            return self._read_workbook_headers(source)
        if suffix == ".xls":
            raise InputError("legacy .xls templates are not supported; save the template as .xlsx or .csv",
                             source.name)
        raise InputError(f"unsupported template type '{suffix or 'unknown'}'", source.name)

    def _read_csv_headers(self, source: SourceFile) -> List[str]:
        try:
            text = source.content.decode("utf-8-sig")
        except UnicodeDecodeError:
            try:
                text = source.content.decode("gb18030")
            except UnicodeDecodeError as e:
                raise InputError("template CSV is not valid UTF-8 or GB18030 text", source.name, e)
        first_row = next(csv.reader(io.StringIO(text)), [])
        return _trim_header_row(first_row)

    def _read_workbook_headers(self, source: SourceFile) -> List[str]:
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(source.content), read_only=True, data_only=True)
        except Exception as e:
            raise InputError("unable to open template workbook", source.name, e)
        try:
            sheet = workbook.worksheets[0]
            first_row = next(sheet.iter_rows(min_row=1, max_row=1, values_only=True), ())
            return _trim_header_row(first_row)
        finally:
            workbook.close()


class UnconfiguredSpreadsheetReader:
    """Placeholder reader for deployments without template support.

    Construction always succeeds; reading fails with a clear InputError.
    """

    def read_headers(self, source: SourceFile) -> List[str]:
        raise InputError("no spreadsheet reader is configured; templates cannot be read", source.name)


def read_template_headers(source: SourceFile, reader: SpreadsheetReader) -> List[str]:
    """Return the template's column headers in order."""
    headers = reader.read_headers(source)
    logger.info(f"[TEMPLATE] {source.name} - {len(headers)} header column(s)")
    return headers
