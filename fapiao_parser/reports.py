"""
Export helpers for pipeline results.

CSV exports carry a UTF-8 BOM so spreadsheet programs pick the right encoding
for Chinese text. JSON exports keep non-ASCII characters as-is.
"""

import csv
import io
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import openpyxl
from openpyxl.styles import Font, PatternFill

from .core.csv_utils import BOM, DEFAULT_HEADERS, HEADER_FIELDS
from .core.models import PipelineResult

logger = logging.getLogger(__name__)

JSON_EXPORT_FILE = "fapiao_records.json"
CSV_EXPORT_FILE = "fapiao_summary.csv"
EXCEL_EXPORT_FILE = "fapiao_records.xlsx"


def csv_bytes(csv_text: str) -> bytes:
    """CSV text as UTF-8 bytes with exactly one leading BOM."""
    return (BOM + csv_text.lstrip(BOM)).encode("utf-8")


def write_csv_export(csv_text: str, output_file: Path) -> Path:
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_bytes(csv_bytes(csv_text))
    logger.info(f"CSV saved to {output_file}")
    return output_file


def build_json_export(result: PipelineResult, include_summary: bool = True) -> Dict[str, Any]:
    """
    ``{"invoices": [...]}`` plus ``"summary"`` when requested.

    Replies that yielded no structured data are listed under
    ``"recoveryMisses"`` with their raw text, only when there are any.
    """
    export: Dict[str, Any] = {
        "invoices": [record.model_dump(by_alias=True) for record in result.records],
    }
    if include_summary:
        export["summary"] = result.summary.model_dump(by_alias=True)
    if result.recovery_misses:
        export["recoveryMisses"] = [miss.model_dump(by_alias=True) for miss in result.recovery_misses]
    return export


def write_json_export(result: PipelineResult, output_file: Path, include_summary: bool = True) -> Path:
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    with open(output_file, "w", encoding="utf-8") as f:
        json.dump(build_json_export(result, include_summary), f, indent=2, ensure_ascii=False)
    logger.info(f"JSON saved to {output_file}")
    return output_file


def create_worksheet(workbook, sheet_name: str, headers: List[str], data_rows: List[List], header_color: str = "366092"):
    """
    Helper function to create a worksheet with headers and data.

    Args:
        workbook: openpyxl workbook object
        sheet_name: Name of the worksheet
        headers: List of header strings
        data_rows: List of lists, each containing row data
        header_color: Hex color for header background (default: blue)
    """
    ws = workbook.create_sheet(sheet_name)

    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = Font(bold=True)
        cell.fill = PatternFill(start_color=header_color, end_color=header_color, fill_type="solid")

    for row_idx, row_data in enumerate(data_rows, 2):
        for col, value in enumerate(row_data, 1):
            ws.cell(row=row_idx, column=col, value=value)

    return ws


def _csv_rows(csv_text: str) -> List[List[str]]:
    return [row for row in csv.reader(io.StringIO(csv_text.lstrip(BOM))) if row]


def write_excel_export(
    result: PipelineResult,
    output_file: Path,
    headers: Optional[Sequence[str]] = None,
    include_summary: bool = True,
) -> Path:
    """
    Write records (and optionally the summary) to an xlsx workbook.

    The invoice sheet follows the template headers when given. Otherwise it
    reuses the model's CSV table, and falls back to the default columns when
    the result has no CSV.
    """
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)

    csv_rows = _csv_rows(result.csv) if result.csv else []
    if headers:
        sheet_headers = list(headers)
        data_rows = [
            [HEADER_FIELDS[h.strip()](record) if h.strip() in HEADER_FIELDS else "" for h in sheet_headers]
            for record in result.records
        ]
    elif csv_rows:
        sheet_headers, data_rows = csv_rows[0], csv_rows[1:]
    else:
        sheet_headers = list(DEFAULT_HEADERS)
        data_rows = [[HEADER_FIELDS[h](record) for h in sheet_headers] for record in result.records]
    create_worksheet(workbook, "Invoices", sheet_headers, data_rows, "70AD47")

    if include_summary:
        summary = result.summary
        rows: List[List] = [["总金额", "", summary.total_amount]]
        rows.extend([["分类", name, entry.total, entry.count] for name, entry in summary.by_category.items()])
        rows.extend([["日期", day, amount] for day, amount in summary.by_date.items()])
        create_worksheet(workbook, "Summary", ["类型", "键", "金额", "数量"], rows)

    workbook.save(output_file)
    logger.info(f"Excel report saved to {output_file}")
    return output_file
