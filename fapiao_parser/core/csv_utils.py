"""
CSV helpers: merging model-produced fragments and rendering records locally.
"""

import csv
import io
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .json_utils import strip_code_fences
from .models import InvoiceRecord
from .normalize import record_category

BOM = "\ufeff"

# Columns used when no template is supplied
DEFAULT_HEADERS = ["开票日期", "发票类型", "销售方", "购买方", "税号", "项目名称", "分类", "金额"]

# Template header -> record value. Unknown headers are left blank.
HEADER_FIELDS: Dict[str, Callable[[InvoiceRecord], Any]] = {
    "金额": lambda r: r.amount,
    "报销金额": lambda r: r.amount,
    "总金额": lambda r: r.amount,
    "amount": lambda r: r.amount,
    "税号": lambda r: r.tax_id,
    "taxId": lambda r: r.tax_id,
    "日期": lambda r: r.date,
    "开票日期": lambda r: r.date,
    "date": lambda r: r.date,
    "发票类型": lambda r: r.invoice_type,
    "invoiceType": lambda r: r.invoice_type,
    "销售方": lambda r: r.seller,
    "商户": lambda r: r.seller,
    "seller": lambda r: r.seller,
    "购买方": lambda r: r.buyer,
    "buyer": lambda r: r.buyer,
    "项目名称": lambda r: "; ".join(item.name for item in r.items if item.name),
    "分类": lambda r: record_category(r),
    "类别": lambda r: record_category(r),
    "category": lambda r: record_category(r),
}


def clean_csv_fragment(fragment: str) -> str:
    """Strip fences, BOMs, blank lines and CRLF line endings from one CSV fragment."""
    if not isinstance(fragment, str):
        return ""
    text = fragment.strip()
    fenced = strip_code_fences(text)
    if fenced:
        text = "\n".join(fenced)
    text = text.replace(BOM, "").replace("\r\n", "\n").replace("\r", "\n")
    # Some replies carry the CSV with escaped newlines
    if "\n" not in text and "\\n" in text:
        text = text.replace("\\n", "\n")
    return "\n".join(line for line in text.split("\n") if line.strip())


def _header_key(line: str) -> str:
    return re.sub(r"\s+", "", line).casefold()


def merge_csv_fragments(fragments: Iterable[str]) -> str:
    """
    Concatenate CSV fragments, keeping a single header line.

    The first non-empty fragment defines the header; a later fragment whose
    first line equals it (ignoring whitespace and case) contributes only its body.
    """
    header: Optional[str] = None
    lines: List[str] = []

    for fragment in fragments:
        cleaned = clean_csv_fragment(fragment)
        if not cleaned:
            continue
        fragment_lines = cleaned.split("\n")
        if header is None:
            header = fragment_lines[0]
            lines.extend(fragment_lines)
            continue
        if _header_key(fragment_lines[0]) == _header_key(header):
            fragment_lines = fragment_lines[1:]
        lines.extend(fragment_lines)

    return "\n".join(lines)


def render_records_csv(records: Sequence[InvoiceRecord], headers: Optional[Sequence[str]] = None) -> str:
    """Render records as CSV text, one row per invoice, following the template headers."""
    headers = list(headers) if headers else list(DEFAULT_HEADERS)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=headers, lineterminator="\n")
    writer.writeheader()
    for record in records:
        row = {}
        for header in headers:
            getter = HEADER_FIELDS.get(header.strip())
            row[header] = getter(record) if getter else ""
        writer.writerow(row)
    return buffer.getvalue().rstrip("\n")
