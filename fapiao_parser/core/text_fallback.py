"""Best-effort regex extraction of an invoice from unstructured reply text.

Used only when no JSON could be recovered from a reply. The heuristics are
approximate by nature: a ``label: value`` line per field (English or Chinese
labels, ASCII or full-width colon) and ``name price quantity`` lines for items.
Nothing here raises; fields that are not found keep their defaults.
"""
import re
from typing import Dict, List, Optional, Sequence

from .models import InvoiceRecord, LineItem

FIELD_LABELS: Dict[str, Sequence[str]] = {
    "amount": ("total amount", "amount", "total", "价税合计", "总金额", "合计金额", "金额"),
    "tax_id": ("tax id", "tax number", "taxid", "纳税人识别号", "税号"),
    "date": ("invoice date", "date", "开票日期", "日期"),
    "seller": ("seller", "vendor", "销售方名称", "销售方"),
    "buyer": ("buyer", "purchaser", "购买方名称", "购买方"),
    "invoice_type": ("invoice type", "type", "发票类型"),
}

_BULLET = r"^[\s\-*•>#\d.)]*"
_SEPARATOR = r"\s*[:：]\s*"

_ITEM_LINE = re.compile(
    r"^\s*(?:[-*•]\s*)?(?P<name>[^\d\s:：][^:：]*?)\s+"
    r"(?P<price>[-+]?[¥￥$]?\d[\d,，]*(?:\.\d+)?)\s*(?:元)?\s+"
    r"[x×*]?\s*(?P<quantity>\d+(?:\.\d+)?)\s*$"
)


def _label_pattern(labels: Sequence[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(label) for label in labels)
    return re.compile(_BULLET + r"(?:\*\*)?(?:" + alternatives + r")(?:\*\*)?" + _SEPARATOR + r"(?P<value>.+?)\s*$",
                      re.IGNORECASE)


_FIELD_PATTERNS = {field: _label_pattern(labels) for field, labels in FIELD_LABELS.items()}


def _find_field(lines: List[str], pattern: re.Pattern) -> Optional[str]:
    for line in lines:
        match = pattern.match(line)
        if match:
            return match.group("value").strip().strip('",')
    return None


def extract_items_from_text(lines: List[str]) -> List[LineItem]:
    items = []
    for line in lines:
        if any(pattern.match(line) for pattern in _FIELD_PATTERNS.values()):
            continue
        match = _ITEM_LINE.match(line)
        if match:
            items.append(LineItem(
                name=match.group("name"),
                price=match.group("price"),
                quantity=match.group("quantity"),
            ))
    return items


def extract_record_from_text(text: str) -> InvoiceRecord:
    """
    Pull whatever invoice fields can be found in free text.

    Args:
        text: Raw reply text with no recoverable JSON

    Returns:
        InvoiceRecord; fields that were not found keep their defaults
    """
    if not isinstance(text, str) or not text.strip():
        return InvoiceRecord()

    lines = text.splitlines()
    values = {field: _find_field(lines, pattern) for field, pattern in _FIELD_PATTERNS.items()}
    values["items"] = extract_items_from_text(lines)
    return InvoiceRecord(**values)
