"""Mapping of recovered model JSON onto the canonical fapiao schema.

The model is free to name fields however it likes and regularly switches
between English and Chinese keys. Each canonical field has a fixed alias list;
the first alias present in the raw object wins.

This module is also the single place where a reply element is classified as a
record, a summary or a CSV fragment (see ``classify_entry``).
"""
import csv
import io
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .models import (
    BatchEntry,
    CategoryTotal,
    CsvEntry,
    InvoiceRecord,
    LineItem,
    RecordEntry,
    SummaryEntry,
    SummaryRecord,
)
from .numeric import coerce_number

logger = logging.getLogger(__name__)

RECORD_ALIASES: Dict[str, Sequence[str]] = {
    "amount": ("amount", "total", "totalAmount", "total_amount", "金额", "总金额", "价税合计", "合计金额", "报销金额"),
    "tax_id": ("taxId", "tax_id", "tax_number", "taxNumber", "tax", "税号", "纳税人识别号", "销售方税号"),
    "date": ("date", "invoiceDate", "invoice_date", "开票日期", "日期"),
    "seller": ("seller", "sellerName", "vendor", "销售方", "销售方名称"),
    "buyer": ("buyer", "buyerName", "purchaser", "购买方", "购买方名称"),
    "invoice_type": ("invoiceType", "invoice_type", "type", "发票类型"),
}

ITEMS_ALIASES: Sequence[str] = ("items", "lineItems", "line_items", "商品明细", "项目明细", "明细")

ITEM_ALIASES: Dict[str, Sequence[str]] = {
    "name": ("name", "item", "itemName", "项目名称", "商品名称", "名称"),
    "category": ("category", "cat", "分类", "类别"),
    "price": ("price", "unitPrice", "unit_price", "单价"),
    "quantity": ("quantity", "qty", "数量"),
}

SUMMARY_ALIASES: Dict[str, Sequence[str]] = {
    "total_amount": ("totalAmount", "total_amount", "total", "总金额", "合计"),
    "by_category": ("byCategory", "by_category", "categories", "按分类", "分类汇总"),
    "by_date": ("byDate", "by_date", "dates", "按日期", "日期汇总"),
}

CATEGORY_ALIASES: Dict[str, Sequence[str]] = {
    "count": ("count", "invoiceCount", "数量", "发票数量"),
    "total": ("total", "amount", "totalAmount", "总金额", "金额"),
}

# Dict keys that hold a list of records inside a single reply object
RECORD_LIST_KEYS = ("invoices", "records", "fapiao", "parsedFapiao")

# Dict keys that wrap a single record
RECORD_WRAPPER_KEYS = ("record", "invoice")

# Category used when an invoice has no categorised line item
DEFAULT_CATEGORY = "其他"

# Largest rounding difference accepted between model and record totals
TOTAL_TOLERANCE = 0.005


def pick_alias(raw: Mapping[str, Any], aliases: Iterable[str]) -> Any:
    """Return the value of the first alias present (and not null) in raw."""
    for alias in aliases:
        if alias in raw and raw[alias] is not None:
            return raw[alias]
    return None


def normalize_item(raw: Any) -> LineItem:
    if not isinstance(raw, Mapping):
        return LineItem(name=raw if isinstance(raw, str) else "")
    return LineItem(**{field: pick_alias(raw, aliases) for field, aliases in ITEM_ALIASES.items()})


def normalize_record(raw: Any) -> InvoiceRecord:
    """
    Map a raw model object onto an InvoiceRecord.

    Missing fields default to "" or 0; never raises for any JSON input.
    """
    if not isinstance(raw, Mapping):
        return InvoiceRecord()

    values = {field: pick_alias(raw, aliases) for field, aliases in RECORD_ALIASES.items()}

    raw_items = pick_alias(raw, ITEMS_ALIASES)
    if isinstance(raw_items, Mapping):
        raw_items = [raw_items]
    if not isinstance(raw_items, list):
        raw_items = []
    values["items"] = [normalize_item(item) for item in raw_items]

    return InvoiceRecord(**values)


def _normalize_category_total(raw: Any) -> CategoryTotal:
    if isinstance(raw, Mapping):
        return CategoryTotal(
            count=pick_alias(raw, CATEGORY_ALIASES["count"]),
            total=pick_alias(raw, CATEGORY_ALIASES["total"]),
        )
    # A bare number is the category total
    return CategoryTotal(count=0, total=raw)


def normalize_summary(raw: Any) -> SummaryRecord:
    """Map a raw model summary object onto a SummaryRecord."""
    if not isinstance(raw, Mapping):
        return SummaryRecord()

    by_category = pick_alias(raw, SUMMARY_ALIASES["by_category"])
    by_date = pick_alias(raw, SUMMARY_ALIASES["by_date"])

    return SummaryRecord(
        total_amount=pick_alias(raw, SUMMARY_ALIASES["total_amount"]),
        by_category={
            str(name): _normalize_category_total(entry)
            for name, entry in (by_category.items() if isinstance(by_category, Mapping) else [])
        },
        by_date=dict(by_date) if isinstance(by_date, Mapping) else {},
    )


def _csv_text(raw: Any) -> str:
    """CSV payloads are usually text, sometimes a list of rows."""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        for row in raw:
            if isinstance(row, (list, tuple)):
                writer.writerow(["" if cell is None else cell for cell in row])
            elif isinstance(row, str):
                buffer.write(row.rstrip("\n") + "\n")
        return buffer.getvalue()
    return ""


def classify_entry(obj: Any) -> Optional[BatchEntry]:
    """
    Decide whether one reply element is a record, a summary or a CSV fragment.

    Returns None for elements that carry no usable object.
    """
    if not isinstance(obj, Mapping):
        return None
    if "csv" in obj:
        return CsvEntry(value=_csv_text(obj["csv"]))
    if "summary" in obj:
        return SummaryEntry(value=normalize_summary(obj["summary"]))
    for key in RECORD_WRAPPER_KEYS:
        if isinstance(obj.get(key), Mapping):
            return RecordEntry(value=normalize_record(obj[key]))
    return RecordEntry(value=normalize_record(obj))


def classify_reply(value: Any) -> List[BatchEntry]:
    """
    Flatten a recovered reply into an ordered list of tagged entries.

    Nested arrays are flattened in order (the model sometimes adds an extra
    array layer per fragment). A dict that carries a record list alongside
    ``summary``/``csv`` keys is split into its parts.
    """
    entries: List[BatchEntry] = []

    if isinstance(value, list):
        for element in value:
            entries.extend(classify_reply(element))
        return entries

    if not isinstance(value, Mapping):
        return entries

    list_key = next((key for key in RECORD_LIST_KEYS if isinstance(value.get(key), list)), None)
    if list_key is None:
        entry = classify_entry(value)
        if entry is not None:
            entries.append(entry)
        return entries

    for element in value[list_key]:
        if isinstance(element, Mapping):
            entries.append(RecordEntry(value=normalize_record(element)))
    if "summary" in value:
        entries.append(SummaryEntry(value=normalize_summary(value["summary"])))
    if "csv" in value:
        entries.append(CsvEntry(value=_csv_text(value["csv"])))
    return entries


def record_category(record: InvoiceRecord) -> str:
    """Category an invoice is summarised under: its first item's category."""
    if record.items and record.items[0].category:
        return record.items[0].category
    return DEFAULT_CATEGORY


def summarize_records(records: Sequence[InvoiceRecord]) -> SummaryRecord:
    """Compute the summary of records locally."""
    by_category: Dict[str, Dict[str, float]] = {}
    by_date: Dict[str, float] = {}
    total = 0.0

    for record in records:
        total += record.amount
        if record.date:
            by_date[record.date] = by_date.get(record.date, 0.0) + record.amount
        bucket = by_category.setdefault(record_category(record), {"count": 0, "total": 0.0})
        bucket["count"] += 1
        bucket["total"] += record.amount

    return SummaryRecord(
        total_amount=total,
        by_category={name: CategoryTotal(**bucket) for name, bucket in by_category.items()},
        by_date=by_date,
    )


def reconcile_summary(summary: Optional[SummaryRecord], records: Sequence[InvoiceRecord]) -> SummaryRecord:
    """
    Constrain a model-produced summary to what the records support.

    Category and date keys that do not occur in ``records`` are dropped, and a
    total that disagrees with the records is replaced by their sum. A missing
    or empty summary is replaced by the locally computed one.
    """
    local = summarize_records(records)
    if summary is None or summary.is_empty():
        return local

    known_categories = set(local.by_category)
    known_categories.update(item.category for record in records for item in record.items if item.category)
    known_dates = {record.date for record in records if record.date}

    phantom_categories = set(summary.by_category) - known_categories
    phantom_dates = set(summary.by_date) - known_dates
    if phantom_categories or phantom_dates:
        logger.warning(
            f"[SUMMARY] Dropping keys not present in records: "
            f"categories={sorted(phantom_categories)} dates={sorted(phantom_dates)}"
        )

    total_amount = summary.total_amount
    if abs(total_amount - local.total_amount) > TOTAL_TOLERANCE:
        logger.warning(
            f"[SUMMARY] Model total {total_amount:g} does not match records total "
            f"{local.total_amount:g}; using the records total"
        )
        total_amount = local.total_amount

    return SummaryRecord(
        total_amount=total_amount,
        by_category={k: v for k, v in summary.by_category.items() if k in known_categories},
        by_date={k: v for k, v in summary.by_date.items() if k in known_dates},
    )
