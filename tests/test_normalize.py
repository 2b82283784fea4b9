"""Tests for record normalization, reply classification and summaries."""
import math

import pytest

from fapiao_parser.core.models import (
    CategoryTotal,
    CsvEntry,
    InvoiceRecord,
    LineItem,
    RecordEntry,
    SummaryEntry,
    SummaryRecord,
)
from fapiao_parser.core.normalize import (
    DEFAULT_CATEGORY,
    classify_entry,
    classify_reply,
    normalize_record,
    normalize_summary,
    reconcile_summary,
    summarize_records,
)
from fapiao_parser.core.numeric import coerce_number


class TestCoerceNumber:
    """Test numeric coercion never raises."""

    @pytest.mark.parametrize("value,expected", [
        ("1,234.50元", 1234.5),
        ("¥ 88", 88.0),
        ("1，000", 1000.0),
        ("1 000.25", 1000.25),
        ("-12.5", -12.5),
        ("合计: 99.9", 99.9),
        (".5", 0.5),
        (7, 7.0),
        (3.25, 3.25),
        ("abc", 0.0),
        ("", 0.0),
        (None, 0.0),
        (True, 0.0),
        ([], 0.0),
        ({"a": 1}, 0.0),
        (float("nan"), 0.0),
        (float("inf"), 0.0),
        (10 ** 400, 0.0),
        ("1" + "0" * 400, 0.0),
    ])
    def test_coerce_number(self, value, expected):
        result = coerce_number(value)
        assert isinstance(result, float)
        assert not math.isnan(result)
        assert result == pytest.approx(expected)


class TestNormalizeRecord:
    """Test alias mapping onto InvoiceRecord."""

    def test_chinese_aliases(self):
        record = normalize_record({
            "金额": "1,200.00",
            "税号": "91310000MA1FL0000X",
            "开票日期": "2024-03-01",
            "销售方": "上海某某餐饮有限公司",
            "购买方": "某某科技有限公司",
            "发票类型": "增值税普通发票",
            "项目明细": [{"项目名称": "餐饮服务", "分类": "餐饮", "单价": "600", "数量": "2"}],
        })
        assert record.amount == 1200.0
        assert record.tax_id == "91310000MA1FL0000X"
        assert record.date == "2024-03-01"
        assert record.seller == "上海某某餐饮有限公司"
        assert record.buyer == "某某科技有限公司"
        assert record.invoice_type == "增值税普通发票"
        assert record.items == [LineItem(name="餐饮服务", category="餐饮", price=600, quantity=2)]

    def test_english_variants(self):
        record = normalize_record({
            "total": "88",
            "tax_number": "X1",
            "invoice_date": "2024-04-01",
            "vendor": "Didi",
            "type": "electronic",
            "lineItems": [{"item": "ride", "cat": "交通", "unitPrice": 88, "qty": 1}],
        })
        assert record.amount == 88.0
        assert record.tax_id == "X1"
        assert record.date == "2024-04-01"
        assert record.seller == "Didi"
        assert record.invoice_type == "electronic"
        assert record.items[0].name == "ride"
        assert record.items[0].category == "交通"

    def test_first_alias_wins(self):
        assert normalize_record({"amount": 10, "total": 99}).amount == 10.0

    def test_null_alias_is_skipped(self):
        assert normalize_record({"amount": None, "total": 99}).amount == 99.0

    def test_missing_fields_default(self):
        record = normalize_record({})
        assert record == InvoiceRecord()
        assert record.amount == 0.0
        assert record.tax_id == ""
        assert record.items == []
        assert record.is_empty()

    def test_negative_amount_clamped(self):
        assert normalize_record({"amount": "-50"}).amount == 0.0

    def test_non_dict_input(self):
        assert normalize_record("not a record") == InvoiceRecord()
        assert normalize_record(None) == InvoiceRecord()

    def test_items_as_single_object(self):
        record = normalize_record({"items": {"name": "停车费", "price": 10}})
        assert len(record.items) == 1
        assert record.items[0].name == "停车费"

    def test_non_string_fields_become_text(self):
        record = normalize_record({"taxId": 12345, "seller": None})
        assert record.tax_id == "12345"
        assert record.seller == ""


def test_normalize_summary_with_bare_category_number():
    summary = normalize_summary({
        "totalAmount": "300",
        "byCategory": {"餐饮": 200, "交通": {"count": 1, "total": "100"}},
        "byDate": {"2024-03-01": "300"},
    })
    assert summary.total_amount == 300.0
    assert summary.by_category["餐饮"] == CategoryTotal(count=0, total=200)
    assert summary.by_category["交通"] == CategoryTotal(count=1, total=100)
    assert summary.by_date == {"2024-03-01": 300.0}


def test_normalize_summary_non_dict():
    assert normalize_summary(["x"]) == SummaryRecord()


class TestClassify:
    """Test the record/summary/csv decision."""

    def test_classify_entry_kinds(self):
        assert isinstance(classify_entry({"csv": "a,b\n1,2"}), CsvEntry)
        assert isinstance(classify_entry({"summary": {"totalAmount": 1}}), SummaryEntry)
        assert isinstance(classify_entry({"amount": 1}), RecordEntry)
        assert classify_entry("text") is None
        assert classify_entry(None) is None

    def test_classify_entry_record_wrapper(self):
        entry = classify_entry({"invoice": {"amount": 5}})
        assert entry.kind == "record"
        assert entry.value.amount == 5.0

    def test_csv_rows_are_rendered(self):
        entry = classify_entry({"csv": [["日期", "金额"], ["2024-01-01", 10]]})
        assert entry.value == "日期,金额\n2024-01-01,10\n"

    def test_classify_reply_flattens_nested_arrays(self):
        entries = classify_reply([
            [{"amount": 1}],
            [{"amount": 2}],
            {"summary": {"totalAmount": 3}},
            {"csv": "h\n1"},
            "stray text",
        ])
        assert [entry.kind for entry in entries] == ["record", "record", "summary", "csv"]
        assert [entry.value.amount for entry in entries[:2]] == [1.0, 2.0]

    def test_classify_reply_splits_dict_with_record_list(self):
        entries = classify_reply({
            "invoices": [{"amount": 1}, {"amount": 2}],
            "summary": {"totalAmount": 3},
            "csv": "h\n1",
        })
        assert [entry.kind for entry in entries] == ["record", "record", "summary", "csv"]

    def test_classify_reply_scalar(self):
        assert classify_reply(42) == []


@pytest.fixture
def records():
    return [
        InvoiceRecord(amount=100, date="2024-03-01", items=[LineItem(name="午餐", category="餐饮")]),
        InvoiceRecord(amount=50, date="2024-03-01", items=[LineItem(name="晚餐", category="餐饮")]),
        InvoiceRecord(amount=30, date="2024-03-02", items=[LineItem(name="打车", category="交通")]),
        InvoiceRecord(amount=20, date=""),
    ]


def test_summarize_records(records):
    summary = summarize_records(records)
    assert summary.total_amount == 200.0
    assert summary.by_category == {
        "餐饮": CategoryTotal(count=2, total=150),
        "交通": CategoryTotal(count=1, total=30),
        DEFAULT_CATEGORY: CategoryTotal(count=1, total=20),
    }
    assert summary.by_date == {"2024-03-01": 150.0, "2024-03-02": 30.0}


def test_summarize_no_records():
    assert summarize_records([]) == SummaryRecord()


def test_reconcile_drops_phantom_keys(records):
    model_summary = SummaryRecord(
        total_amount=200,
        by_category={"餐饮": CategoryTotal(count=2, total=150), "住宿": CategoryTotal(count=1, total=400)},
        by_date={"2024-03-01": 150, "2023-12-31": 400},
    )
    reconciled = reconcile_summary(model_summary, records)
    assert set(reconciled.by_category) == {"餐饮"}
    assert set(reconciled.by_date) == {"2024-03-01"}
    assert reconciled.total_amount == 200.0


def test_reconcile_missing_summary_uses_local(records):
    assert reconcile_summary(None, records) == summarize_records(records)
    assert reconcile_summary(SummaryRecord(), records) == summarize_records(records)


def test_reconcile_replaces_mismatched_total(records):
    model_summary = SummaryRecord(total_amount=1280, by_date={"2023-12-31": 1280})
    reconciled = reconcile_summary(model_summary, records)
    assert reconciled.total_amount == 200.0
    assert reconciled.by_date == {}


def test_reconcile_keeps_total_within_rounding(records):
    model_summary = SummaryRecord(total_amount=200.004, by_date={"2024-03-01": 150})
    assert reconcile_summary(model_summary, records).total_amount == pytest.approx(200.004)
