"""Tests for the free-text fallback extractor."""
from fapiao_parser.core.text_fallback import extract_items_from_text, extract_record_from_text


def test_chinese_labels():
    text = "\n".join([
        "发票类型：增值税电子普通发票",
        "开票日期: 2024-05-06",
        "销售方：北京某某科技有限公司",
        "税号: 91110108MA01XXXX",
        "**金额**: ¥1,280.00",
        "办公用品 80.00 3",
    ])
    record = extract_record_from_text(text)
    assert record.invoice_type == "增值税电子普通发票"
    assert record.date == "2024-05-06"
    assert record.seller == "北京某某科技有限公司"
    assert record.tax_id == "91110108MA01XXXX"
    assert record.amount == 1280.0
    assert len(record.items) == 1
    assert record.items[0].name == "办公用品"
    assert record.items[0].price == 80.0
    assert record.items[0].quantity == 3.0


def test_english_labels():
    text = "Seller: ACME Ltd\nTotal Amount: 1,000.50\nDate: 2024-01-02\n- Buyer: Example Co"
    record = extract_record_from_text(text)
    assert record.seller == "ACME Ltd"
    assert record.amount == 1000.5
    assert record.date == "2024-01-02"
    assert record.buyer == "Example Co"


def test_item_lines():
    items = extract_items_from_text(["- 咖啡 32元 x2", "停车费 10 1", "no numbers here"])
    assert [(item.name, item.price, item.quantity) for item in items] == [
        ("咖啡", 32.0, 2.0),
        ("停车费", 10.0, 1.0),
    ]


def test_prose_without_fields_gives_empty_record():
    record = extract_record_from_text("Sorry, I cannot read this image.")
    assert record.is_empty()


def test_empty_and_non_text_input():
    assert extract_record_from_text("").is_empty()
    assert extract_record_from_text(None).is_empty()
