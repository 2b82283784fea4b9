"""Tests for data models."""
import base64
import json

import pytest
from pydantic import TypeAdapter, ValidationError

from fapiao_parser.core.exceptions import InputError
from fapiao_parser.core.models import (
    BatchEntry,
    CsvEntry,
    EncodedImage,
    InvoiceRecord,
    PipelineResult,
    RecordEntry,
    RecoveryMiss,
    SourceFile,
    SummaryEntry,
    SummaryRecord,
)


@pytest.fixture
def sample_record_data():
    """Sample record in the camelCase wire format."""
    return {
        "amount": 1280.0,
        "taxId": "91110108MA01XXXX",
        "date": "2024-05-06",
        "seller": "北京某某科技有限公司",
        "buyer": "上海某某有限公司",
        "invoiceType": "增值税电子普通发票",
        "items": [{"name": "办公用品", "category": "办公", "price": 426.67, "quantity": 3}],
    }


class TestInvoiceRecord:
    """Test InvoiceRecord model."""

    def test_from_wire_format(self, sample_record_data):
        record = InvoiceRecord.model_validate(sample_record_data)
        assert record.tax_id == "91110108MA01XXXX"
        assert record.invoice_type == "增值税电子普通发票"
        assert record.items[0].quantity == 3.0

    def test_dump_uses_wire_names(self, sample_record_data):
        record = InvoiceRecord.model_validate(sample_record_data)
        dumped = record.model_dump(by_alias=True)
        assert dumped == {**sample_record_data, "items": [
            {"name": "办公用品", "category": "办公", "price": 426.67, "quantity": 3.0}
        ]}
        # Round trip through JSON text
        assert InvoiceRecord.model_validate_json(record.model_dump_json(by_alias=True)) == record

    def test_populate_by_field_name(self):
        assert InvoiceRecord(tax_id="X").tax_id == "X"

    def test_nulls_become_defaults(self):
        record = InvoiceRecord.model_validate({"amount": None, "seller": None, "items": None})
        assert record.amount == 0.0
        assert record.seller == ""
        assert record.items == []

    def test_frozen(self):
        record = InvoiceRecord(amount=1)
        with pytest.raises(ValidationError):
            record.amount = 2

    def test_is_empty(self):
        assert InvoiceRecord().is_empty()
        assert not InvoiceRecord(seller="A").is_empty()
        assert not InvoiceRecord(amount=1).is_empty()


class TestSummaryRecord:
    """Test SummaryRecord model."""

    def test_wire_names(self):
        summary = SummaryRecord.model_validate({
            "totalAmount": "10",
            "byCategory": {"餐饮": {"count": "2", "total": "10"}},
            "byDate": {"2024-01-01": "10"},
        })
        assert summary.total_amount == 10.0
        assert summary.by_category["餐饮"].count == 2
        assert summary.by_date == {"2024-01-01": 10.0}
        assert set(summary.model_dump(by_alias=True)) == {"totalAmount", "byCategory", "byDate"}

    def test_default_is_empty(self):
        assert SummaryRecord().is_empty()


class TestBatchEntry:
    """Test the tagged union of reply entries."""

    def test_discriminator(self):
        adapter = TypeAdapter(BatchEntry)
        assert isinstance(adapter.validate_python({"kind": "csv", "value": "a,b"}), CsvEntry)
        assert isinstance(adapter.validate_python({"kind": "record", "value": {"amount": 1}}), RecordEntry)
        assert isinstance(adapter.validate_python({"kind": "summary", "value": {}}), SummaryEntry)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            TypeAdapter(BatchEntry).validate_python({"kind": "other", "value": 1})


def test_pipeline_result_serialization():
    result = PipelineResult(
        records=[InvoiceRecord(amount=1)],
        csv="a\n1",
        recovery_misses=[RecoveryMiss(stage="batch 1/1", raw_text="oops")],
    )
    data = json.loads(result.model_dump_json(by_alias=True))
    assert set(data) == {"records", "summary", "csv", "recoveryMisses"}
    assert data["recoveryMisses"] == [{"stage": "batch 1/1", "rawText": "oops"}]
    assert data["summary"] == {"totalAmount": 0.0, "byCategory": {}, "byDate": {}}


class TestSourceFile:
    """Test reading input files."""

    def test_from_path(self, tmp_path):
        path = tmp_path / "Invoice.PNG"
        path.write_bytes(b"png-bytes")
        source = SourceFile.from_path(path)
        assert source.name == "Invoice.PNG"
        assert source.content == b"png-bytes"
        assert source.suffix == ".png"

    def test_missing_file(self, tmp_path):
        with pytest.raises(InputError) as exc_info:
            SourceFile.from_path(tmp_path / "missing.pdf")
        assert "missing.pdf" in str(exc_info.value)
        assert exc_info.value.file_name == "missing.pdf"

    def test_file_too_large(self, tmp_path):
        path = tmp_path / "big.jpg"
        path.write_bytes(b"X" * 2048)
        with pytest.raises(InputError) as exc_info:
            SourceFile.from_path(path, max_size_mb=0.001)
        assert "exceeds maximum allowed size" in str(exc_info.value)


def test_encoded_image_data_url():
    image = EncodedImage.from_bytes("a.png", "image/png", b"\x89PNG")
    assert image.data_url == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()
