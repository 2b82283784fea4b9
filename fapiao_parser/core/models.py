"""Canonical data models for fapiao parsing."""
import base64
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import InputError
from .numeric import coerce_number


def _coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


class _WireModel(BaseModel):
    """Frozen model that accepts and emits the camelCase wire names."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class LineItem(_WireModel):
    """A single line on an invoice."""
    name: str = Field(default="", description="Item or service name")
    category: str = Field(default="", description="Item category")
    price: float = Field(default=0.0, description="Unit price")
    quantity: float = Field(default=0.0, description="Quantity")

    @field_validator("name", "category", mode="before")
    @classmethod
    def text_never_null(cls, v):
        return _coerce_text(v)

    @field_validator("price", "quantity", mode="before")
    @classmethod
    def number_never_nan(cls, v):
        return coerce_number(v)


class InvoiceRecord(_WireModel):
    """Normalized invoice record."""
    amount: float = Field(default=0.0, ge=0.0, description="Total invoice amount")
    tax_id: str = Field(default="", alias="taxId", description="Seller tax identification number")
    date: str = Field(default="", description="Issue date as printed (best effort YYYY-MM-DD)")
    seller: str = Field(default="", description="Selling party")
    buyer: str = Field(default="", description="Buying party")
    invoice_type: str = Field(default="", alias="invoiceType", description="Invoice type label")
    items: List[LineItem] = Field(default_factory=list)

    @field_validator("tax_id", "date", "seller", "buyer", "invoice_type", mode="before")
    @classmethod
    def text_never_null(cls, v):
        return _coerce_text(v)

    @field_validator("amount", mode="before")
    @classmethod
    def amount_non_negative(cls, v):
        """Unparseable or negative amounts collapse to 0."""
        return max(coerce_number(v), 0.0)

    @field_validator("items", mode="before")
    @classmethod
    def items_never_null(cls, v):
        if v is None:
            return []
        return v

    def is_empty(self) -> bool:
        """True when no field carries any information."""
        return (
            self.amount == 0
            and not any((self.tax_id, self.date, self.seller, self.buyer, self.invoice_type))
            and not self.items
        )


class CategoryTotal(_WireModel):
    """Invoice count and amount for one category."""
    count: int = Field(default=0, ge=0)
    total: float = Field(default=0.0)

    @field_validator("count", mode="before")
    @classmethod
    def count_from_number(cls, v):
        return max(int(coerce_number(v)), 0)

    @field_validator("total", mode="before")
    @classmethod
    def total_never_nan(cls, v):
        return coerce_number(v)


class SummaryRecord(_WireModel):
    """Aggregation over a set of invoice records."""
    total_amount: float = Field(default=0.0, alias="totalAmount")
    by_category: Dict[str, CategoryTotal] = Field(default_factory=dict, alias="byCategory")
    by_date: Dict[str, float] = Field(default_factory=dict, alias="byDate")

    @field_validator("total_amount", mode="before")
    @classmethod
    def total_never_nan(cls, v):
        return coerce_number(v)

    @field_validator("by_date", mode="before")
    @classmethod
    def dates_never_nan(cls, v):
        if not isinstance(v, dict):
            return {}
        return {str(key): coerce_number(amount) for key, amount in v.items()}

    def is_empty(self) -> bool:
        return self.total_amount == 0 and not self.by_category and not self.by_date


class RecordEntry(_WireModel):
    kind: Literal["record"] = "record"
    value: InvoiceRecord


class SummaryEntry(_WireModel):
    kind: Literal["summary"] = "summary"
    value: SummaryRecord


class CsvEntry(_WireModel):
    kind: Literal["csv"] = "csv"
    value: str


# One element of a model reply: replies are ordered lists of differently tagged objects
BatchEntry = Annotated[Union[RecordEntry, SummaryEntry, CsvEntry], Field(discriminator="kind")]


class RecoveryMiss(_WireModel):
    """Raw reply text kept for diagnostics when no structured data could be recovered."""
    stage: str = Field(..., description="Batch or aggregation label")
    raw_text: str = Field(default="", alias="rawText")


class PipelineResult(_WireModel):
    """Final output of one pipeline run."""
    records: List[InvoiceRecord] = Field(default_factory=list)
    summary: SummaryRecord = Field(default_factory=SummaryRecord)
    csv: str = Field(default="")
    recovery_misses: List[RecoveryMiss] = Field(default_factory=list, alias="recoveryMisses")


class SourceFile(BaseModel):
    """An uploaded or on-disk input file."""
    name: str = Field(..., description="Original file name")
    content: bytes = Field(..., repr=False)
    mime_type: Optional[str] = Field(default=None, description="Declared MIME type, if any")

    @property
    def suffix(self) -> str:
        return Path(self.name).suffix.lower()

    @property
    def size_mb(self) -> float:
        return len(self.content) / (1024 * 1024)

    @classmethod
    def from_path(cls, path: Path | str, max_size_mb: Optional[float] = None) -> "SourceFile":
        """Read a file from disk.

        Raises:
            InputError: If the file is missing, unreadable or too large
        """
        path = Path(path)
        try:
            if not path.is_file():
                raise InputError("file not found", path.name)
            size_mb = path.stat().st_size / (1024 * 1024)
            if max_size_mb is not None and size_mb > max_size_mb:
                raise InputError(
                    f"file size ({size_mb:.1f}MB) exceeds maximum allowed size ({max_size_mb}MB)",
                    path.name,
                )
            return cls(name=path.name, content=path.read_bytes())
        except OSError as e:
            raise InputError("unable to read file", path.name, e)


class EncodedImage(BaseModel):
    """Base64 image payload ready to be embedded in a model request."""
    source_name: str
    mime_type: str
    data: str = Field(..., repr=False, description="Base64-encoded image bytes")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    @classmethod
    def from_bytes(cls, source_name: str, mime_type: str, payload: bytes) -> "EncodedImage":
        return cls(
            source_name=source_name,
            mime_type=mime_type,
            data=base64.b64encode(payload).decode("ascii"),
        )
