"""
OCR payload schema.

The extraction service output is untrusted and often incomplete, so every
field is optional. Amount fields are typed as Decimal and anything that
does not parse becomes None instead of failing the whole payload.
"""
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .amounts import parse_decimal


def _as_text(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    return value


class OcrLineItem(BaseModel):
    """One raw line item as extracted from the document."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    line_num: Optional[int] = None
    description: Optional[str] = None
    hsn_sac: Optional[str] = None
    tax_code: Optional[str] = None
    tds_code: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    tds_amount: Optional[Decimal] = None
    cgst_amount: Optional[Decimal] = None
    sgst_amount: Optional[Decimal] = None
    igst_amount: Optional[Decimal] = None
    utgst_amount: Optional[Decimal] = None
    total: Optional[Decimal] = None

    @field_validator("description", "hsn_sac", "tax_code", "tds_code", mode="before")
    @classmethod
    def _text_fields(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator(
        "quantity", "unit_price", "discount", "subtotal", "tds_amount",
        "cgst_amount", "sgst_amount", "igst_amount", "utgst_amount", "total",
        mode="before",
    )
    @classmethod
    def _amount_fields(cls, value: Any) -> Optional[Decimal]:
        return parse_decimal(value)

    @field_validator("line_num", mode="before")
    @classmethod
    def _line_num(cls, value: Any) -> Optional[int]:
        parsed = parse_decimal(value)
        return None if parsed is None else int(parsed)

    def get(self, name: str) -> Any:
        return getattr(self, name, None)


class OcrPayload(BaseModel):
    """Header fields plus the ordered raw line items of one extraction."""
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    gst_number: Optional[str] = None
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_pan: Optional[str] = None
    vendor_email: Optional[str] = None
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    currency: Optional[str] = None
    subtotal_amount: Optional[Decimal] = None
    cgst_amount: Optional[Decimal] = None
    sgst_amount: Optional[Decimal] = None
    igst_amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    line_items: List[OcrLineItem] = Field(
        default_factory=list,
        validation_alias=AliasChoices("line_items", "invoice_lineitems"),
    )

    @field_validator(
        "invoice_number", "invoice_date", "due_date", "gst_number", "vendor_id",
        "vendor_name", "vendor_pan", "vendor_email", "billing_address",
        "shipping_address", "currency",
        mode="before",
    )
    @classmethod
    def _text_fields(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator(
        "subtotal_amount", "cgst_amount", "sgst_amount", "igst_amount",
        "total_amount",
        mode="before",
    )
    @classmethod
    def _amount_fields(cls, value: Any) -> Optional[Decimal]:
        return parse_decimal(value)

    @field_validator("line_items", mode="before")
    @classmethod
    def _line_items(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, (dict, OcrLineItem))]

    def get(self, name: str) -> Any:
        """Header value by field name, None when the schema has no such field."""
        if name == "line_items":
            return None
        return getattr(self, name, None)

    def line_at(self, index: int) -> Optional[OcrLineItem]:
        if 0 <= index < len(self.line_items):
            return self.line_items[index]
        return None
