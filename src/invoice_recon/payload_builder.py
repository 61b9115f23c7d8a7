"""
Update payload builder
Serializes the header and line rows into the body of the invoice update
request.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .aggregator import aggregate
from .amounts import format_amount, format_quantity, parse_decimal, safe_decimal
from .models import InvoiceHeader, LineItem

DISCOUNT = "0.0000"


def _nullable(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _nullable_amount(value: Any) -> Optional[str]:
    parsed = parse_decimal(value)
    return None if parsed is None else format_amount(parsed)


def build_line_item(row: LineItem, line_num: int) -> Dict[str, Any]:
    """Wire form of one row. ``subtotal`` is quantity x rate; ``total`` is
    the row's net amount, falling back to the subtotal when blank."""
    quantity = safe_decimal(row.quantity)
    rate = safe_decimal(row.rate)
    subtotal = format_amount(quantity * rate)

    item: Dict[str, Any] = {
        "line_num": line_num,
        "description": row.description.strip(),
        "quantity": format_quantity(quantity),
        "rate": format_quantity(rate),
        "hsn_sac": _nullable(row.hsn_code),
        "cgst_amount": _nullable_amount(row.cgst),
        "sgst_amount": _nullable_amount(row.sgst),
        "igst_amount": _nullable_amount(row.igst),
        "utgst_amount": _nullable_amount(row.utgst),
        "discount": DISCOUNT,
        "tax_code": _nullable(row.tax_code),
        "tds_code": _nullable(row.tds_code),
        "tds_amount": _nullable_amount(row.tds_amount),
        "subtotal": subtotal,
        "total": _nullable_amount(row.net_amount) or subtotal,
    }
    if row.line_item_id:
        item["id"] = row.line_item_id
    return item


def build_update_payload(header: InvoiceHeader, rows: List[LineItem]) -> Dict[str, Any]:
    """Full update body: nullable header strings, derived totals, line items."""
    totals = aggregate(rows)
    payload: Dict[str, Any] = {
        "invoice_number": _nullable(header.invoice_number),
        "invoice_date": _nullable(header.invoice_date),
        "gst_number": _nullable(header.gst_number),
        "vendor_id": _nullable(header.vendor_id),
        "vendor_name": _nullable(header.vendor_name),
        "vendor_pan": _nullable(header.vendor_pan),
        "vendor_email": _nullable(header.vendor_email),
        "billing_address": _nullable(header.billing_address),
        "shipping_address": _nullable(header.shipping_address),
        "currency": _nullable(header.currency),
        "subtotal_amount": totals.subtotal,
        "cgst_amount": totals.cgst_total,
        "sgst_amount": totals.sgst_total,
        "igst_amount": totals.igst_total,
        "utgst_amount": totals.utgst_total,
        "total_amount": totals.total_amount,
        "tds_amount": totals.tds_total,
        "payable_amount": totals.payable,
    }
    payload["invoice_lineitems"] = [
        build_line_item(row, line_num) for line_num, row in enumerate(rows, start=1)
    ]
    return payload
