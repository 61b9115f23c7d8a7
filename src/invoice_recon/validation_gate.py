"""
Validation Gate
Required-field and value-range checks run before update/submit. Advisory
only: it reports errors and never corrects the invoice.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from . import recon_config as cfg
from .amounts import ZERO, parse_decimal
from .models import InvoiceHeader, LineItem, ValidationResult


class ValidationGate:
    """Validate the header and every line row of an invoice under review."""

    def __init__(self, gstin_length: Optional[int] = None) -> None:
        self.gstin_length = gstin_length or cfg.GSTIN_LENGTH

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(self, header: InvoiceHeader, rows: List[LineItem]) -> ValidationResult:
        """Run all checks and return header and per-row error maps."""
        result = ValidationResult()

        self._check_header(header, result)

        if not rows:
            result.add_header_error(
                "line_items", "At least one line item is required"
            )
        for row in rows:
            self._check_row(row, result)

        return result

    # ------------------------------------------------------------------
    # Private checks
    # ------------------------------------------------------------------

    def _check_header(self, header: InvoiceHeader, result: ValidationResult) -> None:
        for name, label in cfg.REQUIRED_HEADER_FIELDS.items():
            if not getattr(header, name, "").strip():
                result.add_header_error(name, f"{label} is required")

        gstin = header.gst_number.strip()
        if gstin and len(gstin) != self.gstin_length:
            result.add_header_error(
                "gst_number",
                f"GST number must be {self.gstin_length} characters",
            )

    def _check_row(self, row: LineItem, result: ValidationResult) -> None:
        rid = row.row_id

        if not row.description.strip():
            result.add_row_error(rid, "description", "Description is required")

        self._require_amount(row, "quantity", "Quantity", result, strictly_positive=True)
        self._require_amount(row, "rate", "Rate", result, strictly_positive=True)

        if not row.tds_code.strip():
            result.add_row_error(rid, "tds_code", "TDS code is required")
        self._require_amount(row, "tds_amount", "TDS amount", result)

        if not row.tax_code.strip():
            result.add_row_error(rid, "tax_code", "GST code is required")
        for name, label in (
            ("igst", "IGST"),
            ("cgst", "CGST"),
            ("sgst", "SGST"),
            ("utgst", "UTGST"),
        ):
            self._require_amount(row, name, label, result)

        self._require_amount(
            row, "net_amount", "Net amount", result, strictly_positive=True
        )

    @staticmethod
    def _require_amount(
        row: LineItem,
        field_name: str,
        label: str,
        result: ValidationResult,
        strictly_positive: bool = False,
    ) -> None:
        raw = getattr(row, field_name)
        if not raw.strip():
            result.add_row_error(row.row_id, field_name, f"{label} is required")
            return

        value: Optional[Decimal] = parse_decimal(raw)
        if strictly_positive:
            if value is None or value <= ZERO:
                result.add_row_error(
                    row.row_id, field_name, f"{label} must be greater than 0"
                )
        elif value is None or value < ZERO:
            result.add_row_error(
                row.row_id, field_name, f"{label} cannot be negative"
            )
