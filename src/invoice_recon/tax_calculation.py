"""
Tax Computation Engine
Computes CGST/SGST/IGST/UTGST and TDS amounts for a line item from its
quantity, rate and resolved tax/TDS codes.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from .amounts import ZERO, format_amount, parse_decimal, round_amount, safe_decimal
from .models import LineItem, LineTaxes, TaxCode, TdsCode

HUNDRED = Decimal("100")


class TaxCalculation:
    """Per-line tax computation. Pure: no state survives between calls."""

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------

    @staticmethod
    def base_amount(quantity: Any, rate: Any) -> Decimal:
        """quantity x rate, with unparseable inputs treated as 0."""
        return safe_decimal(quantity) * safe_decimal(rate)

    @staticmethod
    def component(base: Decimal, percentage: Any) -> Decimal:
        """round(base x percentage / 100, 2); bad percentages count as 0."""
        return round_amount(base * safe_decimal(percentage) / HUNDRED)

    def compute(
        self,
        quantity: Any,
        rate: Any,
        tax_code: Optional[TaxCode],
        tds_code: Optional[TdsCode],
    ) -> LineTaxes:
        """Compute all tax figures for one line.

        A missing code contributes zero for its components.
        """
        base = self.base_amount(quantity, rate)
        tax = tax_code or TaxCode()
        tds = tds_code or TdsCode()
        return LineTaxes(
            cgst=format_amount(self.component(base, tax.cgst_percentage)),
            sgst=format_amount(self.component(base, tax.sgst_percentage)),
            igst=format_amount(self.component(base, tax.igst_percentage)),
            utgst=format_amount(self.component(base, tax.utgst_percentage)),
            tds_amount=format_amount(self.component(base, tds.percentage)),
        )

    @staticmethod
    def net_amount(quantity: Any, rate: Any) -> Optional[str]:
        """round(quantity x rate, 2), or None unless both values parse."""
        qty = parse_decimal(quantity)
        rate_value = parse_decimal(rate)
        if qty is None or rate_value is None:
            return None
        return format_amount(qty * rate_value)

    # ------------------------------------------------------------------
    # Row level
    # ------------------------------------------------------------------

    def apply_to_row(self, row: LineItem, master_data) -> LineItem:
        """Return a copy of ``row`` with net and tax amounts recomputed.

        Tax components are recomputed only when the row carries a tax code
        and the TDS amount only when it carries a TDS code; a code that is
        not in the master data computes as 0%. Blank codes leave the
        existing (extracted) amounts untouched; see clear_components for a
        code that was removed. The net amount follows quantity x rate
        whenever both parse.
        """
        changes = {}

        net = self.net_amount(row.quantity, row.rate)
        if net is not None:
            changes["net_amount"] = net

        tax_key = row.tax_code.strip()
        tds_key = row.tds_code.strip()
        if tax_key or tds_key:
            taxes = self.compute(
                row.quantity,
                row.rate,
                master_data.get_tax_by_code(tax_key) if tax_key else None,
                master_data.get_tds_by_code(tds_key) if tds_key else None,
            )
            if tax_key:
                changes.update(
                    cgst=taxes.cgst,
                    sgst=taxes.sgst,
                    igst=taxes.igst,
                    utgst=taxes.utgst,
                )
            if tds_key:
                changes["tds_amount"] = taxes.tds_amount

        return row.copy(**changes) if changes else row.copy()

    def clear_components(self, row: LineItem, code_field: str) -> LineItem:
        """Return a copy of ``row`` with the amounts governed by ``code_field``
        zeroed. Used when a code is removed from a row that had one."""
        if code_field == "tax_code":
            zero = self.compute(row.quantity, row.rate, None, None)
            return row.copy(cgst=zero.cgst, sgst=zero.sgst, igst=zero.igst, utgst=zero.utgst)
        if code_field == "tds_code":
            return row.copy(tds_amount=format_amount(ZERO))
        raise ValueError(f"'{code_field}' is not a tax code field")

    @staticmethod
    def sum_amounts(values) -> Decimal:
        total = ZERO
        for value in values:
            total += safe_decimal(value)
        return total
