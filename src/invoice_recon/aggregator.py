"""
Aggregator
Sums line-level amounts into invoice-level totals. Recomputed from the
current rows every time; nothing is carried between calls.
"""

from __future__ import annotations

from typing import Iterable

from .amounts import format_amount, round_amount
from .models import Aggregates, LineItem
from .tax_calculation import TaxCalculation


def aggregate(rows: Iterable[LineItem]) -> Aggregates:
    """Invoice totals for ``rows``; blank or non-numeric fields count as 0.

    total_amount = subtotal + cgst + sgst + igst
    payable      = total_amount - tds
    UTGST is reported as its own total and kept out of total_amount.
    """
    rows = list(rows)
    sum_of = TaxCalculation.sum_amounts

    # Totals are built from the rounded components so the identities hold exactly.
    subtotal = round_amount(sum_of(r.net_amount for r in rows))
    cgst = round_amount(sum_of(r.cgst for r in rows))
    sgst = round_amount(sum_of(r.sgst for r in rows))
    igst = round_amount(sum_of(r.igst for r in rows))
    utgst = round_amount(sum_of(r.utgst for r in rows))
    tds = round_amount(sum_of(r.tds_amount for r in rows))

    total = subtotal + cgst + sgst + igst
    payable = total - tds

    return Aggregates(
        subtotal=format_amount(subtotal),
        cgst_total=format_amount(cgst),
        sgst_total=format_amount(sgst),
        igst_total=format_amount(igst),
        utgst_total=format_amount(utgst),
        tds_total=format_amount(tds),
        total_amount=format_amount(total),
        payable=format_amount(payable),
    )
