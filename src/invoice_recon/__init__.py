"""
Invoice Reconciliation - line-item reconciliation and tax computation
for the invoice review screen.

Ingests an OCR-extracted invoice, resolves each line against the item,
tax and TDS master data, computes GST/TDS breakdowns and invoice totals,
diffs the edited invoice against the extraction, and gates submission.
"""

__version__ = "0.1.0"
