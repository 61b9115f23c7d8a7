"""
HSN Matcher
Resolves each line row against the item master by HSN/SAC code and
backfills description, tax code and TDS code from the matched item.
"""

from __future__ import annotations

from typing import List, Optional

from .master_data_cache import MasterDataCache
from .models import LineItem, MatchResult, normalize_hsn
from .ocr_schema import OcrPayload
from .tax_calculation import TaxCalculation


class HsnMatcher:
    """Pure function of (rows, OCR payload, master data).

    Running it again over its own output yields the same rows.
    """

    def __init__(self, calculator: Optional[TaxCalculation] = None) -> None:
        self.calculator = calculator or TaxCalculation()

    def match_key(self, row: LineItem, index: int, payload: OcrPayload) -> str:
        """The row's own HSN code, else the HSN of the OCR line at the same position."""
        key = normalize_hsn(row.hsn_code)
        if key:
            return key
        ocr_line = payload.line_at(index)
        return normalize_hsn(ocr_line.hsn_sac) if ocr_line is not None else ""

    def match(
        self,
        rows: List[LineItem],
        payload: OcrPayload,
        master_data: MasterDataCache,
    ) -> MatchResult:
        result = MatchResult()

        for index, row in enumerate(rows):
            key = self.match_key(row, index, payload)
            item = master_data.get_item_by_hsn(key) if key else None

            if item is None:
                result.rows.append(row.copy())
                result.unmatched_hsn_rows.add(row.row_id)
                continue

            changes = {}
            if not row.hsn_code.strip():
                changes["hsn_code"] = key
            if item.description:
                changes["description"] = item.description
            if item.tax_code:
                changes["tax_code"] = item.tax_code
            if item.tds_code:
                changes["tds_code"] = item.tds_code

            resolved = row.copy(**changes)
            result.rows.append(self.calculator.apply_to_row(resolved, master_data))

        return result
