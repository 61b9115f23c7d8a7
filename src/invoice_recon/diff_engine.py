"""
Diff / Highlight Engine
Flags header and line-item fields whose current value differs from the
OCR-extracted baseline, falling back to the first-observed snapshot of a
row when the extraction has nothing to compare against.
"""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from . import recon_config as cfg
from .amounts import parse_decimal
from .models import DiffReport, InvoiceHeader, LineItem
from .ocr_schema import OcrLineItem, OcrPayload

_WHITESPACE = re.compile(r"\s+")


def normalize_description(value: Any) -> str:
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip().lower()


def normalize_date(value: Any) -> Optional[str]:
    """YYYY-MM-DD for ISO dates/datetimes and DD/MM/YYYY; None otherwise."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    candidate = text.split("T")[0].split(" ")[0]
    for fmt in ("%Y-%m-%d", "%d/%m/%Y"):
        try:
            return datetime.strptime(candidate, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


class ObservedSnapshot:
    """First-seen values per row, written once and never updated."""

    def __init__(self) -> None:
        self._rows: Dict[int, Dict[str, Any]] = {}

    def __contains__(self, row_id: int) -> bool:
        return row_id in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def record(self, row: LineItem) -> bool:
        """Capture ``row`` unless it was already captured. Returns True when stored."""
        if row.row_id in self._rows:
            return False
        values: Dict[str, Any] = {}
        for name in cfg.LINE_FIELD_TO_OCR:
            raw = getattr(row, name)
            if raw is None or not str(raw).strip():
                continue
            if name in cfg.LINE_NUMERIC_FIELDS:
                parsed = parse_decimal(raw)
                values[name] = parsed if parsed is not None else str(raw).strip()
            else:
                values[name] = str(raw).strip()
        self._rows[row.row_id] = values
        return True

    def get(self, row_id: int, field_name: str) -> Any:
        return self._rows.get(row_id, {}).get(field_name)


class DiffEngine:
    """Compare current values against the extraction baseline."""

    def __init__(self, tolerance: Optional[str] = None) -> None:
        self.tolerance = Decimal(tolerance or cfg.DIFF_TOLERANCE)

    # ------------------------------------------------------------------
    # Comparison policy
    # ------------------------------------------------------------------

    def values_differ(self, field_name: str, baseline: Any, current: Any) -> bool:
        """True when ``current`` counts as changed relative to ``baseline``."""
        if field_name in cfg.DATE_FIELDS:
            base_text = normalize_date(baseline) or self._text(baseline)
            current_text = normalize_date(current) or self._text(current)
            return base_text != current_text

        if _is_number(baseline):
            current_value = parse_decimal(current)
            if current_value is None:
                return True
            return abs(current_value - Decimal(str(baseline))) > self.tolerance

        base_text = self._text(baseline)
        current_text = self._text(current)
        if not base_text and not current_text:
            return False
        return base_text != current_text

    @staticmethod
    def _text(value: Any) -> str:
        return "" if value is None else str(value).strip()

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    @staticmethod
    def header_baseline(payload: OcrPayload, field_name: str) -> Any:
        value = payload.get(field_name)
        if field_name == "vendor_id" and (value is None or not str(value).strip()):
            return payload.get("gst_number")
        return value

    @staticmethod
    def ocr_line_for(row: LineItem, index: int, payload: OcrPayload) -> Optional[OcrLineItem]:
        """OCR line with the same normalized description, else the one at ``index``."""
        wanted = normalize_description(row.description)
        if wanted:
            for line in payload.line_items:
                if normalize_description(line.description) == wanted:
                    return line
        return payload.line_at(index)

    def line_baseline(
        self, row: LineItem, index: int, field_name: str, payload: OcrPayload
    ) -> Any:
        ocr_field = cfg.LINE_FIELD_TO_OCR.get(field_name)
        if ocr_field is None:
            return None
        line = self.ocr_line_for(row, index, payload)
        return line.get(ocr_field) if line is not None else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_header_field_changed(
        self, field_name: str, current: Any, payload: OcrPayload
    ) -> bool:
        baseline = self.header_baseline(payload, field_name)
        if baseline is None:
            return False
        return self.values_differ(field_name, baseline, current)

    def is_line_field_changed(
        self,
        row: LineItem,
        index: int,
        field_name: str,
        payload: OcrPayload,
        snapshot: Optional[ObservedSnapshot] = None,
    ) -> bool:
        current = getattr(row, field_name, None)
        baseline = self.line_baseline(row, index, field_name, payload)
        if baseline is None and snapshot is not None:
            baseline = snapshot.get(row.row_id, field_name)
        if baseline is None:
            return False
        return self.values_differ(field_name, baseline, current)

    def diff(
        self,
        header: InvoiceHeader,
        rows: List[LineItem],
        payload: OcrPayload,
        snapshot: Optional[ObservedSnapshot] = None,
    ) -> DiffReport:
        report = DiffReport()
        for name in cfg.HEADER_FIELDS:
            report.header[name] = self.is_header_field_changed(
                name, getattr(header, name), payload
            )
        for index, row in enumerate(rows):
            report.rows[row.row_id] = {
                name: self.is_line_field_changed(row, index, name, payload, snapshot)
                for name in cfg.LINE_FIELD_TO_OCR
            }
        return report
