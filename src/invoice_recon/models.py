"""
Invoice Reconciliation Data Models
Dataclasses for structured data passing between the reconciliation components.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from .ocr_schema import OcrPayload


# ---------------------------------------------------------------------------
# Master data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TaxCode:
    """A GST tax code with its component percentages (raw strings)."""
    code: str = ""
    cgst_percentage: str = ""
    sgst_percentage: str = ""
    igst_percentage: str = ""
    utgst_percentage: str = ""
    tax_percentage: str = ""
    description: str = ""

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TaxCode":
        return cls(
            code=_text(record.get("tax_code")),
            cgst_percentage=_text(record.get("cgst_percentage")),
            sgst_percentage=_text(record.get("sgst_percentage")),
            igst_percentage=_text(record.get("igst_percentage")),
            utgst_percentage=_text(record.get("utgst_percentage")),
            tax_percentage=_text(record.get("tax_percentage")),
            description=_text(record.get("description")),
        )


@dataclass(frozen=True)
class TdsCode:
    """A TDS (tax deducted at source) code and its percentage."""
    code: str = ""
    percentage: str = ""
    description: str = ""

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TdsCode":
        return cls(
            code=_text(record.get("tds_code")),
            percentage=_text(record.get("tds_percentage")),
            description=_text(record.get("description")),
        )


@dataclass(frozen=True)
class ItemMaster:
    """Canonical item keyed by normalized HSN/SAC code."""
    hsn_code: str = ""
    description: str = ""
    tax_code: str = ""
    tds_code: str = ""

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ItemMaster":
        return cls(
            hsn_code=normalize_hsn(record.get("hsn_sac_code")),
            description=_text(record.get("description")),
            tax_code=_text(record.get("tax_code")),
            tds_code=_text(record.get("tds_code")),
        )


@dataclass(frozen=True)
class VendorRecord:
    """Vendor picked from the vendor directory."""
    vendor_code: str = ""
    vendor_name: str = ""
    gstin: str = ""
    pan: str = ""
    email: str = ""


# ---------------------------------------------------------------------------
# Invoice models
# ---------------------------------------------------------------------------

@dataclass
class LineItem:
    """One editable row of the invoice line-item table."""
    row_id: int = 0
    description: str = ""
    quantity: str = ""
    rate: str = ""
    hsn_code: str = ""
    tax_code: str = ""
    tds_code: str = ""
    tds_amount: str = ""
    igst: str = ""
    cgst: str = ""
    sgst: str = ""
    utgst: str = ""
    net_amount: str = ""

    # Link to the persisted line item, when the row was loaded from the server
    line_item_id: Optional[str] = None

    def copy(self, **changes: Any) -> "LineItem":
        return replace(self, **changes)


@dataclass
class InvoiceHeader:
    """Settable header fields. Totals are derived by the Aggregator."""
    invoice_number: str = ""
    invoice_date: str = ""
    gst_number: str = ""
    vendor_id: str = ""
    vendor_name: str = ""
    vendor_pan: str = ""
    vendor_email: str = ""
    billing_address: str = ""
    shipping_address: str = ""
    currency: str = "INR"

    def copy(self, **changes: Any) -> "InvoiceHeader":
        return replace(self, **changes)


@dataclass
class Invoice:
    """An invoice as returned by the invoice repository."""
    id: str = ""
    header: InvoiceHeader = field(default_factory=InvoiceHeader)
    line_items: List[LineItem] = field(default_factory=list)
    ocr_payload: OcrPayload = field(default_factory=OcrPayload)
    file_ids: List[str] = field(default_factory=list)
    status: str = ""
    workflow: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Engine result models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LineTaxes:
    """Computed tax figures for one row, as fixed 2-decimal strings."""
    cgst: str = "0.00"
    sgst: str = "0.00"
    igst: str = "0.00"
    utgst: str = "0.00"
    tds_amount: str = "0.00"


@dataclass
class MatchResult:
    """Output of one HSN match pass."""
    rows: List[LineItem] = field(default_factory=list)
    unmatched_hsn_rows: Set[int] = field(default_factory=set)

    @property
    def matched_count(self) -> int:
        return len(self.rows) - len(self.unmatched_hsn_rows)


@dataclass(frozen=True)
class Aggregates:
    """Invoice-level totals derived from the line rows."""
    subtotal: str = "0.00"
    cgst_total: str = "0.00"
    sgst_total: str = "0.00"
    igst_total: str = "0.00"
    utgst_total: str = "0.00"
    tds_total: str = "0.00"
    total_amount: str = "0.00"
    payable: str = "0.00"

    def to_dict(self) -> Dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class DiffReport:
    """Changed-since-extraction flags for header fields and row fields."""
    header: Dict[str, bool] = field(default_factory=dict)
    rows: Dict[int, Dict[str, bool]] = field(default_factory=dict)

    def changed_header_fields(self) -> List[str]:
        return [name for name, changed in self.header.items() if changed]

    def changed_row_fields(self, row_id: int) -> List[str]:
        return [
            name for name, changed in self.rows.get(row_id, {}).items() if changed
        ]


@dataclass
class ReconcileResult:
    """Output of the synchronous reconcile pipeline."""
    rows: List[LineItem] = field(default_factory=list)
    aggregates: Aggregates = field(default_factory=Aggregates)
    diffs: DiffReport = field(default_factory=DiffReport)


# ---------------------------------------------------------------------------
# Validation models
# ---------------------------------------------------------------------------

@dataclass
class ValidationResult:
    """Header and per-row error maps produced by the Validation Gate."""
    header_errors: Dict[str, str] = field(default_factory=dict)
    row_errors: Dict[int, Dict[str, str]] = field(default_factory=dict)

    def add_header_error(self, field_name: str, message: str) -> None:
        self.header_errors[field_name] = message

    def add_row_error(self, row_id: int, field_name: str, message: str) -> None:
        self.row_errors.setdefault(row_id, {})[field_name] = message

    @property
    def valid(self) -> bool:
        return not self.header_errors and not self.row_errors

    @property
    def error_count(self) -> int:
        return len(self.header_errors) + sum(
            len(errs) for errs in self.row_errors.values()
        )

    @property
    def status(self) -> str:
        return "OK" if self.valid else "ERROR"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "header_errors": dict(self.header_errors),
            "row_errors": {
                str(row_id): dict(errs) for row_id, errs in self.row_errors.items()
            },
        }


# ---------------------------------------------------------------------------
# Session models
# ---------------------------------------------------------------------------

class SessionState(str, Enum):
    UNLOADED = "UNLOADED"
    LOADED = "LOADED"
    MATCHED = "MATCHED"


@dataclass
class ActionResult:
    """Outcome of an update/submit/approve/reject action."""
    action: str = ""
    success: bool = False
    message: str = ""
    validation: Optional[ValidationResult] = None
    response: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "action": self.action,
            "success": self.success,
            "message": self.message,
        }
        if self.validation is not None:
            d["validation"] = self.validation.to_dict()
        return d


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_hsn(value: Any) -> str:
    """Normalize an HSN/SAC code: trimmed, upper-cased."""
    return _text(value).upper()
