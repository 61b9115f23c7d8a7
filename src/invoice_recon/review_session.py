"""
Invoice Review Session
Owns the editing state of one invoice: loads the invoice and master data,
runs the HSN match once per invoice identity, and re-runs the reconcile
pipeline after every edit. Also carries the update/submit/approve/reject
actions.

State machine (per invoice identity):
    UNLOADED -> LOADED(rows, payload) -> MATCHED(rows)
Edits keep the session in MATCHED; switching to another invoice resets it
to UNLOADED.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from . import recon_config as cfg
from .aggregator import aggregate
from .diff_engine import DiffEngine, ObservedSnapshot
from .hsn_matcher import HsnMatcher
from .master_data_cache import MasterDataCache
from .models import (
    ActionResult,
    Aggregates,
    DiffReport,
    Invoice,
    InvoiceHeader,
    LineItem,
    ReconcileResult,
    SessionState,
    ValidationResult,
    VendorRecord,
)
from .ocr_schema import OcrPayload
from .payload_builder import build_update_payload
from .recon_audit_logger import ReconAuditLogger
from .recon_logger import get_logger
from .repositories import InvoiceRepository, RepositoryError
from .tax_calculation import TaxCalculation
from .validation_gate import ValidationGate


def reconcile(
    rows: List[LineItem],
    payload: OcrPayload,
    master_data: MasterDataCache,
    header: Optional[InvoiceHeader] = None,
    snapshot: Optional[ObservedSnapshot] = None,
    recompute: Iterable[int] = (),
    calculator: Optional[TaxCalculation] = None,
    diff_engine: Optional[DiffEngine] = None,
) -> ReconcileResult:
    """Synchronous pipeline run after every mutating action.

    Recomputes taxes for the rows listed in ``recompute``, then derives the
    aggregates and the diff report from the resulting rows.
    """
    calculator = calculator or TaxCalculation()
    diff_engine = diff_engine or DiffEngine()
    targets = set(recompute)

    new_rows = [
        calculator.apply_to_row(row, master_data) if row.row_id in targets else row
        for row in rows
    ]
    return ReconcileResult(
        rows=new_rows,
        aggregates=aggregate(new_rows),
        diffs=diff_engine.diff(header or InvoiceHeader(), new_rows, payload, snapshot),
    )


class InvoiceReviewSession:
    """Reconciliation state for the invoice currently under review."""

    def __init__(
        self,
        invoice_repository: InvoiceRepository,
        master_data: MasterDataCache,
        audit_logger: Optional[ReconAuditLogger] = None,
        matcher: Optional[HsnMatcher] = None,
        calculator: Optional[TaxCalculation] = None,
        diff_engine: Optional[DiffEngine] = None,
        gate: Optional[ValidationGate] = None,
    ) -> None:
        self.invoice_repository = invoice_repository
        self.master_data = master_data
        self.audit_logger = audit_logger or ReconAuditLogger()
        self.calculator = calculator or TaxCalculation()
        self.matcher = matcher or HsnMatcher(self.calculator)
        self.diff_engine = diff_engine or DiffEngine()
        self.gate = gate or ValidationGate()
        self.logger = get_logger()

        self._load_task: Optional[asyncio.Future] = None
        self.reset()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self, invoice_id: Optional[str] = None) -> None:
        """Drop all state and cancel any in-flight load."""
        self.cancel_pending()
        self.invoice_id = invoice_id
        self.state = SessionState.UNLOADED
        self.invoice: Optional[Invoice] = None
        self.header = InvoiceHeader()
        self.rows: List[LineItem] = []
        self.payload = OcrPayload()
        self.snapshot = ObservedSnapshot()
        self.unmatched_hsn_rows: set = set()
        self.result = ReconcileResult()
        self._next_row_id = 1

    def cancel_pending(self) -> None:
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None

    def close(self) -> None:
        self.cancel_pending()

    async def load(self, invoice_id: str) -> bool:
        """Fetch master data and the invoice concurrently, then match.

        Returns False when the invoice could not be loaded or when a newer
        load for another invoice superseded this one.
        """
        if invoice_id != self.invoice_id:
            self.reset(invoice_id)
        elif self.state != SessionState.UNLOADED:
            return True

        if self._load_task is not None and not self._load_task.done():
            task = self._load_task
        else:
            task = asyncio.ensure_future(self._fetch(invoice_id))
            self._load_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and self.invoice_id != invoice_id:
                return False
            raise

    async def _fetch(self, invoice_id: str) -> bool:
        master_outcome, invoice_outcome = await asyncio.gather(
            asyncio.to_thread(self.master_data.load),
            asyncio.to_thread(self.invoice_repository.get, invoice_id),
            return_exceptions=True,
        )

        if self.invoice_id != invoice_id:
            return False

        if isinstance(master_outcome, BaseException):
            raise master_outcome

        if isinstance(invoice_outcome, RepositoryError):
            self.logger.log_error(invoice_id, "InvoiceLoadFailed", str(invoice_outcome))
            self.audit_logger.log_error(
                invoice_id, "INVOICE_LOAD_FAILED", str(invoice_outcome)
            )
            return False
        if isinstance(invoice_outcome, BaseException):
            raise invoice_outcome

        self._enter_loaded(invoice_outcome)
        return True

    def load_invoice(self, invoice: Invoice) -> SessionState:
        """Enter LOADED with an already-fetched invoice, then try to match."""
        if invoice.id and invoice.id != self.invoice_id:
            self.reset(invoice.id)
        return self._enter_loaded(invoice)

    def _enter_loaded(self, invoice: Invoice) -> SessionState:
        self.invoice = invoice
        self.header = invoice.header.copy()
        self.rows = [row.copy() for row in invoice.line_items]
        self.payload = invoice.ocr_payload
        self._next_row_id = max((r.row_id for r in self.rows), default=0) + 1
        self.state = SessionState.LOADED

        if not self.try_match():
            self._refresh()
        return self.state

    @property
    def workflow(self) -> Optional[Dict[str, Any]]:
        return self.invoice.workflow if self.invoice else None

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def is_ready_to_match(self) -> bool:
        return (
            self.state == SessionState.LOADED
            and self.master_data.is_loaded
            and bool(self.rows)
        )

    def try_match(self) -> bool:
        """Run the HSN match pass if the session is ready and has not matched yet."""
        if not self.is_ready_to_match():
            return False

        outcome = self.matcher.match(self.rows, self.payload, self.master_data)
        self.rows = outcome.rows
        self.unmatched_hsn_rows = set(outcome.unmatched_hsn_rows)
        for row in self.rows:
            self.snapshot.record(row)
        self.state = SessionState.MATCHED

        matched = [r.row_id for r in self.rows if r.row_id not in self.unmatched_hsn_rows]
        self.logger.log_match_summary(
            self.invoice_id, len(matched), len(self.unmatched_hsn_rows)
        )
        self.audit_logger.log_match(self.invoice_id, matched, self.unmatched_hsn_rows)

        self._refresh()
        return True

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def _require_loaded(self) -> None:
        if self.state == SessionState.UNLOADED:
            raise RuntimeError("No invoice is loaded")

    def _row_index(self, row_id: int) -> int:
        for index, row in enumerate(self.rows):
            if row.row_id == row_id:
                return index
        raise KeyError(f"Unknown row id {row_id}")

    def edit_row(self, row_id: int, field_name: str, value: str) -> LineItem:
        """Set one field of a row and re-run the pipeline.

        Editing quantity, rate, tax code or TDS code recomputes that row's
        taxes before the aggregates are rebuilt. Clearing a code the row
        had zeroes the amounts it governed.
        """
        self._require_loaded()
        if field_name not in cfg.LINE_EDITABLE_FIELDS:
            raise ValueError(f"Field '{field_name}' is not editable")

        index = self._row_index(row_id)
        previous = self.rows[index]
        row = previous.copy(**{field_name: value})
        if (
            field_name in cfg.CODE_FIELDS
            and getattr(previous, field_name).strip()
            and not str(value or "").strip()
        ):
            row = self.calculator.clear_components(row, field_name)
        self.rows[index] = row

        recompute = [row_id] if field_name in cfg.RECOMPUTE_TRIGGER_FIELDS else []
        self._refresh(recompute)
        return self.rows[index]

    def add_row(self) -> LineItem:
        """Append a blank row; ids continue after the highest existing id."""
        self._require_loaded()
        row = LineItem(row_id=self._next_row_id)
        self._next_row_id += 1
        self.rows.append(row)

        if not self.try_match():
            self._refresh()
        return row

    def edit_header(self, field_name: str, value: str) -> InvoiceHeader:
        self._require_loaded()
        if field_name in cfg.DERIVED_HEADER_FIELDS:
            raise ValueError(f"'{field_name}' is derived from the line items")
        if field_name not in cfg.HEADER_FIELDS:
            raise ValueError(f"Unknown header field '{field_name}'")

        self.header = self.header.copy(**{field_name: value})
        self._refresh()
        return self.header

    def select_vendor(self, vendor: Union[VendorRecord, str, None]) -> InvoiceHeader:
        """Apply a vendor pick to the header.

        A vendor record fills all vendor fields; a free-text GST number
        clears name, PAN and email; None clears everything but the vendor id.
        """
        self._require_loaded()
        if isinstance(vendor, VendorRecord):
            changes = dict(
                gst_number=vendor.gstin,
                vendor_name=vendor.vendor_name,
                vendor_email=vendor.email,
                vendor_pan=vendor.pan,
                vendor_id=vendor.vendor_code,
            )
        elif isinstance(vendor, str):
            changes = dict(gst_number=vendor, vendor_name="", vendor_email="", vendor_pan="")
        else:
            changes = dict(gst_number="", vendor_name="", vendor_email="", vendor_pan="")

        self.header = self.header.copy(**changes)
        self._refresh()
        return self.header

    def _refresh(self, recompute: Iterable[int] = ()) -> None:
        self.result = reconcile(
            self.rows,
            self.payload,
            self.master_data,
            header=self.header,
            snapshot=self.snapshot,
            recompute=recompute,
            calculator=self.calculator,
            diff_engine=self.diff_engine,
        )
        self.rows = self.result.rows

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def aggregates(self) -> Aggregates:
        return self.result.aggregates

    @property
    def diffs(self) -> DiffReport:
        return self.result.diffs

    def is_field_changed(self, row_id: int, field_name: str) -> bool:
        return self.result.diffs.rows.get(row_id, {}).get(field_name, False)

    def is_header_field_changed(self, field_name: str) -> bool:
        return self.result.diffs.header.get(field_name, False)

    def validate(self) -> ValidationResult:
        return self.gate.validate(self.header, self.rows)

    def build_update_payload(self) -> Dict[str, Any]:
        return build_update_payload(self.header, self.rows)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def update(self) -> ActionResult:
        """Validate, then save the current header and rows."""
        blocked = self._gate("update")
        if blocked is not None:
            return blocked
        payload = self.build_update_payload()
        return self._run_action(
            "update", lambda: self.invoice_repository.update(self.invoice_id, payload)
        )

    def submit(self) -> ActionResult:
        """Validate, save, then submit the invoice for approval."""
        blocked = self._gate("submit")
        if blocked is not None:
            return blocked
        payload = self.build_update_payload()

        def _save_and_submit() -> Dict[str, Any]:
            self.invoice_repository.update(self.invoice_id, payload)
            return self.invoice_repository.submit(self.invoice_id)

        return self._run_action("submit", _save_and_submit)

    def approve(self, notes: str = "") -> ActionResult:
        return self._decide("approve", notes)

    def reject(self, notes: str = "") -> ActionResult:
        return self._decide("reject", notes)

    def _decide(self, action: str, notes: str) -> ActionResult:
        if self.state == SessionState.UNLOADED:
            return ActionResult(action=action, message=cfg.ACTION_FALLBACK_MESSAGES[action])
        decision = {"action": action, "notes": notes}
        return self._run_action(
            action,
            lambda: self.invoice_repository.approve_or_reject(self.invoice_id, decision),
            notes=notes,
        )

    def _gate(self, action: str) -> Optional[ActionResult]:
        if self.state == SessionState.UNLOADED:
            return ActionResult(action=action, message=cfg.ACTION_FALLBACK_MESSAGES[action])

        validation = self.validate()
        if validation.valid:
            return None

        self.logger.warning(
            f"Invoice {self.invoice_id} - {action} blocked by "
            f"{validation.error_count} validation error(s)",
            component="ValidationGate",
        )
        self.audit_logger.log_validation(self.invoice_id, action, validation)
        return ActionResult(
            action=action,
            success=False,
            message=cfg.VALIDATION_FAILED_MESSAGE,
            validation=validation,
        )

    def _run_action(
        self,
        action: str,
        call: Callable[[], Any],
        notes: str = "",
    ) -> ActionResult:
        try:
            response = call()
        except RepositoryError as exc:
            message = exc.server_message or cfg.ACTION_FALLBACK_MESSAGES[action]
            self.logger.log_error(self.invoice_id, f"{action} failed", str(exc))
            result = ActionResult(action=action, success=False, message=message)
        else:
            result = ActionResult(
                action=action,
                success=True,
                message=cfg.ACTION_SUCCESS_MESSAGES[action],
                response=response if isinstance(response, dict) else None,
            )
        self.audit_logger.log_action(
            self.invoice_id, result, party_gstin=self.header.gst_number, notes=notes
        )
        return result
