"""
Repository boundary
Invoice and master-data repositories consumed by the reconciliation engine:
protocols, an HTTP implementation over the portal API, and in-memory
implementations for tests and offline use.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Protocol

import requests
from pydantic import ValidationError

from . import recon_config as cfg
from .amounts import tidy_number
from .models import Invoice, InvoiceHeader, LineItem
from .ocr_schema import OcrPayload
from .recon_logger import get_logger


class RepositoryError(Exception):
    """Any failure crossing the repository boundary."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        server_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.server_message = server_message


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class InvoiceRepository(Protocol):
    def get(self, invoice_id: str) -> Invoice: ...

    def update(self, invoice_id: str, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    def submit(self, invoice_id: str) -> Dict[str, Any]: ...

    def approve_or_reject(
        self, invoice_id: str, decision: Dict[str, Any]
    ) -> Dict[str, Any]: ...


class RecordRepository(Protocol):
    """Item, tax and TDS repositories share this shape."""

    def list(self, limit: int, offset: int = 0) -> List[Dict[str, Any]]: ...


# ---------------------------------------------------------------------------
# API record conversion
# ---------------------------------------------------------------------------

def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _date_part(value: Any) -> str:
    return _text(value).split("T")[0]


def line_item_from_record(record: Dict[str, Any], row_id: int) -> LineItem:
    """Build an editable row from a persisted invoice line item."""
    persisted_id = record.get("id")
    return LineItem(
        row_id=row_id,
        description=_text(record.get("description")),
        quantity=tidy_number(record.get("quantity")),
        rate=_text(record.get("unit_price")),
        hsn_code=_text(record.get("hsn_sac")),
        tax_code=_text(record.get("tax_code")),
        tds_code=_text(record.get("tds_code")),
        tds_amount=_text(record.get("tds_amount")),
        igst=_text(record.get("igst_amount")),
        cgst=_text(record.get("cgst_amount")),
        sgst=_text(record.get("sgst_amount")),
        utgst=_text(record.get("utgst_amount")),
        net_amount=_text(record.get("total")),
        line_item_id=None if persisted_id in (None, "") else str(persisted_id),
    )


def ocr_payload_from_record(record: Dict[str, Any]) -> OcrPayload:
    """Validate the raw OCR payload attached to an invoice record.

    A missing or malformed payload degrades to an empty one.
    """
    raw = None
    for key in ("ocr_payload", "raw_ocr_payload", "ocr_data"):
        if record.get(key):
            raw = record[key]
            break
    if raw is None:
        return OcrPayload()

    try:
        if isinstance(raw, str):
            raw = json.loads(raw)
        return OcrPayload.model_validate(raw)
    except (ValueError, ValidationError) as exc:
        get_logger().warning(
            f"Invoice {record.get('id')} - discarding malformed OCR payload: {exc}",
            component="Repository",
        )
        return OcrPayload()


def invoice_from_record(record: Dict[str, Any]) -> Invoice:
    """Convert one invoice record of the portal API into an Invoice."""
    header = InvoiceHeader(
        invoice_number=_text(record.get("invoice_number")),
        invoice_date=_date_part(record.get("invoice_date")),
        gst_number=_text(record.get("gst_number") or record.get("vendor_gstin")),
        vendor_id=_text(record.get("vendor_id")),
        vendor_name=_text(record.get("vendor_name")),
        vendor_pan=_text(record.get("vendor_pan")),
        vendor_email=_text(record.get("vendor_email")),
        billing_address=_text(record.get("billing_address")),
        shipping_address=_text(record.get("shipping_address")),
        currency=_text(record.get("currency")) or "INR",
    )
    items = record.get("invoice_lineitems") or []
    rows = [
        line_item_from_record(item, row_id)
        for row_id, item in enumerate(items, start=1)
        if isinstance(item, dict)
    ]
    return Invoice(
        id=_text(record.get("id")),
        header=header,
        line_items=rows,
        ocr_payload=ocr_payload_from_record(record),
        file_ids=[str(f) for f in record.get("file_ids") or []],
        status=_text(record.get("status")),
        workflow=record.get("workflow"),
    )


# ---------------------------------------------------------------------------
# HTTP implementation
# ---------------------------------------------------------------------------

class ApiClient:
    """Thin JSON client for the portal API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or cfg.API_BASE_URL).rstrip("/")
        self.token = token if token is not None else cfg.API_TOKEN
        self.timeout = timeout or cfg.API_TIMEOUT
        self.session = session or requests.Session()

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and return the decoded JSON body.

        Raises RepositoryError for transport failures and non-2xx replies.
        """
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise RepositoryError(f"{method} {path} failed: {exc}") from exc

        body = self._decode(response)
        if not response.ok:
            server_message = self._server_message(body)
            raise RepositoryError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
                server_message=server_message,
            )
        return body

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"message": response.text}

    @staticmethod
    def _server_message(body: Any) -> Optional[str]:
        if not isinstance(body, dict):
            return None
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None


class HttpInvoiceRepository:
    """Invoice repository backed by the portal API."""

    def __init__(self, client: Optional[ApiClient] = None) -> None:
        self.client = client or ApiClient()

    def get(self, invoice_id: str) -> Invoice:
        body = self.client.request(
            "GET", cfg.INVOICE_GET_PATH, params={"id": f"eq.{invoice_id}"}
        )
        data = body.get("data") if isinstance(body, dict) else None
        if not data:
            raise RepositoryError(
                f"Invoice {invoice_id} not found", status_code=404
            )
        record = data[0] if isinstance(data, list) else data
        return invoice_from_record(record)

    def update(self, invoice_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.request(
            "PUT", cfg.INVOICE_UPDATE_PATH.format(invoice_id=invoice_id), json=payload
        )

    def submit(self, invoice_id: str) -> Dict[str, Any]:
        return self.client.request(
            "POST", cfg.INVOICE_SUBMIT_PATH, json={"invoice_id": invoice_id}
        )

    def approve_or_reject(
        self, invoice_id: str, decision: Dict[str, Any]
    ) -> Dict[str, Any]:
        return self.client.request(
            "POST", cfg.INVOICE_ACTION_PATH.format(invoice_id=invoice_id), json=decision
        )


class HttpRecordRepository:
    """Paged list endpoint (items, tax codes, TDS codes)."""

    def __init__(self, path: str, client: Optional[ApiClient] = None) -> None:
        self.path = path
        self.client = client or ApiClient()

    def list(self, limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        body = self.client.request(
            "GET", self.path, params={"limit": limit, "offset": offset}
        )
        data = body.get("data", []) if isinstance(body, dict) else body
        return [record for record in data or [] if isinstance(record, dict)]


def http_item_repository(client: Optional[ApiClient] = None) -> HttpRecordRepository:
    return HttpRecordRepository(cfg.ITEM_LIST_PATH, client)


def http_tax_repository(client: Optional[ApiClient] = None) -> HttpRecordRepository:
    return HttpRecordRepository(cfg.TAX_LIST_PATH, client)


def http_tds_repository(client: Optional[ApiClient] = None) -> HttpRecordRepository:
    return HttpRecordRepository(cfg.TDS_LIST_PATH, client)


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

class MemoryRecordRepository:
    """Record repository over a fixed list; raises ``error`` when set."""

    def __init__(
        self,
        records: Optional[List[Dict[str, Any]]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.records = list(records or [])
        self.error = error
        self.calls: List[Dict[str, int]] = []

    def list(self, limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        self.calls.append({"limit": limit, "offset": offset})
        if self.error is not None:
            raise self.error
        return [dict(r) for r in self.records[offset:offset + limit]]


class MemoryInvoiceRepository:
    """Invoice repository over in-memory records, recording every write."""

    def __init__(self, records: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self.records = dict(records or {})
        self.updates: List[Dict[str, Any]] = []
        self.submitted: List[str] = []
        self.decisions: List[Dict[str, Any]] = []
        self.errors: Dict[str, Exception] = {}

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.errors:
            raise self.errors[operation]

    def get(self, invoice_id: str) -> Invoice:
        self._maybe_fail("get")
        if invoice_id not in self.records:
            raise RepositoryError(f"Invoice {invoice_id} not found", status_code=404)
        return invoice_from_record(self.records[invoice_id])

    def update(self, invoice_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._maybe_fail("update")
        self.updates.append({"invoice_id": invoice_id, "payload": payload})
        return {"message": "updated"}

    def submit(self, invoice_id: str) -> Dict[str, Any]:
        self._maybe_fail("submit")
        self.submitted.append(invoice_id)
        return {"message": "submitted"}

    def approve_or_reject(
        self, invoice_id: str, decision: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._maybe_fail("approve_or_reject")
        self.decisions.append({"invoice_id": invoice_id, **decision})
        return {"message": decision.get("action", "")}
