"""
Invoice Reconciliation Configuration
Loads environment variables (and a project-level .env file when present)
and provides defaults plus the static field tables used by the engine.
"""

import os
from decimal import ROUND_HALF_UP
from pathlib import Path

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Project root (two levels up from this file: src/invoice_recon/recon_config.py)
# ---------------------------------------------------------------------------
RECON_ROOT = Path(__file__).parent
PROJECT_ROOT = RECON_ROOT.parent.parent

env_file = PROJECT_ROOT / ".env"
if env_file.exists():
    load_dotenv(env_file)

# ---------------------------------------------------------------------------
# Remote API
# ---------------------------------------------------------------------------
API_BASE_URL: str = os.getenv("RECON_API_BASE_URL", "http://localhost:5555")
API_TOKEN: str = os.getenv("RECON_API_TOKEN", "")
API_TIMEOUT: int = int(os.getenv("RECON_API_TIMEOUT", "30"))

INVOICE_GET_PATH = "/api/v1/invoices"
INVOICE_UPDATE_PATH = "/api/v1/invoice/{invoice_id}"
INVOICE_SUBMIT_PATH = "/api/v1/invoices/submit"
INVOICE_ACTION_PATH = "/api/v1/invoices/{invoice_id}/action"
ITEM_LIST_PATH = "/api/v1/items"
TAX_LIST_PATH = "/api/v1/tax"
TDS_LIST_PATH = "/api/v1/tds"

# ---------------------------------------------------------------------------
# Master data (one bounded bulk fetch approximates "all records")
# ---------------------------------------------------------------------------
MASTER_DATA_PAGE_SIZE: int = int(os.getenv("RECON_MASTER_DATA_PAGE_SIZE", "1000"))

# ---------------------------------------------------------------------------
# Numeric policy
# ---------------------------------------------------------------------------
DIFF_TOLERANCE: str = os.getenv("RECON_DIFF_TOLERANCE", "0.01")
ROUNDING_MODE = ROUND_HALF_UP
AMOUNT_PLACES = "0.01"
QUANTITY_PLACES = "0.0001"
GSTIN_LENGTH: int = int(os.getenv("RECON_GSTIN_LENGTH", "15"))
# Numbers at or above this magnitude are treated as unparseable
MAX_MAGNITUDE: str = os.getenv("RECON_MAX_MAGNITUDE", "1e15")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_DIR: str = os.getenv("RECON_LOG_DIR", str(PROJECT_ROOT / "logs"))
LOG_LEVEL: str = os.getenv("RECON_LOG_LEVEL", "INFO").upper()
LOG_TO_FILE: bool = os.getenv("RECON_LOG_TO_FILE", "true").lower() == "true"

AUDIT_LOG_DIR: str = os.getenv(
    "RECON_AUDIT_LOG_DIR",
    str(PROJECT_ROOT / "logs" / "invoice_recon"),
)
AUDIT_LOG_MAX_MB: int = int(os.getenv("RECON_AUDIT_LOG_MAX_MB", "10"))
AUDIT_LOG_BACKUP_COUNT: int = int(os.getenv("RECON_AUDIT_LOG_BACKUP_COUNT", "5"))

# ---------------------------------------------------------------------------
# Header fields
# ---------------------------------------------------------------------------
HEADER_FIELDS = [
    "invoice_number",
    "invoice_date",
    "gst_number",
    "vendor_id",
    "vendor_name",
    "vendor_pan",
    "vendor_email",
    "billing_address",
    "shipping_address",
    "currency",
]

REQUIRED_HEADER_FIELDS = {
    "invoice_number": "Invoice number",
    "invoice_date": "Invoice date",
    "gst_number": "GST number",
    "vendor_id": "Vendor ID",
    "vendor_name": "Vendor name",
    "vendor_pan": "Vendor PAN",
    "vendor_email": "Vendor email",
    "billing_address": "Billing address",
    "shipping_address": "Shipping address",
}

# Derived header figures; never set directly.
DERIVED_HEADER_FIELDS = {
    "subtotal",
    "cgst_total",
    "sgst_total",
    "igst_total",
    "utgst_total",
    "tds_total",
    "total_amount",
    "payable",
}

DATE_FIELDS = {"invoice_date", "due_date"}

# ---------------------------------------------------------------------------
# Line item fields
# ---------------------------------------------------------------------------
LINE_FIELD_TO_OCR = {
    "description": "description",
    "quantity": "quantity",
    "rate": "unit_price",
    "hsn_code": "hsn_sac",
    "tax_code": "tax_code",
    "tds_code": "tds_code",
    "tds_amount": "tds_amount",
    "igst": "igst_amount",
    "cgst": "cgst_amount",
    "sgst": "sgst_amount",
    "utgst": "utgst_amount",
    "net_amount": "total",
}

LINE_EDITABLE_FIELDS = set(LINE_FIELD_TO_OCR)

LINE_NUMERIC_FIELDS = {
    "quantity",
    "rate",
    "tds_amount",
    "igst",
    "cgst",
    "sgst",
    "utgst",
    "net_amount",
}

# Editing any of these re-runs the tax computation for the row.
RECOMPUTE_TRIGGER_FIELDS = {"quantity", "rate", "tax_code", "tds_code"}

CODE_FIELDS = {"tax_code", "tds_code"}

# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------
VALIDATION_FAILED_MESSAGE = "Please fix the highlighted fields before continuing"

ACTION_FALLBACK_MESSAGES = {
    "update": "Failed to update invoice",
    "submit": "Failed to submit invoice",
    "approve": "Failed to approve invoice",
    "reject": "Failed to reject invoice",
}

ACTION_SUCCESS_MESSAGES = {
    "update": "Invoice updated successfully",
    "submit": "Invoice submitted successfully",
    "approve": "Invoice approved",
    "reject": "Invoice rejected",
}
