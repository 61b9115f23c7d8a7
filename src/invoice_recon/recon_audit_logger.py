"""
Invoice Reconciliation Audit Logger
Audit trail of match passes, validation blocks and review actions.
Structured JSON log format with file rotation.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from . import recon_config as cfg
from .models import ActionResult, ValidationResult


class ReconAuditLogger:
    """Per-invoice audit logging for the review session."""

    def __init__(
        self,
        log_dir: Optional[str] = None,
        max_mb: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        self.log_dir = log_dir or cfg.AUDIT_LOG_DIR
        self.max_mb = max_mb or cfg.AUDIT_LOG_MAX_MB
        self.backup_count = backup_count or cfg.AUDIT_LOG_BACKUP_COUNT

        Path(self.log_dir).mkdir(parents=True, exist_ok=True)

        self._logger = self._create_logger()

    @property
    def log_path(self) -> str:
        return os.path.join(self.log_dir, "invoice_recon_audit.log")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def log_match(
        self,
        invoice_id: str,
        matched_rows: Iterable[int],
        unmatched_rows: Iterable[int],
    ) -> None:
        """Log the outcome of the HSN match pass."""
        entry = {
            "timestamp": self._now(),
            "level": "INFO",
            "type": "HSN_MATCH",
            "invoice_id": invoice_id,
            "matched_rows": sorted(matched_rows),
            "unmatched_rows": sorted(unmatched_rows),
        }
        self._write(logging.INFO, entry)

    def log_validation(
        self,
        invoice_id: str,
        action: str,
        result: ValidationResult,
    ) -> None:
        """Log a Validation Gate block."""
        entry = {
            "timestamp": self._now(),
            "level": "WARNING",
            "type": "VALIDATION_BLOCKED",
            "invoice_id": invoice_id,
            "action": action,
            "error_count": result.error_count,
            **result.to_dict(),
        }
        self._write(logging.WARNING, entry)

    def log_action(
        self,
        invoice_id: str,
        result: ActionResult,
        party_gstin: str = "",
        notes: str = "",
    ) -> None:
        """Log an update/submit/approve/reject outcome."""
        entry: Dict[str, Any] = {
            "timestamp": self._now(),
            "level": "INFO" if result.success else "ERROR",
            "type": "ACTION",
            "invoice_id": invoice_id,
            "action": result.action,
            "success": result.success,
            "message": result.message,
            "party_gstin_masked": self._mask_gstin(party_gstin),
        }
        if notes:
            entry["notes"] = notes
        self._write(logging.INFO if result.success else logging.ERROR, entry)

    def log_error(
        self,
        invoice_id: str,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a system-level error."""
        entry = {
            "timestamp": self._now(),
            "level": "ERROR",
            "type": "SYSTEM_ERROR",
            "invoice_id": invoice_id,
            "error_code": error_code,
            "message": message,
        }
        if details:
            entry["details"] = details
        self._write(logging.ERROR, entry)

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    def _write(self, level: int, entry: Dict[str, Any]) -> None:
        self._logger.log(level, json.dumps(entry, ensure_ascii=False, default=str))

    def _create_logger(self) -> logging.Logger:
        """Create a structured rotating-file logger."""
        logger = logging.getLogger(f"invoice_recon_audit_{id(self)}")
        logger.setLevel(logging.DEBUG)
        logger.handlers.clear()
        logger.propagate = False

        handler = RotatingFileHandler(
            self.log_path,
            maxBytes=self.max_mb * 1024 * 1024,
            backupCount=self.backup_count,
            encoding="utf-8",
        )
        handler.setLevel(logging.DEBUG)
        # Entries are already structured JSON
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)

        return logger

    @staticmethod
    def _mask_gstin(gstin: str) -> str:
        """Mask the middle portion of a GSTIN.

        Example: 29AABCU9603R1ZP -> 29AABC****3R1ZP
        """
        if not gstin or len(gstin) < 10:
            return gstin
        return gstin[:6] + "****" + gstin[10:]
