"""
Structured Logging for the Invoice Reconciliation engine
Rotating file logs plus console output, with a component prefix per message
"""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from . import recon_config as cfg


class ReconLogger:
    """Centralized logging for the reconciliation engine with rotation and formatting"""

    def __init__(self, name="Invoice-Recon", log_dir=None, log_level=None, to_file=None):
        """
        Initialize logger with rotating file handlers

        Args:
            name: Logger name
            log_dir: Directory for log files
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            to_file: Write log files in addition to the console
        """
        log_dir = log_dir or cfg.LOG_DIR
        log_level = log_level or cfg.LOG_LEVEL
        to_file = cfg.LOG_TO_FILE if to_file is None else to_file

        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, log_level, logging.INFO))
        self.logger.handlers.clear()
        self.logger.propagate = False

        log_format = logging.Formatter(
            '[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        if to_file:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)

            # Main log (10MB per file, keep 5 files)
            main_handler = RotatingFileHandler(
                log_path / 'invoice_recon.log',
                maxBytes=10*1024*1024,
                backupCount=5,
                encoding='utf-8'
            )
            main_handler.setLevel(logging.DEBUG)
            main_handler.setFormatter(log_format)
            self.logger.addHandler(main_handler)

            # Error-only log (5MB per file, keep 3 files)
            error_handler = RotatingFileHandler(
                log_path / 'invoice_recon_errors.log',
                maxBytes=5*1024*1024,
                backupCount=3,
                encoding='utf-8'
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(log_format)
            self.logger.addHandler(error_handler)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(log_format)
        self.logger.addHandler(console_handler)

    def debug(self, message, component=""):
        """Log debug message"""
        self._log(logging.DEBUG, message, component)

    def info(self, message, component=""):
        """Log info message"""
        self._log(logging.INFO, message, component)

    def warning(self, message, component=""):
        """Log warning message"""
        self._log(logging.WARNING, message, component)

    def error(self, message, component="", exc_info=False):
        """Log error message"""
        self._log(logging.ERROR, message, component, exc_info=exc_info)

    def _log(self, level, message, component="", exc_info=False):
        if component:
            message = f"[{component}] {message}"

        self.logger.log(level, message, exc_info=exc_info)

    def log_master_data_loaded(self, items, taxes, tds_codes):
        """Log master data table sizes after the bulk fetch"""
        self.info(
            f"Loaded {items} item(s), {taxes} tax code(s), {tds_codes} TDS code(s)",
            component="MasterData"
        )

    def log_match_summary(self, invoice_id, matched, unmatched):
        """Log the outcome of an HSN match pass"""
        self.info(
            f"Invoice {invoice_id} - HSN match: {matched} matched, {unmatched} unmatched",
            component="HsnMatcher"
        )

    def log_error(self, invoice_id, error_type, error_message):
        """Log error with context"""
        self.error(
            f"Invoice {invoice_id} - {error_type}: {error_message}",
            component="Error"
        )


# Global logger instance
_global_logger = None


def get_logger(log_level=None):
    """Get or create global logger instance"""
    global _global_logger
    if _global_logger is None:
        _global_logger = ReconLogger(log_level=log_level)
    return _global_logger
