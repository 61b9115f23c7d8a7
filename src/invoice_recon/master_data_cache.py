"""
Master Data Cache
Loads the Item, Tax and TDS reference tables once and indexes them by code.
Read-only after load.
"""

from __future__ import annotations

from threading import Lock
from typing import Any, Callable, Dict, List, Optional, TypeVar

from . import recon_config as cfg
from .models import ItemMaster, TaxCode, TdsCode, normalize_hsn
from .recon_logger import get_logger
from .repositories import RecordRepository, RepositoryError

T = TypeVar("T")


class MasterDataCache:
    """Code -> record maps for items (by HSN), tax codes and TDS codes.

    Each table is fetched with a single bounded request. A failed fetch is
    logged and leaves only that table empty, so matching degrades to
    "no match" instead of blocking the review screen.
    """

    def __init__(
        self,
        item_repository: RecordRepository,
        tax_repository: RecordRepository,
        tds_repository: RecordRepository,
        page_size: Optional[int] = None,
    ) -> None:
        self.item_repository = item_repository
        self.tax_repository = tax_repository
        self.tds_repository = tds_repository
        self.page_size = page_size or cfg.MASTER_DATA_PAGE_SIZE

        self._items: Dict[str, ItemMaster] = {}
        self._taxes: Dict[str, TaxCode] = {}
        self._tds: Dict[str, TdsCode] = {}
        self._loaded = False
        self.load_errors: Dict[str, str] = {}
        self.lock = Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @classmethod
    def from_records(
        cls,
        items: List[Dict[str, Any]],
        taxes: List[Dict[str, Any]],
        tds_codes: List[Dict[str, Any]],
    ) -> "MasterDataCache":
        """Build an already-loaded cache from raw records."""
        cache = cls(None, None, None)
        cache._items = cls._index(items, ItemMaster.from_record, lambda r: r.hsn_code)
        cache._taxes = cls._index(taxes, TaxCode.from_record, lambda r: r.code)
        cache._tds = cls._index(tds_codes, TdsCode.from_record, lambda r: r.code)
        cache._loaded = True
        return cache

    def load(self) -> "MasterDataCache":
        """Fetch all three tables. Runs once; later calls are no-ops.

        Concurrent callers (e.g. a superseded load still running in a worker
        thread) wait for the first fetch instead of starting another.
        """
        with self.lock:
            if not self._loaded:
                self._load_tables()
        return self

    def _load_tables(self) -> None:
        logger = get_logger()
        self._items = self._index(
            self._fetch("items", self.item_repository),
            ItemMaster.from_record,
            lambda r: r.hsn_code,
        )
        self._taxes = self._index(
            self._fetch("tax", self.tax_repository),
            TaxCode.from_record,
            lambda r: r.code,
        )
        self._tds = self._index(
            self._fetch("tds", self.tds_repository),
            TdsCode.from_record,
            lambda r: r.code,
        )
        self._loaded = True
        logger.log_master_data_loaded(len(self._items), len(self._taxes), len(self._tds))

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def is_degraded(self) -> bool:
        return bool(self.load_errors)

    @property
    def item_count(self) -> int:
        return len(self._items)

    @property
    def tax_count(self) -> int:
        return len(self._taxes)

    @property
    def tds_count(self) -> int:
        return len(self._tds)

    def get_item_by_hsn(self, code: Any) -> Optional[ItemMaster]:
        key = normalize_hsn(code)
        return self._items.get(key) if key else None

    def get_tax_by_code(self, code: Any) -> Optional[TaxCode]:
        return self._taxes.get(self._code_key(code))

    def get_tds_by_code(self, code: Any) -> Optional[TdsCode]:
        return self._tds.get(self._code_key(code))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fetch(self, table: str, repository: Optional[RecordRepository]) -> List[Dict[str, Any]]:
        if repository is None:
            return []
        try:
            return repository.list(limit=self.page_size, offset=0)
        except RepositoryError as exc:
            self.load_errors[table] = str(exc)
            get_logger().warning(
                f"Could not load {table} master data, continuing without it: {exc}",
                component="MasterData",
            )
            return []

    @staticmethod
    def _code_key(code: Any) -> str:
        return "" if code is None else str(code).strip()

    @staticmethod
    def _index(
        records: List[Dict[str, Any]],
        build: Callable[[Dict[str, Any]], T],
        key_of: Callable[[T], str],
    ) -> Dict[str, T]:
        # First record wins on duplicate keys.
        index: Dict[str, T] = {}
        for record in records:
            entry = build(record)
            key = key_of(entry)
            if key and key not in index:
                index[key] = entry
        return index
