"""
Usage-Limit Ledger

Client-side record of free generations, the single free retry, purchases and
pack credits. It drives the UI and is not a trust boundary.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

import config
from security_utils import safe_parse_int

logger = logging.getLogger(__name__)

STORAGE_KEY = "lumepet_generation_limits"

LIMIT_REACHED_REASON = (
    f"You've reached your free generation limit ({config.FREE_GENERATION_LIMIT} free generations). "
    "Purchase a pack to unlock more un-watermarked generations!"
)


class LedgerRecord(BaseModel):
    """Persisted ledger document. Field aliases match the stored JSON keys."""
    model_config = ConfigDict(populate_by_name=True)

    free_generations_used: int = Field(0, alias="freeGenerations")
    free_retry_used: bool = Field(False, alias="freeRetriesUsed")
    purchase_count: int = Field(0, alias="purchases")
    pack_purchase_count: int = Field(0, alias="packPurchases")
    pack_credits_remaining: int = Field(0, alias="packCredits")
    last_reset: Optional[str] = Field(None, alias="lastReset")

    @field_validator("free_generations_used", "purchase_count", "pack_purchase_count", "pack_credits_remaining", mode="before")
    @classmethod
    def _non_negative_int(cls, value: Any) -> int:
        return max(safe_parse_int(value, 0), 0)

    @field_validator("free_retry_used", mode="before")
    @classmethod
    def _truthy(cls, value: Any) -> bool:
        # Older documents stored the retry flag as a 0/1 counter
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true")
        return bool(value)

    @field_validator("last_reset", mode="before")
    @classmethod
    def _optional_str(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None

    def to_document(self) -> Dict[str, Any]:
        document = self.model_dump(by_alias=True)
        document["freeRetriesUsed"] = 1 if self.free_retry_used else 0
        if self.last_reset is None:
            document.pop("lastReset")
        return document


class LimitCheck(NamedTuple):
    allowed: bool
    reason: Optional[str] = None
    has_pack_credits: bool = False


class LedgerStore:
    """Loads and saves the raw ledger document"""

    def load(self) -> Optional[str]:
        raise NotImplementedError

    def save(self, document: str) -> None:
        raise NotImplementedError


class InMemoryLedgerStore(LedgerStore):
    def __init__(self, document: Optional[str] = None):
        self.document = document

    def load(self) -> Optional[str]:
        return self.document

    def save(self, document: str) -> None:
        self.document = document


class JsonFileLedgerStore(LedgerStore):
    """Stores the ledger as a JSON file, by default ~/.lumepet/lumepet_generation_limits.json"""

    def __init__(self, path: Optional[os.PathLike] = None):
        self.path = Path(path) if path else Path.home() / ".lumepet" / f"{STORAGE_KEY}.json"

    def load(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"⚠️ Could not read ledger file {self.path}: {e}")
            return None

    def save(self, document: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(document, encoding="utf-8")
        os.replace(tmp_path, self.path)


class UsageLedger:
    """
    Read-modify-write operations over a LedgerStore.

    Every operation loads the whole record, changes it and saves it back, so
    several ledgers sharing one store always see the latest counters.
    """

    def __init__(self, store: Optional[LedgerStore] = None):
        self.store = store if store is not None else InMemoryLedgerStore()

    def snapshot(self) -> LedgerRecord:
        raw = self.store.load()
        if not raw:
            return LedgerRecord()
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("⚠️ Corrupt ledger document, starting from zero")
            return LedgerRecord()
        if not isinstance(data, dict):
            return LedgerRecord()
        return LedgerRecord.model_validate(data)

    def _save(self, record: LedgerRecord) -> LedgerRecord:
        self.store.save(json.dumps(record.to_document()))
        return record

    def evaluate(self) -> LimitCheck:
        """Whether another generation is allowed right now"""
        record = self.snapshot()
        if record.pack_credits_remaining > 0:
            return LimitCheck(allowed=True, has_pack_credits=True)

        total_allowed = config.FREE_GENERATION_LIMIT + config.GENERATIONS_PER_PURCHASE * record.purchase_count
        if record.free_generations_used >= total_allowed:
            return LimitCheck(allowed=False, reason=LIMIT_REACHED_REASON)
        return LimitCheck(allowed=True)

    def record_generation(self, is_retry: bool = False) -> LedgerRecord:
        record = self.snapshot()
        record.free_generations_used += 1
        if is_retry:
            record.free_retry_used = True
        return self._save(record)

    def consume_pack_credit(self) -> LedgerRecord:
        record = self.snapshot()
        if record.pack_credits_remaining > 0:
            record.pack_credits_remaining -= 1
            self._save(record)
        return record

    def record_purchase(self, pack_credits: int = 0) -> LedgerRecord:
        record = self.snapshot()
        record.purchase_count += 1
        record.pack_credits_remaining += max(pack_credits, 0)
        return self._save(record)

    def record_pack_purchase(self, credits: int = config.PACK_2_GENERATIONS) -> LedgerRecord:
        record = self.snapshot()
        record.pack_purchase_count += 1
        record.pack_credits_remaining += max(credits, 0)
        logger.info(f"✅ Pack purchased, {record.pack_credits_remaining} pack credits available")
        return self._save(record)
