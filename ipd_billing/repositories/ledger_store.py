"""
LedgerRecordStore - owns the canonical billing record per stay.

Core algorithm (merge):
1. Load the current persisted record (never a caller-supplied copy)
2. Hand a private copy to the mutation, which returns the record to persist
3. Compare-and-set on the loaded version; bump version on success
4. On a version conflict, reload and go again (bounded), then give up
5. Notify subscribers once per committed write

Mutation exceptions (validation, discharged, not found) propagate at once;
only version conflicts are retried.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ipd_billing.core.config import settings
from ipd_billing.core.errors import ConcurrentUpdateError, NotFoundError, ValidationError
from ipd_billing.models.ledger import LedgerRecord

logger = logging.getLogger(__name__)

Mutation = Callable[[LedgerRecord], LedgerRecord]
Subscriber = Callable[[LedgerRecord], None]

# Derived fields are persisted as a read snapshot but never compared or loaded
_DERIVED_FIELDS = {
    "deposit_total",
    "total_services",
    "total_paid",
    "outstanding",
    "is_discharged",
    "bed_release_pending",
    "bed_release_in_progress",
}


def _comparable(record: LedgerRecord) -> dict:
    return record.model_dump(exclude=_DERIVED_FIELDS | {"version", "updated_at"})


class LedgerRecordStore:
    """Backend-independent fetch / merge / subscribe. Subclasses supply storage."""

    def __init__(self, max_retries: Optional[int] = None):
        self.max_retries = max_retries or settings.MERGE_MAX_RETRIES
        self._subscribers: Dict[str, List[Subscriber]] = {}

    # ===== STORAGE HOOKS =====

    async def _load(self, record_id: str) -> Optional[LedgerRecord]:
        raise NotImplementedError

    async def _insert(self, record: LedgerRecord) -> None:
        raise NotImplementedError

    async def _compare_and_set(self, record: LedgerRecord, expected_version: int) -> bool:
        """Persist `record` only if the stored version still equals expected_version."""
        raise NotImplementedError

    async def list_pending_bed_releases(self) -> List[LedgerRecord]:
        raise NotImplementedError

    # ===== PUBLIC API =====

    async def create(self, record: LedgerRecord) -> LedgerRecord:
        """Insert an admission record. Duplicate ids raise ValidationError."""
        await self._insert(record)
        logger.info(
            "Opened ledger record %s for patient %s with deposit %s",
            record.id, record.patient_id, record.initial_deposit.format()
        )
        return record

    async def fetch(self, record_id: str) -> LedgerRecord:
        record = await self._load(record_id)
        if record is None:
            raise NotFoundError(f"Ledger record {record_id} not found", record_id)
        return record

    async def merge(self, record_id: str, mutation: Mutation) -> LedgerRecord:
        """
        Apply `mutation` to the freshest persisted record and write it back.

        Returns the committed record, or the current one unchanged when the
        mutation made no change (no write, no notification).
        Raises ConcurrentUpdateError once max_retries conflicts have occurred.
        """
        for attempt in range(1, self.max_retries + 1):
            current = await self.fetch(record_id)
            updated = mutation(current.model_copy(deep=True))

            if _comparable(updated) == _comparable(current):
                return current

            updated.version = current.version + 1
            updated.updated_at = datetime.now(timezone.utc)

            if await self._compare_and_set(updated, current.version):
                self._notify(updated)
                return updated

            logger.warning(
                "Version conflict on ledger record %s (attempt %d/%d, expected version %d)",
                record_id, attempt, self.max_retries, current.version
            )

        raise ConcurrentUpdateError(record_id, self.max_retries)

    def subscribe(self, record_id: str, on_change: Subscriber) -> Callable[[], None]:
        """Register `on_change` for committed writes of record_id. Returns an unsubscribe callable."""
        self._subscribers.setdefault(record_id, []).append(on_change)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(record_id, [])
            if on_change in callbacks:
                callbacks.remove(on_change)
            if not callbacks:
                self._subscribers.pop(record_id, None)

        return unsubscribe

    def _notify(self, record: LedgerRecord) -> None:
        for callback in list(self._subscribers.get(record.id, [])):
            try:
                callback(record)
            except Exception:
                # The write is committed; a broken listener must not report it as failed
                logger.exception("Subscriber failed for ledger record %s", record.id)


class MongoLedgerStore(LedgerRecordStore):
    """Ledger records in a MongoDB collection, one document per stay."""

    def __init__(self, db: AsyncIOMotorDatabase, max_retries: Optional[int] = None):
        super().__init__(max_retries)
        self.db = db
        self.collection = db[settings.LEDGER_COLLECTION]

    async def _load(self, record_id: str) -> Optional[LedgerRecord]:
        doc = await self.collection.find_one({"_id": record_id})
        if doc:
            return LedgerRecord(**doc)
        return None

    async def _insert(self, record: LedgerRecord) -> None:
        try:
            await self.collection.insert_one(record.to_document())
        except DuplicateKeyError:
            raise ValidationError(f"Ledger record {record.id} already exists", record.id)

    async def _compare_and_set(self, record: LedgerRecord, expected_version: int) -> bool:
        doc = record.to_document()
        doc.pop("_id")
        result = await self.collection.find_one_and_update(
            {
                "_id": record.id,
                "version": expected_version  # Optimistic lock
            },
            {"$set": doc},
            return_document=ReturnDocument.AFTER
        )
        return result is not None

    async def list_pending_bed_releases(self) -> List[LedgerRecord]:
        docs = await self.collection.find({
            "discharged_at": {"$ne": None},
            "bed": {"$ne": None},
            "bed_release_started_at": None  # unclaimed releases only
        }).sort("discharged_at", 1).to_list(None)
        return [LedgerRecord(**doc) for doc in docs]


class InMemoryLedgerStore(LedgerRecordStore):
    """
    Process-local store with the same version semantics as MongoLedgerStore.

    Each load snapshots the document and then yields to the event loop, so
    concurrent tasks can act on the same stale version the way they would
    around a network round trip.
    """

    def __init__(self, max_retries: Optional[int] = None):
        super().__init__(max_retries)
        self._documents: Dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def _load(self, record_id: str) -> Optional[LedgerRecord]:
        doc = self._documents.get(record_id)
        await asyncio.sleep(0)
        if doc is None:
            return None
        return LedgerRecord(**doc)

    async def _insert(self, record: LedgerRecord) -> None:
        async with self._lock:
            if record.id in self._documents:
                raise ValidationError(f"Ledger record {record.id} already exists", record.id)
            self._documents[record.id] = record.to_document()

    async def _compare_and_set(self, record: LedgerRecord, expected_version: int) -> bool:
        async with self._lock:
            stored = self._documents.get(record.id)
            if stored is None or stored["version"] != expected_version:
                return False
            self._documents[record.id] = record.to_document()
            return True

    async def list_pending_bed_releases(self) -> List[LedgerRecord]:
        records = [LedgerRecord(**doc) for doc in self._documents.values()]
        pending = [r for r in records if r.bed_release_pending]
        return sorted(pending, key=lambda r: r.discharged_at)
