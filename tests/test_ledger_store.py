"""
Tests for the ledger record store.

Covers:
- create / fetch / not found
- Optimistic merge: version bump, conflict retry, retry exhaustion
- No-op merges (no write, no notification)
- Subscriber fan-out
- Mongo backend queries (mocked motor collection)
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock
from pymongo.errors import DuplicateKeyError

from ipd_billing.core.errors import ConcurrentUpdateError, NotFoundError, ValidationError
from ipd_billing.models.ledger import LedgerRecord, PaymentEntry
from ipd_billing.models.money import Money
from ipd_billing.repositories.ledger_store import InMemoryLedgerStore, MongoLedgerStore


def _add_payment(amount):
    def mutation(record: LedgerRecord) -> LedgerRecord:
        record.payments.insert(0, PaymentEntry(
            seq=record.next_payment_seq(),
            amount=Money(amount),
            method="cash"
        ))
        return record
    return mutation


class AlwaysConflictingStore(InMemoryLedgerStore):
    async def _compare_and_set(self, record, expected_version):
        return False


# ===== IN-MEMORY STORE =====

@pytest.mark.asyncio
async def test_create_and_fetch(store, record_factory):
    await store.create(record_factory())

    record = await store.fetch("ipd-1001")
    assert record.patient_id == "patient-42"
    assert record.version == 1
    assert record.deposit_total == 5000


@pytest.mark.asyncio
async def test_create_duplicate_rejected(store, record_factory):
    await store.create(record_factory())
    with pytest.raises(ValidationError):
        await store.create(record_factory())


@pytest.mark.asyncio
async def test_fetch_unknown_record(store):
    with pytest.raises(NotFoundError) as exc_info:
        await store.fetch("missing")
    assert exc_info.value.record_id == "missing"


@pytest.mark.asyncio
async def test_merge_bumps_version_and_persists(store, admitted_record):
    updated = await store.merge(admitted_record.id, _add_payment(700))

    assert updated.version == 2
    assert updated.deposit_total == 5700
    assert (await store.fetch(admitted_record.id)).deposit_total == 5700


@pytest.mark.asyncio
async def test_merge_mutation_gets_private_copy(store, admitted_record):
    seen = []

    def mutation(record):
        seen.append(record)
        record.payments.append(PaymentEntry(seq=1, amount=Money(1), method="cash"))
        raise ValidationError("rejected")

    with pytest.raises(ValidationError):
        await store.merge(admitted_record.id, mutation)

    # Nothing the mutation did leaks into the store
    stored = await store.fetch(admitted_record.id)
    assert stored.payments == []
    assert stored.version == 1


@pytest.mark.asyncio
async def test_merge_no_change_is_not_written(store, admitted_record):
    notifications = []
    store.subscribe(admitted_record.id, notifications.append)

    result = await store.merge(admitted_record.id, lambda record: record)

    assert result.version == 1
    assert notifications == []


@pytest.mark.asyncio
async def test_concurrent_merges_both_preserved(store, admitted_record):
    """Two writers starting from the same version: the loser retries on fresh state."""
    await asyncio.gather(
        store.merge(admitted_record.id, _add_payment(100)),
        store.merge(admitted_record.id, _add_payment(200)),
    )

    final = await store.fetch(admitted_record.id)
    assert sorted(p.amount for p in final.payments) == [100, 200]
    assert sorted(p.seq for p in final.payments) == [1, 2]
    assert final.deposit_total == 5300
    assert final.version == 3


@pytest.mark.asyncio
async def test_merge_gives_up_after_max_retries(record_factory):
    store = AlwaysConflictingStore(max_retries=3)
    await store.create(record_factory())

    with pytest.raises(ConcurrentUpdateError) as exc_info:
        await store.merge("ipd-1001", _add_payment(100))

    assert exc_info.value.attempts == 3
    assert (await store.fetch("ipd-1001")).payments == []


@pytest.mark.asyncio
async def test_subscribers_notified_once_per_write(store, admitted_record):
    notifications = []
    unsubscribe = store.subscribe(admitted_record.id, notifications.append)

    await store.merge(admitted_record.id, _add_payment(100))
    await store.merge(admitted_record.id, _add_payment(200))
    unsubscribe()
    await store.merge(admitted_record.id, _add_payment(300))

    assert [r.version for r in notifications] == [2, 3]
    assert notifications[-1].deposit_total == 5300


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_fail_write(store, admitted_record):
    def broken(record):
        raise RuntimeError("listener down")

    received = []
    store.subscribe(admitted_record.id, broken)
    store.subscribe(admitted_record.id, received.append)

    updated = await store.merge(admitted_record.id, _add_payment(100))

    assert updated.version == 2
    assert len(received) == 1


# ===== MONGO STORE =====

@pytest.mark.asyncio
async def test_mongo_merge_uses_version_filter(mock_db, record_factory):
    store = MongoLedgerStore(mock_db)
    collection = mock_db["ledger_records"]
    doc = record_factory().to_document()
    collection.find_one.return_value = doc
    collection.find_one_and_update.return_value = {**doc, "version": 2}

    updated = await store.merge("ipd-1001", _add_payment(250))

    assert updated.version == 2
    assert updated.deposit_total == 5250
    filter_doc, update_doc = collection.find_one_and_update.call_args.args[:2]
    assert filter_doc == {"_id": "ipd-1001", "version": 1}
    assert update_doc["$set"]["version"] == 2
    assert update_doc["$set"]["payments"][0]["amount"] == 250
    assert "_id" not in update_doc["$set"]


@pytest.mark.asyncio
async def test_mongo_merge_retries_on_conflict(mock_db, record_factory):
    store = MongoLedgerStore(mock_db)
    collection = mock_db["ledger_records"]
    first = record_factory().to_document()
    second = {**first, "version": 2}
    collection.find_one = AsyncMock(side_effect=[first, second])
    collection.find_one_and_update = AsyncMock(side_effect=[None, {**second, "version": 3}])

    updated = await store.merge("ipd-1001", _add_payment(250))

    assert updated.version == 3
    assert collection.find_one_and_update.await_count == 2
    retry_filter = collection.find_one_and_update.call_args_list[1].args[0]
    assert retry_filter == {"_id": "ipd-1001", "version": 2}


@pytest.mark.asyncio
async def test_mongo_fetch_missing(mock_db):
    store = MongoLedgerStore(mock_db)
    with pytest.raises(NotFoundError):
        await store.fetch("ipd-404")


@pytest.mark.asyncio
async def test_mongo_create_duplicate(mock_db, record_factory):
    store = MongoLedgerStore(mock_db)
    mock_db["ledger_records"].insert_one = AsyncMock(side_effect=DuplicateKeyError("dup"))

    with pytest.raises(ValidationError):
        await store.create(record_factory())


@pytest.mark.asyncio
async def test_mongo_list_pending_bed_releases(mock_db, record_factory):
    store = MongoLedgerStore(mock_db)
    collection = mock_db["ledger_records"]
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[record_factory().to_document()])
    collection.find = MagicMock(return_value=cursor)

    pending = await store.list_pending_bed_releases()

    assert [r.id for r in pending] == ["ipd-1001"]
    query = collection.find.call_args.args[0]
    assert query == {
        "discharged_at": {"$ne": None},
        "bed": {"$ne": None},
        "bed_release_started_at": None
    }
