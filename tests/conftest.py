import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock

from ipd_billing.models.bed import BedRef, BedStatus
from ipd_billing.models.ledger import LedgerRecord
from ipd_billing.models.money import Money
from ipd_billing.repositories.bed_repo import InMemoryBedRegistry
from ipd_billing.repositories.ledger_store import InMemoryLedgerStore
from ipd_billing.services.discharge_service import DischargeService
from ipd_billing.services.payment_ledger import PaymentLedger
from ipd_billing.services.service_ledger import ServiceLedger

RECORD_ID = "ipd-1001"
WARD_BED = BedRef(room_type="General", bed_id="B-12")


@pytest.fixture
def store():
    """Fresh in-memory ledger store per test."""
    return InMemoryLedgerStore()


@pytest.fixture
def beds():
    registry = InMemoryBedRegistry()
    registry.add_bed(WARD_BED.room_type, WARD_BED.bed_id, BedStatus.OCCUPIED)
    return registry


@pytest.fixture
def service_ledger(store):
    return ServiceLedger(store)


@pytest.fixture
def payment_ledger(store):
    return PaymentLedger(store, ["cash", "online", "card"])


@pytest.fixture
def discharge_service(store, beds):
    return DischargeService(store, beds)


def make_record(record_id: str = RECORD_ID, deposit: int = 5000, bed=WARD_BED) -> LedgerRecord:
    return LedgerRecord(
        id=record_id,
        patient_id="patient-42",
        patient_name="Asha Verma",
        initial_deposit=Money(deposit),
        bed=bed
    )


@pytest_asyncio.fixture
async def admitted_record(store):
    """Admission record: deposit 5000, bed General/B-12."""
    return await store.create(make_record())


@pytest_asyncio.fixture
async def bedless_record(store):
    return await store.create(make_record(record_id="ipd-2002", bed=None))


@pytest.fixture
def mock_db():
    """Motor database double: every collection is the same mock."""
    db = MagicMock()
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock()
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.update_one = AsyncMock()
    db.__getitem__.return_value = collection
    return db


@pytest.fixture
def record_factory():
    return make_record
