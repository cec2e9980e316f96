"""
Composition root: wires a store, a bed registry and the ledger services.

    core = await create_billing_core()
    record = await core.services.add_service(record_id, "X-Ray", 1200)
    invoice = core.invoice(record)
"""

from dataclasses import dataclass
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ipd_billing.core.config import settings
from ipd_billing.core.logging_config import configure_logging
from ipd_billing.db.session import get_database, close_mongo_connection
from ipd_billing.models.ledger import LedgerRecord
from ipd_billing.repositories.bed_repo import BedRegistry, InMemoryBedRegistry, MongoBedRegistry
from ipd_billing.repositories.ledger_store import (
    InMemoryLedgerStore,
    LedgerRecordStore,
    MongoLedgerStore,
)
from ipd_billing.schemas.invoice import InvoiceView
from ipd_billing.services.discharge_service import DischargeService
from ipd_billing.services.invoice_projector import project
from ipd_billing.services.payment_ledger import PaymentLedger
from ipd_billing.services.service_ledger import ServiceLedger


@dataclass
class BillingCore:
    store: LedgerRecordStore
    beds: BedRegistry
    services: ServiceLedger
    payments: PaymentLedger
    discharge: DischargeService

    def invoice(self, record: LedgerRecord) -> InvoiceView:
        return project(record)


def build_billing_core(store: LedgerRecordStore, beds: BedRegistry) -> BillingCore:
    return BillingCore(
        store=store,
        beds=beds,
        services=ServiceLedger(store),
        payments=PaymentLedger(store, settings.PAYMENT_METHODS),
        discharge=DischargeService(store, beds),
    )


async def create_billing_core(db: Optional[AsyncIOMotorDatabase] = None) -> BillingCore:
    """Mongo-backed core. Connects using settings when no database is given."""
    if db is None:
        db = await get_database()
    return build_billing_core(MongoLedgerStore(db), MongoBedRegistry(db))


def create_in_memory_core() -> BillingCore:
    return build_billing_core(InMemoryLedgerStore(), InMemoryBedRegistry())


async def startup() -> BillingCore:
    configure_logging(settings.LOG_LEVEL)
    return await create_billing_core()


async def shutdown() -> None:
    await close_mongo_connection()
