import logging
from datetime import datetime, timezone
from typing import Optional

from ipd_billing.core.errors import NotFoundError, RecordDischargedError, ValidationError
from ipd_billing.models.ledger import LedgerRecord, ServiceKind, ServiceLineItem, ServiceStatus
from ipd_billing.models.money import Money
from ipd_billing.repositories.ledger_store import LedgerRecordStore
from ipd_billing.utils.billing_validation import validate_discount, validate_service

logger = logging.getLogger(__name__)


def _ensure_open(record: LedgerRecord) -> None:
    if record.discharged_at is not None:
        raise RecordDischargedError(record.id)


class ServiceLedger:
    """Itemized service charges of a stay: add, complete, discount."""

    def __init__(self, store: LedgerRecordStore):
        self.store = store

    async def add_service(
        self,
        record_id: str,
        name: str,
        amount: int,
        kind: ServiceKind = ServiceKind.SERVICE,
        doctor_name: Optional[str] = None
    ) -> LedgerRecord:
        """Prepend a pending line item. Totals follow from the new services list."""
        name, money, kind, doctor_name = validate_service(name, amount, kind, doctor_name)

        def mutation(record: LedgerRecord) -> LedgerRecord:
            _ensure_open(record)
            item = ServiceLineItem(
                seq=record.next_service_seq(),
                name=name,
                amount=money,
                kind=kind,
                doctor_name=doctor_name,
                status=ServiceStatus.PENDING,
                created_at=datetime.now(timezone.utc)
            )
            record.services.insert(0, item)
            return record

        record = await self.store.merge(record_id, mutation)
        logger.info(
            "Added %s '%s' (%s) to ledger record %s; outstanding %s",
            kind.value, name, money.format(), record_id, record.outstanding.format()
        )
        return record

    async def add_doctor_visit(self, record_id: str, doctor_name: str, amount: int) -> LedgerRecord:
        """Bill a consultant visit as a doctor_visit line item."""
        return await self.add_service(
            record_id,
            f"Consultant charge: Dr. {(doctor_name or '').strip()}",
            amount,
            kind=ServiceKind.DOCTOR_VISIT,
            doctor_name=doctor_name
        )

    async def complete_service(self, record_id: str, index: int) -> LedgerRecord:
        """
        Mark services[index] (most-recent-first) completed.

        Already completed is a no-op returning the current record.
        """
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValidationError(f"Service index must be an integer, got {index!r}", record_id)

        already_completed = False

        def mutation(record: LedgerRecord) -> LedgerRecord:
            nonlocal already_completed
            _ensure_open(record)
            if index < 0 or index >= len(record.services):
                raise NotFoundError(
                    f"Service index {index} out of range for ledger record {record_id} "
                    f"({len(record.services)} services)",
                    record_id
                )
            item = record.services[index]
            already_completed = item.is_completed()
            if already_completed:
                return record
            item.status = ServiceStatus.COMPLETED
            item.completed_at = datetime.now(timezone.utc)
            return record

        record = await self.store.merge(record_id, mutation)
        if already_completed:
            logger.info("Service #%d on ledger record %s already completed", index, record_id)
            return record

        logger.info(
            "Completed service #%d on ledger record %s; total paid %s",
            index, record_id, record.total_paid.format()
        )
        return record

    async def apply_discount(self, record_id: str, amount: int) -> LedgerRecord:
        """Set the bill discount. It may not exceed the total service charges."""
        money = validate_discount(amount)

        def mutation(record: LedgerRecord) -> LedgerRecord:
            _ensure_open(record)
            if money > record.total_services:
                raise ValidationError(
                    f"Discount {money.format()} exceeds total charges {record.total_services.format()}",
                    record_id
                )
            record.discount = Money(money)
            return record

        record = await self.store.merge(record_id, mutation)
        logger.info("Discount on ledger record %s set to %s", record_id, money.format())
        return record
