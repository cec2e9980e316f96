import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from ipd_billing.core.config import settings
from ipd_billing.core.errors import RecordDischargedError, ValidationError
from ipd_billing.models.ledger import LedgerRecord, PaymentEntry
from ipd_billing.repositories.ledger_store import LedgerRecordStore
from ipd_billing.utils.billing_validation import validate_payment

logger = logging.getLogger(__name__)


class PaymentLedger:
    """
    Append-only payment log of a stay.

    deposit_total is initial_deposit plus the sum of this log, so replaying
    the entries always reproduces it. Entries are never edited or removed.
    """

    def __init__(self, store: LedgerRecordStore, allowed_methods: Optional[Iterable[str]] = None):
        self.store = store
        self.allowed_methods = list(allowed_methods or settings.PAYMENT_METHODS)

    async def record_payment(
        self,
        record_id: str,
        amount: int,
        method: str,
        idempotency_key: Optional[str] = None
    ) -> LedgerRecord:
        """
        Prepend a payment entry.

        A repeated call with an idempotency_key already on the record returns
        the record unchanged instead of charging twice, even after discharge.
        """
        money, method = validate_payment(amount, method, self.allowed_methods)
        if idempotency_key is not None:
            idempotency_key = idempotency_key.strip()
            if not idempotency_key:
                raise ValidationError("Idempotency key cannot be blank", record_id)

        replayed = False

        def mutation(record: LedgerRecord) -> LedgerRecord:
            nonlocal replayed
            replayed = False
            if idempotency_key is not None:
                existing = record.find_payment(idempotency_key)
                if existing is not None:
                    if existing.amount != money or existing.method != method:
                        raise ValidationError(
                            f"Idempotency key {idempotency_key!r} was already used for a "
                            f"different payment on ledger record {record_id}",
                            record_id
                        )
                    replayed = True
                    return record

            if record.discharged_at is not None:
                raise RecordDischargedError(record.id)

            entry = PaymentEntry(
                seq=record.next_payment_seq(),
                amount=money,
                method=method,
                recorded_at=datetime.now(timezone.utc),
                idempotency_key=idempotency_key
            )
            record.payments.insert(0, entry)
            return record

        record = await self.store.merge(record_id, mutation)
        if replayed:
            logger.info(
                "Payment with key %s already recorded on ledger record %s",
                idempotency_key, record_id
            )
            return record

        logger.info(
            "Recorded %s payment of %s on ledger record %s; deposit total %s",
            method, money.format(), record_id, record.deposit_total.format()
        )
        return record
