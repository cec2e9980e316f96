"""
LedgerRecord model - the per-stay billing aggregate.

Design principles:
- One record per admission, keyed by the id assigned at admission
- services and payments are most-recent-first; each entry carries a stable seq
- payments are append-only; deposit_total is derived from them, never edited
- totals (total_paid, outstanding, ...) are computed from the stored
  sequences on every read, so they cannot drift from their inputs
- discharged_at set = terminal for service/payment mutation
- All amounts are Money (integer minor units)
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

from ipd_billing.models.base import MongoModel, _utcnow
from ipd_billing.models.bed import BedRef
from ipd_billing.models.money import Money


class ServiceKind(str, Enum):
    SERVICE = "service"
    DOCTOR_VISIT = "doctor_visit"


class ServiceStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


# Embedded documents have no _id of their own; seq is their key within the record
class ServiceLineItem(BaseModel):
    seq: int
    name: str
    amount: Money
    kind: ServiceKind = ServiceKind.SERVICE
    doctor_name: Optional[str] = None  # only for doctor visits
    status: ServiceStatus = ServiceStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def is_completed(self) -> bool:
        return self.status == ServiceStatus.COMPLETED


class PaymentEntry(BaseModel):
    seq: int
    amount: Money
    method: str  # cash | online | card | ...
    recorded_at: datetime = Field(default_factory=_utcnow)
    idempotency_key: Optional[str] = None


class LedgerRecord(MongoModel):
    """
    Billing state of one stay.

    Invariants:
    - total_paid = sum of completed service amounts
    - outstanding = deposit_total + total_services - total_paid (may be negative)
    - deposit_total = initial_deposit + sum of payment amounts
    - discharged records accept no service or payment mutation
    - bed is set while admitted, and after discharge only until its release
      is confirmed (then it moves to released_bed)
    - bed_release_started_at is the release claim: only the caller that set
      it may call the bed registry for this stay
    """

    patient_id: str
    patient_name: Optional[str] = None

    initial_deposit: Money = Money(0)
    services: List[ServiceLineItem] = []
    payments: List[PaymentEntry] = []
    discount: Money = Money(0)

    bed: Optional[BedRef] = None
    released_bed: Optional[BedRef] = None
    bed_release_started_at: Optional[datetime] = None
    bed_released_at: Optional[datetime] = None

    admitted_at: datetime = Field(default_factory=_utcnow)
    discharged_at: Optional[datetime] = None

    @computed_field
    @property
    def deposit_total(self) -> Money:
        return self.initial_deposit + Money.total(p.amount for p in self.payments)

    @computed_field
    @property
    def total_services(self) -> Money:
        return Money.total(s.amount for s in self.services)

    @computed_field
    @property
    def total_paid(self) -> Money:
        return Money.total(s.amount for s in self.services if s.is_completed())

    @computed_field
    @property
    def outstanding(self) -> Money:
        return self.deposit_total + self.total_services - self.total_paid

    @computed_field
    @property
    def is_discharged(self) -> bool:
        return self.discharged_at is not None

    @computed_field
    @property
    def bed_release_pending(self) -> bool:
        """Discharged, bed still held, and nobody has claimed its release."""
        return self.is_discharged and self.bed is not None and self.bed_release_started_at is None

    @computed_field
    @property
    def bed_release_in_progress(self) -> bool:
        return self.is_discharged and self.bed is not None and self.bed_release_started_at is not None

    def next_service_seq(self) -> int:
        return max((s.seq for s in self.services), default=0) + 1

    def next_payment_seq(self) -> int:
        return max((p.seq for p in self.payments), default=0) + 1

    def find_payment(self, idempotency_key: str) -> Optional[PaymentEntry]:
        for payment in self.payments:
            if payment.idempotency_key == idempotency_key:
                return payment
        return None
