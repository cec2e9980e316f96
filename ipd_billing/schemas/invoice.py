from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from ipd_billing.models.bed import BedRef
from ipd_billing.models.money import Money


class HospitalServiceLine(BaseModel):
    """Hospital services grouped by name."""
    name: str
    quantity: int
    unit_amount: Money
    total_amount: Money


class ConsultantChargeLine(BaseModel):
    """Doctor visits grouped by doctor."""
    doctor_name: str
    visits: int
    total_charge: Money
    last_visit: Optional[datetime] = None


class PaymentHistoryRow(BaseModel):
    label: str  # "Deposit" or the payment method
    amount: Money
    recorded_at: Optional[datetime] = None
    seq: Optional[int] = None  # None for the synthetic deposit row


class InvoiceView(BaseModel):
    record_id: str
    patient_id: str
    patient_name: Optional[str] = None
    bed: Optional[BedRef] = None
    admitted_at: datetime
    discharged_at: Optional[datetime] = None

    total_services_amount: Money
    completed_services_amount: Money
    pending_services_amount: Money
    deposit_total: Money
    outstanding: Money

    discount: Money
    total_bill: Money
    due_amount: Money

    hospital_services: List[HospitalServiceLine] = []
    consultant_charges: List[ConsultantChargeLine] = []
    payment_history: List[PaymentHistoryRow] = []
