"""
Invoice projector - read-only view of a LedgerRecord for printing.

Pure: takes a record snapshot, returns an InvoiceView, touches nothing else.
"""

from typing import Dict, List

from ipd_billing.models.ledger import LedgerRecord, ServiceKind, ServiceStatus
from ipd_billing.models.money import Money
from ipd_billing.schemas.invoice import (
    ConsultantChargeLine,
    HospitalServiceLine,
    InvoiceView,
    PaymentHistoryRow,
)

DEPOSIT_LABEL = "Deposit"


def project(record: LedgerRecord) -> InvoiceView:
    total_services = Money.total(s.amount for s in record.services)
    completed = Money.total(s.amount for s in record.services if s.status == ServiceStatus.COMPLETED)
    pending = total_services - completed

    deposit_total = record.initial_deposit + Money.total(p.amount for p in record.payments)
    total_bill = total_services - record.discount

    return InvoiceView(
        record_id=record.id,
        patient_id=record.patient_id,
        patient_name=record.patient_name,
        bed=record.bed or record.released_bed,
        admitted_at=record.admitted_at,
        discharged_at=record.discharged_at,
        total_services_amount=total_services,
        completed_services_amount=completed,
        pending_services_amount=pending,
        deposit_total=deposit_total,
        outstanding=deposit_total + total_services - completed,
        discount=record.discount,
        total_bill=total_bill,
        due_amount=Money(max(total_bill - deposit_total, 0)),
        hospital_services=_group_hospital_services(record),
        consultant_charges=_group_consultant_charges(record),
        payment_history=_payment_history(record, deposit_total),
    )


def _group_hospital_services(record: LedgerRecord) -> List[HospitalServiceLine]:
    # Oldest first so the invoice lists services in the order they were billed
    lines: Dict[str, HospitalServiceLine] = {}
    for item in reversed(record.services):
        if item.kind != ServiceKind.SERVICE:
            continue
        line = lines.get(item.name)
        if line is None:
            lines[item.name] = HospitalServiceLine(
                name=item.name,
                quantity=1,
                unit_amount=item.amount,
                total_amount=item.amount,
            )
        else:
            line.quantity += 1
            line.total_amount = line.total_amount + item.amount
    return list(lines.values())


def _group_consultant_charges(record: LedgerRecord) -> List[ConsultantChargeLine]:
    lines: Dict[str, ConsultantChargeLine] = {}
    for item in reversed(record.services):
        if item.kind != ServiceKind.DOCTOR_VISIT:
            continue
        doctor = item.doctor_name or "Unknown"
        line = lines.get(doctor)
        if line is None:
            line = lines[doctor] = ConsultantChargeLine(
                doctor_name=doctor,
                visits=0,
                total_charge=Money(0),
            )
        line.visits += 1
        line.total_charge = line.total_charge + item.amount
        if line.last_visit is None or item.created_at > line.last_visit:
            line.last_visit = item.created_at
    return list(lines.values())


def _payment_history(record: LedgerRecord, deposit_total: Money) -> List[PaymentHistoryRow]:
    explicit = Money.total(p.amount for p in record.payments)
    rows = [
        PaymentHistoryRow(
            label=DEPOSIT_LABEL,
            amount=deposit_total - explicit,
            recorded_at=record.admitted_at,
        )
    ]
    for payment in sorted(record.payments, key=lambda p: p.seq, reverse=True):
        rows.append(
            PaymentHistoryRow(
                label=payment.method,
                amount=payment.amount,
                recorded_at=payment.recorded_at,
                seq=payment.seq,
            )
        )
    return rows
