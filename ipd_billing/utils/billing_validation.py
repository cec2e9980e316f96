"""Billing input validation utilities. Run before any store call."""
from typing import Any, Iterable, Optional

from ipd_billing.core.errors import ValidationError
from ipd_billing.models.ledger import ServiceKind
from ipd_billing.models.money import Money


def validate_amount(amount: Any, what: str = "Amount") -> Money:
    """
    Validate a positive money amount.

    Rules:
    - must be an integer number of minor units (no floats)
    - must be > 0
    """
    if isinstance(amount, Money):
        money = amount
    elif isinstance(amount, int) and not isinstance(amount, bool):
        money = Money(amount)
    else:
        raise ValidationError(f"{what} must be an integer amount of minor units, got {amount!r}")

    if money <= 0:
        raise ValidationError(f"{what} must be positive: {int(money)}")
    return money


def validate_service(name: Optional[str], amount: Any, kind: Any, doctor_name: Optional[str]):
    """
    Validate a new service line item.

    Rules:
    - name must be non-empty after trimming
    - amount must be positive
    - kind must be a known ServiceKind
    - doctor visits need a doctor name; plain services must not carry one
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Service name is required")

    money = validate_amount(amount, f"Service '{name}' amount")

    try:
        kind = ServiceKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown service kind: {kind!r}")

    doctor_name = (doctor_name or "").strip() or None
    if kind == ServiceKind.DOCTOR_VISIT and doctor_name is None:
        raise ValidationError(f"Doctor visit '{name}' requires a doctor name")
    if kind == ServiceKind.SERVICE and doctor_name is not None:
        raise ValidationError(f"Service '{name}' cannot carry a doctor name")

    return name, money, kind, doctor_name


def validate_payment(amount: Any, method: Optional[str], allowed_methods: Iterable[str]):
    """
    Validate a payment.

    Rules:
    - amount must be positive
    - method must be in the configured allow-list (case-insensitive)
    """
    money = validate_amount(amount, "Payment amount")

    allowed = {m.lower() for m in allowed_methods}
    normalized = (method or "").strip().lower()
    if normalized not in allowed:
        raise ValidationError(
            f"Payment method {method!r} is not allowed; expected one of {sorted(allowed)}"
        )
    return money, normalized


def validate_discount(amount: Any) -> Money:
    """Discount must be a non-negative integer amount."""
    if amount == 0 and not isinstance(amount, (bool, float)):
        return Money(0)
    return validate_amount(amount, "Discount")
