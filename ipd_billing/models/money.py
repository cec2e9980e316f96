"""
Money - integer-scaled currency amount.

All amounts are whole minor units (paise for INR). Money is an int, so sums
and comparisons are exact and MongoDB stores it as a plain integer. Floats
are refused outright; convert decimal input with Money.from_major().
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from ipd_billing.core.config import settings
from ipd_billing.core.errors import ValidationError


class Money(int):

    def __new__(cls, value: Any = 0):
        if isinstance(value, bool) or isinstance(value, float):
            raise ValidationError(f"Money must be an integer amount of minor units, got {value!r}")
        if isinstance(value, Decimal):
            if value != value.to_integral_value():
                raise ValidationError(f"Money must be an integer amount of minor units, got {value}")
        return super().__new__(cls, value)

    @classmethod
    def from_major(cls, value: Any) -> "Money":
        """Convert a major-unit amount ("12.50", 12, Decimal) to minor units."""
        if isinstance(value, float):
            value = str(value)
        try:
            minor = Decimal(value) * settings.MINOR_UNITS_PER_MAJOR
        except (InvalidOperation, TypeError):
            raise ValidationError(f"Invalid amount: {value!r}")
        if minor != minor.to_integral_value():
            raise ValidationError(f"Amount {value} has more precision than the currency allows")
        return cls(int(minor))

    @classmethod
    def total(cls, amounts: Iterable[int]) -> "Money":
        return cls(sum(amounts, 0))

    def __add__(self, other):
        if isinstance(other, int) and not isinstance(other, bool):
            return Money(int(self) + int(other))
        return NotImplemented

    __radd__ = __add__

    def __sub__(self, other):
        if isinstance(other, int) and not isinstance(other, bool):
            return Money(int(self) - int(other))
        return NotImplemented

    def __rsub__(self, other):
        if isinstance(other, int) and not isinstance(other, bool):
            return Money(int(other) - int(self))
        return NotImplemented

    def __neg__(self):
        return Money(-int(self))

    def __repr__(self) -> str:
        return f"Money({int(self)})"

    def format(self) -> str:
        """Render as a major-unit string, e.g. Money(125050) -> "1250.50"."""
        scale = settings.MINOR_UNITS_PER_MAJOR
        digits = len(str(scale)) - 1
        sign = "-" if self < 0 else ""
        major, minor = divmod(abs(int(self)), scale)
        if digits == 0:
            return f"{sign}{major}"
        return f"{sign}{major}.{minor:0{digits}d}"

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any):
        from pydantic_core import core_schema

        return core_schema.no_info_plain_validator_function(
            cls.validate,
            serialization=core_schema.plain_serializer_function_ser_schema(int),
        )

    @classmethod
    def validate(cls, value: Any) -> "Money":
        if isinstance(value, Money):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        raise ValueError("Money must be an integer amount of minor units")
