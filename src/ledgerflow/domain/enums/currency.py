from decimal import Decimal
from enum import Enum


class Currency(str, Enum):
    """Reporting currencies. Reports carry USD + VND side by side."""

    USD = "USD"
    VND = "VND"


# Quantum used when rounding an amount in that currency (banker's rounding)
CURRENCY_PRECISION: dict[str, Decimal] = {
    "VND": Decimal("1"),
    "JPY": Decimal("1"),
    "KRW": Decimal("1"),
}
DEFAULT_PRECISION = Decimal("0.01")
