from decimal import Decimal, ROUND_HALF_UP, getcontext
from typing import Iterable

getcontext().prec = 28
ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENTS = Decimal("0.01")


def qround(d: Decimal, precision: Decimal = CENTS) -> Decimal:
    return d.quantize(precision, rounding=ROUND_HALF_UP)


def minimal_unit(decimal_places: int) -> Decimal:
    """
    Smallest representable increment for a currency.

    minimal_unit(2) -> Decimal("0.01"), minimal_unit(0) -> Decimal("1")
    """
    if decimal_places < 0:
        raise ValueError("decimal_places cannot be negative")
    return Decimal(1).scaleb(-decimal_places)


def safe_divide(dividend: Decimal, divisor: Decimal) -> Decimal:
    if divisor == ZERO:
        return ZERO
    return dividend / divisor


def dsum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)
