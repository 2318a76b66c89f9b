"""Fixed-point money helpers.

All amounts are ``Decimal`` rounded half-up to two fractional digits at each
computed quantity (trade amount, fee, interest, average cost).
"""

from decimal import ROUND_HALF_UP, Decimal

MONEY_QUANTUM = Decimal("0.01")
PERCENT_QUANTUM = Decimal("0.0001")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value: Decimal | int | str) -> Decimal:
    """Round a value to money precision (half-up, 2 dp)."""
    return Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def percentage_of(amount: Decimal, percent: Decimal) -> Decimal:
    """Return ``amount * percent / 100`` at money precision."""
    return to_money(amount * percent / HUNDRED)


def weighted_average_cost(
    old_average: Decimal, old_quantity: int, amount: Decimal, quantity: int
) -> Decimal:
    """Cost basis after buying ``quantity`` shares for ``amount``."""
    new_quantity = old_quantity + quantity
    if new_quantity <= 0:
        return ZERO
    return to_money((old_average * old_quantity + amount) / new_quantity)


def to_percentage(value: Decimal) -> Decimal:
    """Round a percentage to four fractional digits (half-up)."""
    return Decimal(value).quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)
