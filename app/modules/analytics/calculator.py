"""
Value calculators for transaction lines and documents

All arithmetic is done with Decimal. Discount percentages outside [0, 100]
are clamped (with a logged warning); negative quantities or prices are
rejected with InvalidTransactionError.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from app.modules.analytics.exceptions import InvalidTransactionError
from app.modules.transactions.schemas import HUNDRED, clamp_percent

ZERO = Decimal("0")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def apply_discount(amount: Decimal, discount_percent: Number) -> Decimal:
    discount = clamp_percent(to_decimal(discount_percent))
    return amount * (1 - discount / HUNDRED)


def line_value(line) -> Decimal:
    """
    Monetary value of one transaction line.

    quantity * unit_price * (1 - discount_percent / 100)
    """
    quantity = to_decimal(line.quantity)
    unit_price = to_decimal(line.unit_price)
    if quantity < 0:
        raise InvalidTransactionError(f"Negative quantity on line: {quantity}")
    if unit_price < 0:
        raise InvalidTransactionError(f"Negative unit price on line: {unit_price}")

    return apply_discount(quantity * unit_price, line.discount_percent)


def transaction_value(transaction) -> Decimal:
    """
    Document value: sum of line values with the document discount applied.

    The same formula yields sales, purchase and expense values depending on
    the transaction kind; for orders it is a provisional reporting total.
    """
    subtotal = sum((line_value(line) for line in transaction.lines), ZERO)
    return apply_discount(subtotal, transaction.document_discount_percent)


def safe_divide(numerator: Number, denominator: Number, fallback: Decimal = ZERO) -> Decimal:
    """Division that returns ``fallback`` instead of raising when the denominator is 0."""
    denominator = to_decimal(denominator)
    if denominator == 0:
        return fallback
    return to_decimal(numerator) / denominator


def pct_change(current: Number, previous: Number) -> Decimal:
    """
    Signed percentage change from ``previous`` to ``current``.

    A zero baseline yields 100 when the current value is positive and 0
    otherwise.
    """
    current = to_decimal(current)
    previous = to_decimal(previous)
    if previous == 0:
        return HUNDRED if current > 0 else ZERO
    return safe_divide(current - previous, previous) * HUNDRED


def round_decimal(value: Number, places: int = 2) -> Decimal:
    """Redondeo comercial (ROUND_HALF_UP) a ``places`` decimales"""
    quantum = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)
