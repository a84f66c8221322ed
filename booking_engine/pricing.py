"""
Booking price arithmetic. Pure functions, no I/O.

Every line passed in only needs ``price`` and ``quantity`` attributes, so the
same calculator prices cart lines before they are persisted and the ORM rows
after they are.
"""
import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0")

# Package types priced per night; everything else (tours) is a flat price
NIGHTLY_PACKAGE_TYPES = frozenset({"hotel", "apartment"})


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def nights_between(start_date: datetime.date, end_date: datetime.date) -> int:
    return (end_date - start_date).days


def unit_price(package_type: str, rate, start_date: datetime.date, end_date: datetime.date) -> Decimal:
    """Snapshot price of one unit of a booking item for the whole stay."""
    rate = Decimal(str(rate))
    if package_type in NIGHTLY_PACKAGE_TYPES:
        return to_money(rate * nights_between(start_date, end_date))
    return to_money(rate)


def lines_subtotal(lines: Iterable) -> Decimal:
    return sum((Decimal(str(line.price)) * line.quantity for line in lines), ZERO)


def discount_for(
    base_total: Decimal,
    discount_amount: Optional[Decimal] = None,
    discount_percentage: Optional[Decimal] = None,
) -> Decimal:
    if discount_amount is not None:
        return Decimal(str(discount_amount))
    if discount_percentage is not None:
        return base_total * Decimal(str(discount_percentage)) / Decimal("100")
    return ZERO


def calculate_total(
    items: Iterable,
    extras: Iterable = (),
    discount_amount: Optional[Decimal] = None,
    discount_percentage: Optional[Decimal] = None,
) -> tuple[Decimal, Decimal]:
    """
    Returns ``(total, applied_discount)``.

    total = sum(item.price * qty) + sum(extra.price * qty) - discount, floored at zero.
    """
    base_total = lines_subtotal(items) + lines_subtotal(extras)
    discount = discount_for(base_total, discount_amount, discount_percentage)
    total = max(base_total - discount, ZERO)
    # the discount actually applied never exceeds the base
    applied = min(discount, base_total)
    return to_money(total), to_money(applied)


def commission_for(amount, rate) -> Decimal:
    return to_money(Decimal(str(amount)) * Decimal(str(rate)))


def vendor_earnings(paid_amount, rate) -> Decimal:
    paid_amount = Decimal(str(paid_amount))
    return to_money(paid_amount - paid_amount * Decimal(str(rate)))


def to_minor_units(amount) -> int:
    """Gateway amounts are integers in the smallest currency unit."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return to_money(Decimal(amount) / 100)
