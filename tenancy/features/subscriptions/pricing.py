"""
Price and billing-date arithmetic.

Prices are Decimal throughout and quantized to cents with ROUND_HALF_UP.
Billing dates move by calendar months, so Jan 31 + 1 month is Feb 28/29.
"""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from dateutil.relativedelta import relativedelta

from tenancy.models.subscription import BillingCycle

CENTS = Decimal("0.01")

CYCLE_MONTHS: dict[BillingCycle, int] = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.QUARTERLY: 3,
    BillingCycle.YEARLY: 12,
}

CYCLE_DISCOUNT: dict[BillingCycle, Decimal] = {
    BillingCycle.MONTHLY: Decimal("1"),
    BillingCycle.QUARTERLY: Decimal("0.9"),
    BillingCycle.YEARLY: Decimal("0.8"),
}


def quantize_price(amount: Decimal) -> Decimal:
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def cycle_price(monthly_price: Decimal | int | str, cycle: BillingCycle) -> Decimal:
    """
    Price of one billing cycle.

    MONTHLY = P, QUARTERLY = P x 3 x 0.9, YEARLY = P x 12 x 0.8.

    >>> cycle_price(Decimal("9.99"), BillingCycle.YEARLY)
    Decimal('95.90')
    """
    cycle = BillingCycle(cycle)
    base = Decimal(str(monthly_price))
    return quantize_price(base * CYCLE_MONTHS[cycle] * CYCLE_DISCOUNT[cycle])


def prorated_change_price(monthly_price: Decimal, cycle: BillingCycle) -> Decimal:
    """
    Amount charged when switching plans mid-cycle.

    Simplified: the full price of the new plan and cycle, no credit for the
    unused part of the current cycle.
    """
    return cycle_price(monthly_price, cycle)


def add_billing_cycle(start: datetime, cycle: BillingCycle) -> datetime:
    """Advance a date by one billing cycle using calendar months."""
    return start + relativedelta(months=CYCLE_MONTHS[BillingCycle(cycle)])


def trial_end(start: datetime, days: int) -> datetime:
    return start + timedelta(days=days)
