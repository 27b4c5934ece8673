"""
Earning rules and payout calendar arithmetic. Pure functions; rates come from
platform settings and are passed in as percentages.
"""
from __future__ import annotations

import calendar
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")

FREQUENCIES = ("weekly", "bi_weekly", "monthly", "custom")
PAYMENT_METHODS = ("mobile_money", "bank", "cash")


def _q(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def restaurant_earning(subtotal: Decimal | None, discount: Decimal | None, commission_rate: Decimal) -> Decimal:
    """(subtotal - discount) x (1 - commission/100)."""
    base = (subtotal or Decimal("0")) - (discount or Decimal("0"))
    if base < 0:
        base = Decimal("0")
    return _q(base * (Decimal("1") - commission_rate / Decimal("100")))


def platform_commission(subtotal: Decimal | None, discount: Decimal | None, commission_rate: Decimal) -> Decimal:
    base = max((subtotal or Decimal("0")) - (discount or Decimal("0")), Decimal("0"))
    return _q(base * commission_rate / Decimal("100"))


def driver_earning(delivery_fee: Decimal | None, payout_percentage: Decimal) -> Decimal:
    return _q((delivery_fee or Decimal("0")) * payout_percentage / Decimal("100"))


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def next_payout_date(frequency: str, custom_days: int | None, start: date) -> date:
    if frequency == "weekly":
        return start + timedelta(days=7)
    if frequency == "bi_weekly":
        return start + timedelta(days=14)
    if frequency == "monthly":
        return add_months(start, 1)
    if frequency == "custom":
        if custom_days and custom_days > 0:
            return start + timedelta(days=custom_days)
        return start
    raise ValueError(f"Unknown payout frequency '{frequency}'.")
