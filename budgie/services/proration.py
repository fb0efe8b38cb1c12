import calendar
import logging
import math
from datetime import date
from typing import NamedTuple

from budgie.db.models import Expense, Subscription

logger = logging.getLogger(__name__)


class SafeAmount(NamedTuple):
    value: float
    defaulted: bool = False
    reason: str | None = None


def safe_amount(raw: object) -> SafeAmount:
    """Read a stored monetary value, defaulting anything unusable to 0."""
    if raw is None:
        return SafeAmount(0.0, True, "missing value")
    if isinstance(raw, bool):
        return SafeAmount(0.0, True, f"non-numeric value {raw!r}")
    if isinstance(raw, int | float):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw)
        except ValueError:
            return SafeAmount(0.0, True, f"non-numeric value {raw!r}")
    else:
        return SafeAmount(0.0, True, f"non-numeric value of type {type(raw).__name__}")
    if math.isnan(value):
        return SafeAmount(0.0, True, "NaN value")
    if math.isinf(value):
        return SafeAmount(0.0, True, "infinite value")
    return SafeAmount(value)


def amount_in_currency(record: Expense | Subscription, currency: str) -> SafeAmount:
    """The record's pre-computed amount in ``currency``.

    A missing conversion falls back to the original amount only when the
    record was captured in ``currency`` itself.
    """
    amounts = record.amounts or {}
    if currency not in amounts or amounts[currency] is None:
        if record.original_currency == currency:
            return safe_amount(record.original_amount)
        return SafeAmount(0.0, True, f"no {currency} conversion stored")
    return safe_amount(amounts[currency])


def to_monday_indexed(day: date) -> int:
    """Weekday index with 0 = Monday ... 6 = Sunday."""
    return day.weekday()


def days_in_month(day: date) -> int:
    return calendar.monthrange(day.year, day.month)[1]


def is_active(subscription: Subscription, day: date) -> bool:
    if day < subscription.start_date:
        return False
    return subscription.end_date is None or day <= subscription.end_date


def monthly_amount(subscription: Subscription, currency: str) -> float:
    read = amount_in_currency(subscription, currency)
    if read.defaulted:
        logger.warning(
            "Subscription %s has no usable %s amount (%s), counting it as 0",
            subscription.id,
            currency,
            read.reason,
            extra={"record_id": subscription.id},
        )
    return read.value


def prorate(monthly: float, day: date) -> float:
    """Share of a monthly charge attributed to ``day``.

    The billing month is the calendar month of ``day``, so the daily rate
    changes at month boundaries.
    """
    return monthly / days_in_month(day)


def daily_contribution(subscription: Subscription, day: date, currency: str) -> float:
    if not is_active(subscription, day):
        return 0.0
    return prorate(monthly_amount(subscription, currency), day)
