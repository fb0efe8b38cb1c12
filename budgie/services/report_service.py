"""Period reports blending dated expenses with pro-rated subscriptions.

Every amount in a report is expressed in one display currency, read from the
conversions stored on each record when it was written. Subscriptions are
monthly charges spread over the days of each calendar month they are active
in, so a report over any period sees a daily contribution rather than a
lump sum on the billing day.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import date

import numpy as np

from budgie.categories import get_categories
from budgie.currency import validate_currency
from budgie.db.models import Category, Expense, Subscription
from budgie.services.expense_service import get_expenses
from budgie.services.periods import MONTHLY, YEARLY, Period, resolve_period
from budgie.services.proration import (
    amount_in_currency,
    is_active,
    monthly_amount,
    prorate,
    to_monday_indexed,
)
from budgie.services.subscription_service import get_subscriptions

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_CATEGORY_ID = "subscriptions"
UNCATEGORIZED_ID = "uncategorized"
UNCATEGORIZED_SUBSCRIPTIONS_ID = "uncategorized_subscriptions"
UNCATEGORIZED_NAME = "Uncategorized"

WEEKDAY_NAMES: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# Yearly reports label days by month once the span is longer than this.
_MONTH_LABEL_MIN_DAYS = 60


@dataclass(slots=True)
class DailyTotal:
    raw_date: str
    label: str
    amount: float = 0.0


@dataclass(slots=True)
class CategoryTotal:
    category_id: str
    category_name: str
    total_amount: float


@dataclass(slots=True)
class PeriodMetrics:
    period: Period
    display_currency: str
    total_overall_spending: float
    daily_totals: list[DailyTotal]
    category_breakdown: list[CategoryTotal]
    weekday_expense_totals: list[float]
    weekday_subscription_totals: list[float]
    weekday_occurrences: list[int]
    daily_samples_by_weekday: dict[int, list[float]]

    @property
    def expense_total(self) -> float:
        return sum(self.weekday_expense_totals)

    @property
    def subscription_total(self) -> float:
        return sum(self.weekday_subscription_totals)

    @property
    def daily_average(self) -> float:
        if not self.daily_totals:
            return 0.0
        return self.total_overall_spending / len(self.daily_totals)


@dataclass(slots=True)
class WeekdayStats:
    weekday: int
    name: str
    occurrences: int
    average: float
    minimum: float
    maximum: float
    std: float


def day_label(kind: str, day: date, span_days: int) -> str:
    if kind == MONTHLY:
        return str(day.day)
    if kind == YEARLY and span_days > _MONTH_LABEL_MIN_DAYS:
        return day.strftime("%b")
    return f"{day.strftime('%b')} {day.day}"


def _subscriptions_category_id(categories: Iterable[Category]) -> str:
    for category in categories:
        if category.id == SUBSCRIPTIONS_CATEGORY_ID or category.name.lower() == "subscriptions":
            return category.id
    return UNCATEGORIZED_SUBSCRIPTIONS_ID


def _expense_weekday(expense: Expense) -> int | None:
    if expense.day_of_week is None:
        return to_monday_indexed(expense.expense_date)
    if isinstance(expense.day_of_week, int) and 0 <= expense.day_of_week <= 6:
        return expense.day_of_week
    logger.warning(
        "Expense %s has invalid day_of_week %r, leaving it out of weekday totals",
        expense.id,
        expense.day_of_week,
        extra={"record_id": expense.id},
    )
    return None


def build_metrics(
    period: Period,
    display_currency: str,
    expenses: Iterable[Expense],
    subscriptions: Iterable[Subscription],
    categories: Iterable[Category],
) -> PeriodMetrics:
    categories = list(categories)
    category_names = {c.id: c.name for c in categories}
    span = len(period)

    # Insertion order is chronological and the ISO key is unique per day.
    buckets: dict[date, DailyTotal] = {
        day: DailyTotal(day.isoformat(), day_label(period.kind, day, span)) for day in period.days()
    }
    category_totals: dict[str, float] = {}
    weekday_expense_totals = [0.0] * 7
    weekday_subscription_totals = [0.0] * 7

    for expense in expenses:
        if expense.expense_date not in period:
            continue
        read = amount_in_currency(expense, display_currency)
        if read.defaulted:
            logger.warning(
                "Expense %s has no usable %s amount (%s), counting it as 0",
                expense.id,
                display_currency,
                read.reason,
                extra={"record_id": expense.id},
            )
        buckets[expense.expense_date].amount += read.value
        category_id = expense.category_id or UNCATEGORIZED_ID
        category_totals[category_id] = category_totals.get(category_id, 0.0) + read.value
        weekday = _expense_weekday(expense)
        if weekday is not None:
            weekday_expense_totals[weekday] += read.value

    fallback_category = _subscriptions_category_id(categories)
    for sub in subscriptions:
        monthly = monthly_amount(sub, display_currency)
        if monthly <= 0:
            continue
        category_id = sub.category_id if sub.category_id in category_names else fallback_category
        for day, bucket in buckets.items():
            if not is_active(sub, day):
                continue
            contribution = prorate(monthly, day)
            bucket.amount += contribution
            category_totals[category_id] = category_totals.get(category_id, 0.0) + contribution
            weekday_subscription_totals[to_monday_indexed(day)] += contribution

    weekday_occurrences = [0] * 7
    samples: dict[int, list[float]] = {i: [] for i in range(7)}
    for day, bucket in buckets.items():
        weekday = to_monday_indexed(day)
        weekday_occurrences[weekday] += 1
        samples[weekday].append(bucket.amount)

    daily_totals = list(buckets.values())
    breakdown = [
        CategoryTotal(category_id, category_names.get(category_id, UNCATEGORIZED_NAME), total)
        for category_id, total in category_totals.items()
        if total > 0
    ]
    breakdown.sort(key=lambda c: c.total_amount, reverse=True)

    return PeriodMetrics(
        period=period,
        display_currency=display_currency,
        total_overall_spending=sum(d.amount for d in daily_totals),
        daily_totals=daily_totals,
        category_breakdown=breakdown,
        weekday_expense_totals=weekday_expense_totals,
        weekday_subscription_totals=weekday_subscription_totals,
        weekday_occurrences=weekday_occurrences,
        daily_samples_by_weekday=samples,
    )


async def compute_metrics(
    period_kind: str | None,
    anchor: date,
    display_currency: str,
    *,
    list_expenses: Callable[[], Awaitable[list[Expense]]] | None = None,
    list_subscriptions: Callable[[], Awaitable[list[Subscription]]] | None = None,
    list_categories: Callable[[], Awaitable[list[Category]]] | None = None,
) -> PeriodMetrics:
    period = resolve_period(period_kind, anchor)
    currency = validate_currency(display_currency)

    if list_expenses is None:

        async def list_expenses() -> list[Expense]:
            return await get_expenses(period.start, period.end)

    expenses, subscriptions, categories = await asyncio.gather(
        list_expenses(),
        (list_subscriptions or get_subscriptions)(),
        (list_categories or get_categories)(),
    )
    logger.debug(
        "Building %s report %s..%s in %s from %d expenses and %d subscriptions",
        period.kind,
        period.start,
        period.end,
        currency,
        len(expenses),
        len(subscriptions),
    )
    return build_metrics(period, currency, expenses, subscriptions, categories)


def weekday_stats(metrics: PeriodMetrics) -> list[WeekdayStats]:
    """Average, spread and range of daily totals for each weekday."""
    result: list[WeekdayStats] = []
    for weekday, name in enumerate(WEEKDAY_NAMES):
        samples = np.asarray(metrics.daily_samples_by_weekday.get(weekday, []), dtype=float)
        occurrences = metrics.weekday_occurrences[weekday]
        if samples.size == 0:
            result.append(WeekdayStats(weekday, name, occurrences, 0.0, 0.0, 0.0, 0.0))
            continue
        average = float(samples.sum()) / occurrences if occurrences else 0.0
        result.append(
            WeekdayStats(
                weekday=weekday,
                name=name,
                occurrences=occurrences,
                average=average,
                minimum=float(samples.min()),
                maximum=float(samples.max()),
                std=float(samples.std()),
            )
        )
    return result
