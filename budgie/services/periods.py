import calendar
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, timedelta

logger = logging.getLogger(__name__)

WEEKLY = "weekly"
MONTHLY = "monthly"
YEARLY = "yearly"
PERIOD_KINDS: tuple[str, ...] = (WEEKLY, MONTHLY, YEARLY)

_ALIASES: dict[str, str] = {
    "w": WEEKLY,
    "week": WEEKLY,
    "weekly": WEEKLY,
    "m": MONTHLY,
    "month": MONTHLY,
    "monthly": MONTHLY,
    "y": YEARLY,
    "year": YEARLY,
    "yearly": YEARLY,
}


@dataclass(frozen=True)
class Period:
    kind: str
    start: date
    end: date

    def __len__(self) -> int:
        return (self.end - self.start).days + 1

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day <= self.end

    def days(self) -> Iterator[date]:
        day = self.start
        while day <= self.end:
            yield day
            day += timedelta(days=1)


def parse_period_kind(text: str | None) -> str | None:
    if not text:
        return None
    return _ALIASES.get(text.strip().lower())


def resolve_period(kind: str | None, anchor: date) -> Period:
    """Inclusive calendar bounds of the week/month/year containing ``anchor``.

    Weeks start on Monday. Any kind other than weekly or monthly resolves to
    the calendar year.
    """
    if kind == WEEKLY:
        start = anchor - timedelta(days=anchor.weekday())
        return Period(WEEKLY, start, start + timedelta(days=6))
    if kind == MONTHLY:
        last_day = calendar.monthrange(anchor.year, anchor.month)[1]
        return Period(MONTHLY, anchor.replace(day=1), anchor.replace(day=last_day))
    if kind != YEARLY:
        logger.debug("Unknown period kind %r, defaulting to yearly", kind)
    return Period(YEARLY, date(anchor.year, 1, 1), date(anchor.year, 12, 31))
