from dataclasses import dataclass, field
from datetime import date


@dataclass(slots=True)
class Expense:
    id: str | None
    expense_date: date
    category_id: str | None
    original_amount: float
    original_currency: str
    amounts: dict[str, float] = field(default_factory=dict)
    # 0 = Monday ... 6 = Sunday, captured when the expense is written
    day_of_week: int | None = None
    description: str | None = None


@dataclass(slots=True)
class Subscription:
    id: str | None
    name: str
    category_id: str | None
    original_amount: float  # per month
    original_currency: str
    start_date: date
    amounts: dict[str, float] = field(default_factory=dict)
    end_date: date | None = None  # inclusive, None = open-ended
    description: str | None = None


@dataclass(slots=True)
class Category:
    id: str
    name: str
    icon: str = "Tag"
    is_default: bool = False


@dataclass(slots=True)
class AppSettings:
    default_currency: str
    api_key: str | None = None
    monthly_budget: float | None = None
