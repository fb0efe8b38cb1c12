from budgie.charts.templates import (
    daily_spending_chart,
    spending_by_category_chart,
    weekday_spending_chart,
)

__all__ = [
    "daily_spending_chart",
    "spending_by_category_chart",
    "weekday_spending_chart",
]
