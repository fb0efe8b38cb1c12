import logging
from datetime import date
from pathlib import Path

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import FSInputFile, Message

from budgie.charts import daily_spending_chart, spending_by_category_chart, weekday_spending_chart
from budgie.currency import format_amount
from budgie.handlers.common import command_args, parse_iso_date
from budgie.services.periods import MONTHLY, WEEKLY, parse_period_kind
from budgie.services.report_service import PeriodMetrics, compute_metrics, weekday_stats
from budgie.services.settings_service import get_app_settings

logger = logging.getLogger(__name__)
router = Router()

REPORT_USAGE = "Usage: /report [week|month|year] [YYYY-MM-DD]"


def parse_report_args(args: list[str], today: date) -> tuple[str, date] | None:
    kind, anchor = MONTHLY, today
    seen_kind = seen_date = False
    for arg in args:
        if not seen_kind and (parsed := parse_period_kind(arg)):
            kind, seen_kind = parsed, True
        elif not seen_date and (parsed_date := parse_iso_date(arg)):
            anchor, seen_date = parsed_date, True
        else:
            return None
    return kind, anchor


def period_title(metrics: PeriodMetrics) -> str:
    period = metrics.period
    if period.kind == MONTHLY:
        return period.start.strftime("%B %Y")
    if period.kind == WEEKLY:
        return f"week of {period.start.strftime('%b')} {period.start.day}, {period.start.year}"
    return str(period.start.year)


def _progress_bar(pct: float, width: int = 10) -> str:
    filled = max(min(int(pct / 100 * width), width), 0)
    return "█" * filled + "░" * (width - filled)


def format_report(metrics: PeriodMetrics, monthly_budget: float | None = None, top: int = 5) -> str:
    cur = metrics.display_currency
    total = metrics.total_overall_spending
    lines = [
        f"📊 Report for {period_title(metrics)}",
        "",
        f"Total: {format_amount(total, cur)}",
        f"Daily avg: {format_amount(metrics.daily_average, cur)}",
        f"Expenses: {format_amount(metrics.expense_total, cur)}",
        f"Subscriptions: {format_amount(metrics.subscription_total, cur)}",
    ]

    if metrics.category_breakdown:
        lines.append("")
        lines.append("Top categories:")
        for row in metrics.category_breakdown[:top]:
            share = row.total_amount / total * 100 if total > 0 else 0
            lines.append(f"• {row.category_name}: {format_amount(row.total_amount, cur)} ({share:.0f}%)")
        if len(metrics.category_breakdown) > top:
            lines.append(f"… and {len(metrics.category_breakdown) - top} more")

    if monthly_budget and metrics.period.kind == MONTHLY:
        pct = total / monthly_budget * 100
        lines.append("")
        lines.append(
            f"💰 Budget: {_progress_bar(pct)} {pct:.0f}% "
            f"({format_amount(monthly_budget - total, cur)} left of {format_amount(monthly_budget, cur)})"
        )

    return "\n".join(lines)


async def _send_chart(message: Message, chart_path: str | None, caption: str | None = None) -> bool:
    if not chart_path:
        return False
    try:
        await message.answer_photo(FSInputFile(chart_path), caption=caption)
    finally:
        Path(chart_path).unlink(missing_ok=True)
    return True


@router.message(Command("report"))
async def cmd_report(message: Message):
    parsed = parse_report_args(command_args(message), date.today())
    if parsed is None:
        await message.answer(REPORT_USAGE)
        return
    kind, anchor = parsed

    app_settings = await get_app_settings()
    metrics = await compute_metrics(kind, anchor, app_settings.default_currency)
    text = format_report(metrics, app_settings.monthly_budget)

    if metrics.total_overall_spending <= 0:
        await message.answer(f"No spending recorded for {period_title(metrics)}.")
        return

    budget = app_settings.monthly_budget if metrics.period.kind == MONTHLY else None
    sent = False
    try:
        sent = await _send_chart(message, await daily_spending_chart(metrics, budget=budget), caption=text)
        await _send_chart(
            message, await spending_by_category_chart(metrics.category_breakdown, metrics.display_currency)
        )
        await _send_chart(message, await weekday_spending_chart(weekday_stats(metrics), metrics.display_currency))
    except (OSError, ValueError, RuntimeError):
        logger.warning("Chart rendering failed", exc_info=True, extra={"chat_id": message.chat.id})
    if not sent:
        await message.answer(text)
