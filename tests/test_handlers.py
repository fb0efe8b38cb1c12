from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from budgie.categories import DEFAULT_CATEGORIES, find_category
from budgie.db.models import Expense, Subscription
from budgie.handlers.categories import cmd_addcategory, cmd_editcategory, cmd_removecategory
from budgie.handlers.common import command_args, parse_amount, parse_iso_date, split_options
from budgie.handlers.expenses import cmd_add, cmd_clearexpenses, cmd_editexpense, parse_expense_args
from budgie.handlers.report import cmd_report, format_report, parse_report_args, period_title
from budgie.handlers.settings import cmd_setapikey, cmd_setbudget, cmd_setcurrency
from budgie.handlers.subscriptions import cmd_addsub, cmd_editsub, cmd_endsub, cmd_removesub
from budgie.services.currency_service import RateCache, RateProviderError
from budgie.services.expense_service import add_expense, get_expense_by_id, get_expenses
from budgie.services.periods import resolve_period
from budgie.services.report_service import build_metrics
from budgie.services.settings_service import get_app_settings
from budgie.services.subscription_service import add_subscription, get_subscription_by_name

TODAY = date(2024, 2, 15)


def _message(text: str) -> MagicMock:
    message = MagicMock()
    message.text = text
    message.chat.id = 42
    message.answer = AsyncMock()
    message.answer_photo = AsyncMock()
    return message


def _reply(message: MagicMock) -> str:
    return message.answer.await_args.args[0]


def test_command_args():
    assert command_args(_message("/report")) == []
    assert command_args(_message("/report  week   2024-02-15")) == ["week", "2024-02-15"]


def test_parse_amount():
    assert parse_amount("12,50") == 12.5
    assert parse_amount("3") == 3.0
    assert parse_amount("0") is None
    assert parse_amount("-4") is None
    assert parse_amount("nan") is None
    assert parse_amount("inf") is None
    assert parse_amount("ten") is None


def test_split_options():
    assert split_options(["ab12", "amount=5", "note=late", "drinks"], {"amount", "note"}) == (
        ["ab12"],
        {"amount": "5", "note": "late drinks"},
    )
    assert split_options(["Amazon", "Prime"], {"name"}) == (["Amazon", "Prime"], {})
    assert split_options(["ab12", "colour=red"], {"amount"}) is None


def test_parse_iso_date():
    assert parse_iso_date("2024-02-29") == date(2024, 2, 29)
    assert parse_iso_date("2023-02-29") is None


@pytest.mark.parametrize(
    "args, expected",
    [
        ([], ("monthly", TODAY)),
        (["week"], ("weekly", TODAY)),
        (["Y"], ("yearly", TODAY)),
        (["2024-01-03"], ("monthly", date(2024, 1, 3))),
        (["2024-01-03", "year"], ("yearly", date(2024, 1, 3))),
        (["quarter"], None),
        (["month", "month"], None),
    ],
)
def test_parse_report_args(args, expected):
    assert parse_report_args(args, TODAY) == expected


def test_parse_expense_args_minimal():
    parsed = parse_expense_args(["12,50", "groceries"], "USD", TODAY)
    assert (parsed.amount, parsed.currency, parsed.category) == (12.5, "USD", "groceries")
    assert parsed.expense_date == TODAY
    assert parsed.description is None


def test_parse_expense_args_full():
    parsed = parse_expense_args(["12", "eur", "bar", "2024-02-10", "late", "drinks"], "USD", TODAY)
    assert parsed.currency == "EUR"
    assert parsed.category == "bar"
    assert parsed.expense_date == date(2024, 2, 10)
    assert parsed.description == "late drinks"


def test_parse_expense_args_lone_currency_is_category():
    parsed = parse_expense_args(["12", "EUR"], "USD", TODAY)
    assert parsed.currency == "USD"
    assert parsed.category == "EUR"


@pytest.mark.parametrize("args", [[], ["5"], ["abc", "bar"], ["-5", "bar"], ["nan", "bar"]])
def test_parse_expense_args_invalid(args):
    assert parse_expense_args(args, "USD", TODAY) is None


def _feb_metrics(expense_amount: float = 100.0):
    expense = Expense(
        id="e1",
        expense_date=date(2024, 2, 10),
        category_id="groceries",
        original_amount=expense_amount,
        original_currency="USD",
        amounts={"USD": expense_amount},
    )
    sub = Subscription(
        id="s1",
        name="Gym",
        category_id="subscriptions",
        original_amount=290.0,
        original_currency="USD",
        start_date=date(2024, 1, 1),
        amounts={"USD": 290.0},
    )
    period = resolve_period("monthly", TODAY)
    return build_metrics(period, "USD", [expense], [sub], DEFAULT_CATEGORIES)


def test_period_titles():
    metrics = _feb_metrics()
    assert period_title(metrics) == "February 2024"
    metrics.period = resolve_period("weekly", TODAY)
    assert period_title(metrics) == "week of Feb 12, 2024"
    metrics.period = resolve_period("yearly", TODAY)
    assert period_title(metrics) == "2024"


def test_format_report():
    text = format_report(_feb_metrics())
    assert "Report for February 2024" in text
    assert "Total: $390.00" in text
    assert "Expenses: $100.00" in text
    assert "Subscriptions: $290.00" in text
    assert "• Subscriptions: $290.00 (74%)" in text
    assert "• Groceries: $100.00 (26%)" in text
    assert "Budget" not in text


def test_format_report_with_budget():
    text = format_report(_feb_metrics(), monthly_budget=500.0)
    assert "78%" in text
    assert "$110.00 left of $500.00" in text


def test_format_report_budget_only_for_monthly():
    metrics = _feb_metrics()
    metrics.period = resolve_period("yearly", TODAY)
    assert "Budget" not in format_report(metrics, monthly_budget=500.0)


@pytest.fixture
def no_charts():
    with (
        patch("budgie.handlers.report.daily_spending_chart", AsyncMock(return_value=None)),
        patch("budgie.handlers.report.spending_by_category_chart", AsyncMock(return_value=None)),
        patch("budgie.handlers.report.weekday_spending_chart", AsyncMock(return_value=None)),
    ):
        yield


async def test_cmd_report(rate_cache, no_charts):
    await add_expense(rate_cache, 100.0, "USD", "groceries", date(2024, 2, 10))
    await add_subscription(rate_cache, "Gym", 290.0, "USD", date(2024, 1, 1))

    message = _message("/report month 2024-02-15")
    await cmd_report(message)

    text = _reply(message)
    assert "Report for February 2024" in text
    assert "Total: $390.00" in text
    message.answer_photo.assert_not_awaited()


async def test_cmd_report_empty_period(no_charts):
    message = _message("/report month 2024-02-15")
    await cmd_report(message)
    assert _reply(message) == "No spending recorded for February 2024."


async def test_cmd_report_chart_failure_still_sends_text(rate_cache):
    await add_expense(rate_cache, 10.0, "USD", "groceries", date(2024, 2, 10))
    message = _message("/report month 2024-02-15")
    with patch("budgie.handlers.report.daily_spending_chart", AsyncMock(side_effect=RuntimeError("no kaleido"))):
        await cmd_report(message)
    assert "Total: $10.00" in _reply(message)


async def test_cmd_report_bad_args():
    message = _message("/report someday")
    await cmd_report(message)
    assert _reply(message).startswith("Usage: /report")


async def test_cmd_add(rate_cache):
    message = _message("/add 100 EUR groceries 2024-02-10 weekly shop")
    await cmd_add(message, rate_cache)

    text = _reply(message)
    assert text.startswith("Saved: €100.00 ≈ $108.00")
    assert "Groceries on 2024-02-10" in text
    [expense] = await get_expenses()
    assert expense.description == "weekly shop"
    assert expense.category_id == "groceries"


async def test_cmd_add_unknown_category(rate_cache):
    message = _message("/add 5 nonsense")
    await cmd_add(message, rate_cache)
    assert "Unknown category" in _reply(message)
    assert await get_expenses() == []


async def test_cmd_add_provider_error(clock):
    cache = RateCache(
        fetcher=AsyncMock(side_effect=RateProviderError("EUR", "quota-reached")),
        api_key="secret",
        clock=clock,
    )
    message = _message("/add 12 EUR bar")
    await cmd_add(message, cache)
    assert _reply(message) == "Could not convert the amount: quota-reached. Expense not saved."
    assert await get_expenses() == []


async def test_cmd_addsub_and_endsub(rate_cache):
    message = _message("/addsub Netflix 15.99 USD tech 2024-01-01")
    await cmd_addsub(message, rate_cache)
    assert _reply(message) == "Added subscription: Netflix $15.99/month from 2024-01-01"

    sub = await get_subscription_by_name("netflix")
    assert sub.category_id == "tech"

    message = _message("/endsub Netflix 2024-03-31")
    await cmd_endsub(message)
    assert _reply(message) == "Netflix ends on 2024-03-31."
    assert (await get_subscription_by_name("Netflix")).end_date == date(2024, 3, 31)


async def test_cmd_addsub_end_before_start(rate_cache):
    message = _message("/addsub Gym 30 2024-03-01 2024-02-01")
    await cmd_addsub(message, rate_cache)
    assert _reply(message) == "End date must not be before start date"


async def test_cmd_setcurrency():
    message = _message("/setcurrency eur")
    await cmd_setcurrency(message)
    assert (await get_app_settings()).default_currency == "EUR"

    message = _message("/setcurrency GBP")
    await cmd_setcurrency(message)
    assert "Unknown currency" in _reply(message)


async def test_cmd_setapikey_resets_cache(rate_cache):
    await rate_cache.get_rates("USD")
    message = _message("/setapikey abcdef123456")
    await cmd_setapikey(message, rate_cache)

    assert rate_cache.api_key == "abcdef123456"
    assert rate_cache.get_entry("USD") is None
    assert (await get_app_settings()).api_key == "abcdef123456"


async def test_cmd_setbudget():
    message = _message("/setbudget 2000")
    await cmd_setbudget(message)
    assert (await get_app_settings()).monthly_budget == 2000.0

    message = _message("/setbudget off")
    await cmd_setbudget(message)
    assert (await get_app_settings()).monthly_budget is None


async def test_cmd_addcategory_with_icon():
    message = _message("/addcategory Pet Care icon=PawPrint")
    await cmd_addcategory(message)
    assert _reply(message) == "Added category: Pet Care"
    category = await find_category("pet care")
    assert category.icon == "PawPrint"


async def test_cmd_removecategory_default_refused():
    message = _message("/removecategory Groceries")
    await cmd_removecategory(message)
    assert _reply(message) == "Default categories cannot be deleted."


async def test_cmd_editexpense_currency_change_reconverts(rate_cache):
    expense = await add_expense(rate_cache, 100.0, "USD", "groceries", date(2024, 2, 10))
    assert expense.amounts["EUR"] == pytest.approx(93.0)

    message = _message(f"/editexpense {expense.id[:8]} currency=eur")
    await cmd_editexpense(message, rate_cache)

    assert _reply(message) == f"Updated expense [{expense.id[:8]}]: €100.00 ≈ $108.00 on 2024-02-10"
    stored = await get_expense_by_id(expense.id)
    assert stored.original_currency == "EUR"
    assert stored.amounts["EUR"] == 100.0
    assert stored.amounts["USD"] == pytest.approx(108.0)


async def test_cmd_editexpense_other_fields_keep_conversions(clock):
    fetcher = AsyncMock(return_value={"USD": 1.0, "EUR": 0.5, "JPY": 100.0, "CHF": 0.8})
    cache = RateCache(fetcher=fetcher, api_key="secret", clock=clock)
    expense = await add_expense(cache, 10.0, "USD", "groceries", date(2024, 2, 10))
    cache.invalidate()

    message = _message(f"/editexpense {expense.id[:8]} date=2024-02-12 category=bar note=late drinks")
    await cmd_editexpense(message, cache)

    assert fetcher.await_count == 1
    stored = await get_expense_by_id(expense.id)
    assert stored.amounts["EUR"] == 5.0
    assert stored.expense_date == date(2024, 2, 12)
    assert stored.day_of_week == 0
    assert stored.category_id == "bar"
    assert stored.description == "late drinks"


async def test_cmd_editexpense_provider_error_leaves_expense(rate_cache, clock):
    expense = await add_expense(rate_cache, 10.0, "USD", "groceries", date(2024, 2, 10))
    failing = RateCache(
        fetcher=AsyncMock(side_effect=RateProviderError("USD", "quota-reached")),
        api_key="secret",
        clock=clock,
    )

    message = _message(f"/editexpense {expense.id[:8]} amount=20")
    await cmd_editexpense(message, failing)

    assert _reply(message) == "Could not convert the amount: quota-reached. Expense not changed."
    assert (await get_expense_by_id(expense.id)).original_amount == 10.0


@pytest.mark.parametrize("text", ["/editexpense", "/editexpense abc", "/editexpense abc colour=red"])
async def test_cmd_editexpense_usage(text, rate_cache):
    message = _message(text)
    await cmd_editexpense(message, rate_cache)
    assert _reply(message).startswith("Usage: /editexpense")


async def test_cmd_editexpense_rejects_bad_values(rate_cache):
    expense = await add_expense(rate_cache, 10.0, "USD", "groceries", date(2024, 2, 10))
    prefix = expense.id[:8]
    for option, reply in [
        ("amount=-3", "Amount must be a positive number."),
        ("date=yesterday", "Date must be YYYY-MM-DD."),
        ("category=nope", "Unknown category 'nope'. See /categories."),
    ]:
        message = _message(f"/editexpense {prefix} {option}")
        await cmd_editexpense(message, rate_cache)
        assert _reply(message) == reply
    message = _message(f"/editexpense {prefix} currency=GBP")
    await cmd_editexpense(message, rate_cache)
    assert "Unknown currency" in _reply(message)


async def test_cmd_clearexpenses_requires_confirmation(rate_cache):
    await add_expense(rate_cache, 1.0, "USD", None, date(2024, 2, 10))
    await add_expense(rate_cache, 2.0, "USD", None, date(2024, 2, 11))

    message = _message("/clearexpenses")
    await cmd_clearexpenses(message)
    assert "confirm" in _reply(message)
    assert len(await get_expenses()) == 2

    message = _message("/clearexpenses confirm")
    await cmd_clearexpenses(message)
    assert _reply(message) == "Deleted 2 expenses."
    assert await get_expenses() == []


async def test_multi_word_subscription_name(rate_cache):
    message = _message("/addsub Amazon Prime 14.99 EUR 2024-01-01")
    await cmd_addsub(message, rate_cache)
    assert _reply(message) == "Added subscription: Amazon Prime $16.19/month from 2024-01-01"

    message = _message("/endsub amazon prime 2024-06-30")
    await cmd_endsub(message)
    assert _reply(message) == "Amazon Prime ends on 2024-06-30."

    message = _message("/removesub Amazon Prime")
    await cmd_removesub(message)
    assert _reply(message) == "Removed subscription: Amazon Prime"
    assert await get_subscription_by_name("Amazon Prime") is None


async def test_cmd_editsub_currency_change_reconverts(rate_cache):
    await add_subscription(rate_cache, "Amazon Prime", 14.99, "EUR", date(2024, 1, 1))

    message = _message("/editsub amazon prime currency=USD end=2024-12-31")
    await cmd_editsub(message, rate_cache)

    assert _reply(message) == "Updated subscription: Amazon Prime $14.99/month from 2024-01-01 until 2024-12-31"
    sub = await get_subscription_by_name("Amazon Prime")
    assert sub.original_currency == "USD"
    assert sub.amounts["USD"] == 14.99
    assert sub.amounts["EUR"] == pytest.approx(14.99 * 0.93)
    assert sub.end_date == date(2024, 12, 31)


async def test_cmd_editsub_reopen_and_rename(rate_cache):
    await add_subscription(rate_cache, "Gym", 30.0, "USD", date(2024, 1, 1), end_date=date(2024, 3, 31))

    message = _message("/editsub Gym name=Gym Plus category=home end=none")
    await cmd_editsub(message, rate_cache)

    assert _reply(message) == "Updated subscription: Gym Plus $30.00/month from 2024-01-01"
    sub = await get_subscription_by_name("gym plus")
    assert sub.end_date is None
    assert sub.category_id == "home"


async def test_cmd_editsub_errors(rate_cache):
    await add_subscription(rate_cache, "Gym", 30.0, "USD", date(2024, 2, 1))

    message = _message("/editsub Gym end=2024-01-01")
    await cmd_editsub(message, rate_cache)
    assert _reply(message) == "End date must not be before start date"

    message = _message("/editsub Pool amount=5")
    await cmd_editsub(message, rate_cache)
    assert _reply(message) == "Subscription 'Pool' not found."

    message = _message("/editsub Gym")
    await cmd_editsub(message, rate_cache)
    assert _reply(message).startswith("Usage: /editsub")


async def test_cmd_editcategory():
    message = _message("/addcategory Pets")
    await cmd_addcategory(message)

    message = _message("/editcategory pets name=Pet Care icon=PawPrint")
    await cmd_editcategory(message)
    assert _reply(message) == "Updated category: Pet Care"
    category = await find_category("pet care")
    assert category.icon == "PawPrint"
    assert await find_category("pets") is None


async def test_cmd_editcategory_name_taken():
    await cmd_addcategory(_message("/addcategory Pets"))

    message = _message("/editcategory Pets name=groceries")
    await cmd_editcategory(message)
    assert _reply(message) == "Category 'groceries' already exists."
    assert await find_category("Pets") is not None


async def test_cmd_editcategory_unknown():
    message = _message("/editcategory Nowhere name=Somewhere")
    await cmd_editcategory(message)
    assert _reply(message) == "Category 'Nowhere' not found."
