import logging
from dataclasses import dataclass
from datetime import date

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from budgie.categories import find_category
from budgie.currency import InvalidCurrencyError, format_amount, is_supported, validate_currency
from budgie.db.models import Expense
from budgie.handlers.common import command_args, parse_amount, parse_iso_date, split_options
from budgie.services.currency_service import RateCache, RateProviderError
from budgie.services.expense_service import (
    add_expense,
    delete_all_expenses,
    delete_expense,
    find_expenses_by_prefix,
    get_recent_expenses,
    update_expense,
)
from budgie.services.proration import amount_in_currency
from budgie.services.settings_service import get_display_currency

logger = logging.getLogger(__name__)
router = Router()

ADD_USAGE = "Usage: /add 12.50 [EUR] groceries [YYYY-MM-DD] [note]"
EDIT_USAGE = "Usage: /editexpense <id> [amount=12.50] [currency=EUR] [date=YYYY-MM-DD] [category=name] [note=text]"

EDIT_KEYS = {"amount", "currency", "date", "category", "note"}


@dataclass(slots=True)
class ExpenseInput:
    amount: float
    currency: str
    category: str
    expense_date: date
    description: str | None


def parse_expense_args(args: list[str], default_currency: str, today: date) -> ExpenseInput | None:
    if len(args) < 2:
        return None
    amount = parse_amount(args[0])
    if amount is None:
        return None
    rest = args[1:]
    currency = default_currency
    if is_supported(rest[0]) and len(rest) > 1:
        currency = rest[0].upper()
        rest = rest[1:]
    category = rest[0]
    rest = rest[1:]
    expense_date = today
    if rest and (parsed := parse_iso_date(rest[0])):
        expense_date = parsed
        rest = rest[1:]
    description = " ".join(rest) or None
    return ExpenseInput(amount, currency, category, expense_date, description)


@router.message(Command("add"))
async def cmd_add(message: Message, rate_cache: RateCache):
    display = await get_display_currency()
    parsed = parse_expense_args(command_args(message), display, date.today())
    if parsed is None:
        await message.answer(ADD_USAGE)
        return

    category = await find_category(parsed.category)
    if category is None:
        await message.answer(f"Unknown category '{parsed.category}'. See /categories.")
        return

    try:
        expense = await add_expense(
            rate_cache,
            parsed.amount,
            parsed.currency,
            category.id,
            parsed.expense_date,
            parsed.description,
        )
    except RateProviderError as exc:
        logger.error("Rate provider error while saving expense: %s", exc, extra={"chat_id": message.chat.id})
        await message.answer(f"Could not convert the amount: {exc.error_type}. Expense not saved.")
        return

    shown = amount_in_currency(expense, display).value
    converted = f" ≈ {format_amount(shown, display)}" if expense.original_currency != display else ""
    await message.answer(
        f"Saved: {format_amount(expense.original_amount, expense.original_currency)}{converted} "
        f"— {category.name} on {expense.expense_date.isoformat()} [{expense.id[:8]}]"
    )


@router.message(Command("expenses"))
async def cmd_expenses(message: Message):
    expenses = await get_recent_expenses(limit=10)
    if not expenses:
        await message.answer("No expenses yet. Use /add to record one.")
        return

    display = await get_display_currency()
    lines = []
    for e in expenses:
        note = f" — {e.description}" if e.description else ""
        lines.append(
            f"• {e.expense_date.isoformat()}: {format_amount(amount_in_currency(e, display).value, display)}"
            f" ({e.category_id or 'uncategorized'}){note} [{e.id[:8]}]"
        )
    await message.answer("🧾 Recent expenses:\n" + "\n".join(lines))


async def _find_single_expense(message: Message, prefix: str) -> Expense | None:
    matches = await find_expenses_by_prefix(prefix)
    if not matches:
        await message.answer(f"No expense with id '{prefix}'.")
        return None
    if len(matches) > 1:
        await message.answer("That id is ambiguous, use more characters.")
        return None
    return matches[0]


@router.message(Command("delexpense"))
async def cmd_delexpense(message: Message):
    args = command_args(message)
    if not args:
        await message.answer("Usage: /delexpense <id>")
        return

    expense = await _find_single_expense(message, args[0])
    if expense is None:
        return

    await delete_expense(expense.id)
    await message.answer(f"Deleted expense [{expense.id[:8]}].")


@router.message(Command("editexpense"))
async def cmd_editexpense(message: Message, rate_cache: RateCache):
    parsed = split_options(command_args(message), EDIT_KEYS)
    if parsed is None or len(parsed[0]) != 1 or not parsed[1]:
        await message.answer(EDIT_USAGE)
        return
    (prefix,), options = parsed

    expense = await _find_single_expense(message, prefix)
    if expense is None:
        return

    fields: dict = {}
    if "amount" in options:
        amount = parse_amount(options["amount"])
        if amount is None:
            await message.answer("Amount must be a positive number.")
            return
        fields["original_amount"] = amount
    if "currency" in options:
        try:
            fields["original_currency"] = validate_currency(options["currency"])
        except InvalidCurrencyError as exc:
            await message.answer(str(exc))
            return
    if "date" in options:
        expense_date = parse_iso_date(options["date"])
        if expense_date is None:
            await message.answer("Date must be YYYY-MM-DD.")
            return
        fields["expense_date"] = expense_date
    if "category" in options:
        category = await find_category(options["category"])
        if category is None:
            await message.answer(f"Unknown category '{options['category']}'. See /categories.")
            return
        fields["category_id"] = category.id
    if "note" in options:
        fields["description"] = options["note"] or None

    try:
        updated = await update_expense(rate_cache, expense.id, **fields)
    except RateProviderError as exc:
        logger.error("Rate provider error while editing expense: %s", exc, extra={"chat_id": message.chat.id})
        await message.answer(f"Could not convert the amount: {exc.error_type}. Expense not changed.")
        return

    display = await get_display_currency()
    shown = amount_in_currency(updated, display).value
    converted = f" ≈ {format_amount(shown, display)}" if updated.original_currency != display else ""
    await message.answer(
        f"Updated expense [{updated.id[:8]}]: "
        f"{format_amount(updated.original_amount, updated.original_currency)}{converted} "
        f"on {updated.expense_date.isoformat()}"
    )


@router.message(Command("clearexpenses"))
async def cmd_clearexpenses(message: Message):
    args = command_args(message)
    if [a.lower() for a in args] != ["confirm"]:
        await message.answer("This deletes every expense. Send /clearexpenses confirm to proceed.")
        return

    count = await delete_all_expenses()
    logger.info("Cleared %d expenses", count, extra={"chat_id": message.chat.id})
    await message.answer(f"Deleted {count} expenses.")
