import logging
from datetime import date

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from budgie.categories import find_category
from budgie.currency import InvalidCurrencyError, format_amount, is_supported, validate_currency
from budgie.handlers.common import command_args, parse_amount, parse_iso_date, split_options
from budgie.services.currency_service import RateCache, RateProviderError
from budgie.services.proration import is_active, monthly_amount
from budgie.services.settings_service import get_display_currency
from budgie.services.subscription_service import (
    add_subscription,
    end_subscription,
    get_subscription_by_name,
    get_subscriptions,
    populate_missing_amounts,
    remove_subscription,
    update_subscription,
)

logger = logging.getLogger(__name__)
router = Router()

ADDSUB_USAGE = "Usage: /addsub Netflix 15.99 [USD] [category] [start YYYY-MM-DD] [end YYYY-MM-DD]"
EDITSUB_USAGE = (
    "Usage: /editsub Netflix [name=..] [amount=..] [currency=..] [category=..] "
    "[start=YYYY-MM-DD] [end=YYYY-MM-DD|none]"
)

EDITSUB_KEYS = {"name", "amount", "currency", "category", "start", "end"}
_OPEN_ENDED = {"none", "open", "off"}


@router.message(Command("subs"))
async def cmd_subs(message: Message, rate_cache: RateCache):
    await populate_missing_amounts(rate_cache)
    subs = await get_subscriptions()
    if not subs:
        await message.answer("No subscriptions. Use /addsub to add one.")
        return

    display = await get_display_currency()
    today = date.today()
    active_total = 0.0
    lines = []
    for s in subs:
        monthly = monthly_amount(s, display)
        active = is_active(s, today)
        if active:
            active_total += monthly
        currency_note = (
            f" ({format_amount(s.original_amount, s.original_currency)})" if s.original_currency != display else ""
        )
        if s.end_date:
            status = f"until {s.end_date.isoformat()}" if s.end_date >= today else f"ended {s.end_date.isoformat()}"
        elif s.start_date > today:
            status = f"starts {s.start_date.isoformat()}"
        else:
            status = f"since {s.start_date.isoformat()}"
        lines.append(f"• {s.name}: {format_amount(monthly, display)}/month{currency_note} — {status}")

    await message.answer(
        "📋 Subscriptions:\n" + "\n".join(lines) + f"\n\nActive total: {format_amount(active_total, display)}/month"
    )


@router.message(Command("addsub"))
async def cmd_addsub(message: Message, rate_cache: RateCache):
    display = await get_display_currency()
    args = command_args(message)
    if len(args) < 2:
        await message.answer(ADDSUB_USAGE)
        return

    # The name runs up to the first amount, so it may contain spaces.
    amount_at = next((i for i, arg in enumerate(args) if i > 0 and parse_amount(arg) is not None), None)
    if amount_at is None:
        await message.answer(f"Invalid amount. {ADDSUB_USAGE}")
        return
    name = " ".join(args[:amount_at])
    amount = parse_amount(args[amount_at])

    rest = args[amount_at + 1 :]
    currency = display
    if rest and is_supported(rest[0]):
        currency = rest.pop(0).upper()

    category_id = "subscriptions"
    if rest and parse_iso_date(rest[0]) is None:
        category = await find_category(rest.pop(0))
        if category is None:
            await message.answer("Unknown category. See /categories.")
            return
        category_id = category.id

    dates = [parse_iso_date(arg) for arg in rest]
    if len(dates) > 2 or any(d is None for d in dates):
        await message.answer(ADDSUB_USAGE)
        return
    start_date = dates[0] if dates else date.today()
    end_date = dates[1] if len(dates) > 1 else None

    try:
        sub = await add_subscription(
            rate_cache,
            name=name,
            amount=amount,
            currency=currency,
            start_date=start_date,
            category_id=category_id,
            end_date=end_date,
        )
    except RateProviderError as exc:
        logger.error("Rate provider error while saving subscription: %s", exc, extra={"chat_id": message.chat.id})
        await message.answer(f"Could not convert the amount: {exc.error_type}. Subscription not saved.")
        return
    except ValueError as exc:
        await message.answer(str(exc))
        return

    await message.answer(
        f"Added subscription: {sub.name} {format_amount(monthly_amount(sub, display), display)}/month "
        f"from {sub.start_date.isoformat()}"
    )


@router.message(Command("editsub"))
async def cmd_editsub(message: Message, rate_cache: RateCache):
    parsed = split_options(command_args(message), EDITSUB_KEYS)
    if parsed is None or not parsed[0] or not parsed[1]:
        await message.answer(EDITSUB_USAGE)
        return
    words, options = parsed
    name = " ".join(words)

    sub = await get_subscription_by_name(name)
    if sub is None:
        await message.answer(f"Subscription '{name}' not found.")
        return

    fields: dict = {}
    if options.get("name"):
        fields["name"] = options["name"]
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
    if "category" in options:
        category = await find_category(options["category"])
        if category is None:
            await message.answer("Unknown category. See /categories.")
            return
        fields["category_id"] = category.id
    for key, field_name in (("start", "start_date"), ("end", "end_date")):
        if key not in options:
            continue
        if key == "end" and options[key].lower() in _OPEN_ENDED:
            fields[field_name] = None
            continue
        parsed_date = parse_iso_date(options[key])
        if parsed_date is None:
            await message.answer(f"{key.capitalize()} date must be YYYY-MM-DD.")
            return
        fields[field_name] = parsed_date

    try:
        updated = await update_subscription(rate_cache, sub.id, **fields)
    except RateProviderError as exc:
        logger.error("Rate provider error while editing subscription: %s", exc, extra={"chat_id": message.chat.id})
        await message.answer(f"Could not convert the amount: {exc.error_type}. Subscription not changed.")
        return
    except ValueError as exc:
        await message.answer(str(exc))
        return

    display = await get_display_currency()
    until = f" until {updated.end_date.isoformat()}" if updated.end_date else ""
    await message.answer(
        f"Updated subscription: {updated.name} {format_amount(monthly_amount(updated, display), display)}/month "
        f"from {updated.start_date.isoformat()}{until}"
    )


@router.message(Command("endsub"))
async def cmd_endsub(message: Message):
    args = command_args(message)
    if not args:
        await message.answer("Usage: /endsub Netflix [YYYY-MM-DD]")
        return

    end_date = date.today()
    if len(args) > 1 and (parsed := parse_iso_date(args[-1])):
        end_date = parsed
        args = args[:-1]
    name = " ".join(args)

    try:
        sub = await end_subscription(name, end_date)
    except ValueError as exc:
        await message.answer(str(exc))
        return
    if sub is None:
        await message.answer(f"Subscription '{name}' not found.")
        return
    await message.answer(f"{sub.name} ends on {end_date.isoformat()}.")


@router.message(Command("removesub"))
async def cmd_removesub(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    if len(parts) < 2:
        await message.answer("Usage: /removesub Netflix")
        return

    name = parts[1].strip()
    removed = await remove_subscription(name)

    if removed:
        await message.answer(f"Removed subscription: {name}")
    else:
        await message.answer(f"Subscription '{name}' not found.")
