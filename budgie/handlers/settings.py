import logging

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from budgie.currency import SUPPORTED_CURRENCIES, InvalidCurrencyError, format_amount, validate_currency
from budgie.handlers.common import command_args, parse_amount
from budgie.services.currency_service import RateCache, RateProviderError, has_credential
from budgie.services.settings_service import (
    get_app_settings,
    set_api_key,
    set_default_currency,
    set_monthly_budget,
)

logger = logging.getLogger(__name__)
router = Router()

_OFF = {"off", "none", "clear", "remove"}


def _mask(api_key: str | None) -> str:
    if not has_credential(api_key):
        return "not set (using fallback rates)"
    return f"{api_key[:4]}…{api_key[-2:]}" if len(api_key) > 8 else "set"


@router.message(Command("settings"))
async def cmd_settings(message: Message, rate_cache: RateCache):
    s = await get_app_settings()
    budget = format_amount(s.monthly_budget, s.default_currency) if s.monthly_budget else "not set"
    entry = rate_cache.get_entry(s.default_currency)
    if entry is None:
        rates_info = "not fetched yet"
    else:
        source = "fallback" if entry.is_fallback else "live"
        rates_info = f"{source}, fetched {entry.fetched_at.strftime('%Y-%m-%d %H:%M')} UTC"
    await message.answer(
        f"⚙️ Settings\n\n"
        f"Display currency: {s.default_currency}\n"
        f"Monthly budget: {budget}\n"
        f"Exchange rate API key: {_mask(s.api_key)}\n"
        f"Rates: {rates_info}\n"
        f"\nUse /setcurrency, /setbudget or /setapikey to change these."
    )


@router.message(Command("setcurrency"))
async def cmd_setcurrency(message: Message):
    args = command_args(message)
    if not args:
        s = await get_app_settings()
        await message.answer(
            f"Current display currency: {s.default_currency}\n\n"
            f"Usage: /setcurrency USD\n"
            f"Supported: {', '.join(SUPPORTED_CURRENCIES)}"
        )
        return

    try:
        code = validate_currency(args[0])
    except InvalidCurrencyError as exc:
        await message.answer(str(exc))
        return

    await set_default_currency(code)
    await message.answer(f"Display currency set to {code}. Reports will now show amounts in {code}.")


@router.message(Command("setapikey"))
async def cmd_setapikey(message: Message, rate_cache: RateCache):
    args = command_args(message)
    if not args:
        await message.answer("Usage: /setapikey <exchangerate-api key> or /setapikey off")
        return

    key = None if args[0].lower() in _OFF else args[0]
    s = await set_api_key(key)
    rate_cache.set_api_key(s.api_key)
    if s.api_key:
        await message.answer("API key saved. Live exchange rates will be used for new records.")
    else:
        await message.answer("API key removed. Approximate fallback rates will be used.")


@router.message(Command("setbudget"))
async def cmd_setbudget(message: Message):
    args = command_args(message)
    if not args:
        await message.answer("Usage: /setbudget 2000 or /setbudget off")
        return

    s = await get_app_settings()
    if args[0].lower() in _OFF:
        await set_monthly_budget(None)
        await message.answer("Monthly budget removed.")
        return

    amount = parse_amount(args[0])
    if amount is None:
        await message.answer("Budget must be a positive number.")
        return
    await set_monthly_budget(amount)
    await message.answer(f"Monthly budget set to {format_amount(amount, s.default_currency)}.")


@router.message(Command("rates"))
async def cmd_rates(message: Message, rate_cache: RateCache):
    args = command_args(message)
    s = await get_app_settings()
    try:
        base = validate_currency(args[0]) if args else s.default_currency
    except InvalidCurrencyError as exc:
        await message.answer(str(exc))
        return

    try:
        rates = await rate_cache.get_rates(base)
    except RateProviderError as exc:
        logger.error("Rate provider error: %s", exc, extra={"chat_id": message.chat.id})
        await message.answer(f"Could not fetch rates for {base}: {exc.error_type}")
        return

    entry = rate_cache.get_entry(base)
    note = " (approximate fallback rates)" if entry and entry.is_fallback else ""
    lines = [f"1 {base} = {rates[code]:.4f} {code}" for code in SUPPORTED_CURRENCIES if code != base]
    await message.answer(f"💱 Rates for {base}{note}:\n" + "\n".join(lines))
