import logging
import math
from datetime import date

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

logger = logging.getLogger(__name__)
router = Router()

HELP_TEXT = """Budgie tracks your expenses and subscriptions.

Reports:
/report [week|month|year] [YYYY-MM-DD] — spending report

Expenses:
/add 12.50 [EUR] groceries [YYYY-MM-DD] [note] — record an expense
/expenses — recent expenses
/editexpense <id> [amount=..] [currency=..] [date=..] [category=..] [note=..] — change an expense
/delexpense <id> — delete an expense
/clearexpenses confirm — delete every expense

Subscriptions:
/subs — list subscriptions
/addsub Netflix 15.99 [USD] [category] [start] [end] — add a monthly subscription
/editsub Netflix [name=..] [amount=..] [currency=..] [category=..] [start=..] [end=..|none] — change a subscription
/endsub Netflix [YYYY-MM-DD] — stop a subscription
/removesub Netflix — delete a subscription

Categories:
/categories, /addcategory <name> [icon=Name], /editcategory <name> [name=New] [icon=Name],
/removecategory <name>, /resetcategories

Settings:
/settings, /setcurrency USD, /setapikey <key|off>, /setbudget <amount|off>, /rates [CUR]"""


def command_args(message: Message) -> list[str]:
    parts = message.text.split(maxsplit=1) if message.text else []
    if len(parts) < 2:
        return []
    return parts[1].split()


def split_options(args: list[str], keys: set[str]) -> tuple[list[str], dict[str, str]] | None:
    """Split ``word ... key=value ...`` arguments into leading words and options.

    Words following a ``key=value`` pair extend that value, so values may
    contain spaces. Returns None when an option key is not in ``keys``.
    """
    words: list[str] = []
    options: dict[str, str] = {}
    current: str | None = None
    for arg in args:
        key, sep, value = arg.partition("=")
        if sep and key.isalpha():
            key = key.lower()
            if key not in keys:
                return None
            options[key] = value
            current = key
        elif current is not None:
            options[current] = f"{options[current]} {arg}".strip()
        else:
            words.append(arg)
    return words, options


def parse_amount(text: str) -> float | None:
    try:
        amount = float(text.replace(",", "."))
    except ValueError:
        return None
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


def parse_iso_date(text: str) -> date | None:
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


@router.message(CommandStart())
async def cmd_start(message: Message):
    await message.answer("Hi! I'm Budgie.\n\n" + HELP_TEXT)


@router.message(Command("help"))
async def cmd_help(message: Message):
    await message.answer(HELP_TEXT)
