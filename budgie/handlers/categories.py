from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from budgie.categories import (
    add_category,
    delete_category,
    find_category,
    get_categories,
    reset_categories,
    update_category,
)
from budgie.handlers.common import command_args, split_options

router = Router()

ADD_USAGE = "Usage: /addcategory <name> [icon=Name]"
EDIT_USAGE = "Usage: /editcategory <name> [name=New name] [icon=Name]"


@router.message(Command("categories"))
async def cmd_categories(message: Message):
    categories = await get_categories()
    defaults = [c.name for c in categories if c.is_default]
    custom = [c.name for c in categories if not c.is_default]
    text = "Default categories: " + ", ".join(defaults)
    if custom:
        text += "\nCustom categories: " + ", ".join(custom)
    text += "\n\nUse /addcategory <name> [icon=Name] to add a custom category."
    await message.answer(text)


@router.message(Command("addcategory"))
async def cmd_addcategory(message: Message):
    parsed = split_options(command_args(message), {"icon"})
    if parsed is None or not parsed[0]:
        await message.answer(ADD_USAGE)
        return
    words, options = parsed
    name = " ".join(words)

    category = await add_category(name, options.get("icon") or "Tag")
    if category:
        await message.answer(f"Added category: {category.name}")
    else:
        await message.answer(f"Category '{name}' already exists.")


@router.message(Command("editcategory"))
async def cmd_editcategory(message: Message):
    parsed = split_options(command_args(message), {"name", "icon"})
    if parsed is None or not parsed[0] or not parsed[1]:
        await message.answer(EDIT_USAGE)
        return
    words, options = parsed
    old_name = " ".join(words)

    category = await find_category(old_name)
    if category is None:
        await message.answer(f"Category '{old_name}' not found.")
        return

    if options.get("name"):
        category.name = options["name"]
    if options.get("icon"):
        category.icon = options["icon"]
    if await update_category(category):
        await message.answer(f"Updated category: {category.name}")
    else:
        await message.answer(f"Category '{category.name}' already exists.")


@router.message(Command("removecategory"))
async def cmd_removecategory(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    if len(parts) < 2 or not parts[1].strip():
        await message.answer("Usage: /removecategory <name>")
        return

    category = await find_category(parts[1])
    if category is None:
        await message.answer(f"Category '{parts[1].strip()}' not found.")
        return

    ok, reason = await delete_category(category.id)
    if ok:
        await message.answer(f"Removed category: {category.name}")
    else:
        await message.answer(reason or "Could not remove category.")


@router.message(Command("resetcategories"))
async def cmd_resetcategories(message: Message):
    categories = await reset_categories()
    await message.answer(f"Categories reset to the {len(categories)} defaults.")
