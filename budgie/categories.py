import logging
import re
import uuid
from sqlite3 import IntegrityError

from budgie.db.database import get_db
from budgie.db.models import Category
from budgie.services.expense_service import count_expenses_in_category
from budgie.services.subscription_service import count_subscriptions_in_category

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: list[Category] = [
    Category("restaurant", "Restaurant", "UtensilsCrossed", True),
    Category("bar", "Bar", "Martini", True),
    Category("transportation", "Transportation", "Bus", True),
    Category("subscriptions", "Subscriptions", "Repeat", True),
    Category("groceries", "Groceries", "ShoppingCart", True),
    Category("food", "Food", "Apple", True),
    Category("gift", "Gift", "Gift", True),
    Category("home", "Home", "Home", True),
    Category("car", "Car", "Car", True),
    Category("tech", "Tech", "Laptop", True),
]

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _row_to_category(row) -> Category:
    return Category(id=row["id"], name=row["name"], icon=row["icon"], is_default=bool(row["is_default"]))


async def _seed_defaults(db) -> None:
    await db.executemany(
        "INSERT OR IGNORE INTO categories (id, name, icon, is_default) VALUES (?, ?, ?, ?)",
        [(c.id, c.name, c.icon, c.is_default) for c in DEFAULT_CATEGORIES],
    )
    await db.commit()


async def get_categories() -> list[Category]:
    db = await get_db()
    cursor = await db.execute("SELECT * FROM categories ORDER BY is_default DESC, name COLLATE NOCASE")
    rows = await cursor.fetchall()
    if not rows:
        await _seed_defaults(db)
        cursor = await db.execute("SELECT * FROM categories ORDER BY is_default DESC, name COLLATE NOCASE")
        rows = await cursor.fetchall()
    return [_row_to_category(row) for row in rows]


async def find_category(name_or_id: str) -> Category | None:
    """Look a category up by id or by case-insensitive name."""
    needle = name_or_id.strip()
    for category in await get_categories():
        if category.id == needle or category.name.lower() == needle.lower():
            return category
    return None


async def add_category(name: str, icon: str = "Tag") -> Category | None:
    """Add a custom category. Returns None if the name is already taken."""
    name = name.strip()
    if not name:
        return None
    await get_categories()
    slug = _SLUG_RE.sub("-", name.lower()).strip("-") or "category"
    category = Category(id=f"{slug}-{uuid.uuid4().hex[:8]}", name=name, icon=icon, is_default=False)
    db = await get_db()
    try:
        await db.execute(
            "INSERT INTO categories (id, name, icon, is_default) VALUES (?, ?, ?, 0)",
            (category.id, category.name, category.icon),
        )
        await db.commit()
    except IntegrityError:
        return None
    return category


async def update_category(category: Category) -> bool:
    db = await get_db()
    try:
        cursor = await db.execute(
            "UPDATE categories SET name = ?, icon = ? WHERE id = ?",
            (category.name.strip(), category.icon, category.id),
        )
        await db.commit()
    except IntegrityError:
        return False
    return cursor.rowcount > 0


async def delete_category(category_id: str) -> tuple[bool, str | None]:
    """Delete a custom category that nothing refers to."""
    categories = {c.id: c for c in await get_categories()}
    category = categories.get(category_id)
    if category is None:
        return False, "Category not found."
    if category.is_default:
        return False, "Default categories cannot be deleted."

    in_use = await count_expenses_in_category(category_id) + await count_subscriptions_in_category(category_id)
    if in_use:
        return False, f'Category "{category.name}" is currently in use and cannot be deleted.'

    db = await get_db()
    await db.execute("DELETE FROM categories WHERE id = ?", (category_id,))
    await db.commit()
    return True, None


async def reset_categories() -> list[Category]:
    db = await get_db()
    await db.execute("DELETE FROM categories")
    await _seed_defaults(db)
    logger.info("Categories reset to defaults")
    return await get_categories()
