import aiosqlite

from budgie.config import settings
from budgie.currency import SUPPORTED_CURRENCIES

AMOUNT_COLUMNS: dict[str, str] = {code: f"amount_{code.lower()}" for code in SUPPORTED_CURRENCIES}

_AMOUNT_DDL = ",\n    ".join(f"{col} REAL" for col in AMOUNT_COLUMNS.values())

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS expenses (
    id TEXT PRIMARY KEY,
    expense_date DATE NOT NULL,
    category_id TEXT,
    original_amount REAL NOT NULL CHECK(original_amount > 0),
    original_currency TEXT NOT NULL,
    day_of_week INTEGER NOT NULL CHECK(day_of_week >= 0 AND day_of_week <= 6),
    {_AMOUNT_DDL},
    description TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS subscriptions (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    category_id TEXT,
    original_amount REAL NOT NULL CHECK(original_amount > 0),
    original_currency TEXT NOT NULL,
    {_AMOUNT_DDL},
    start_date DATE NOT NULL,
    end_date DATE CHECK(end_date IS NULL OR end_date >= start_date),
    description TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE COLLATE NOCASE,
    icon TEXT NOT NULL DEFAULT 'Tag',
    is_default BOOLEAN NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS app_settings (
    id INTEGER PRIMARY KEY CHECK(id = 1),
    default_currency TEXT NOT NULL,
    api_key TEXT,
    monthly_budget REAL CHECK(monthly_budget IS NULL OR monthly_budget > 0)
);

CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(expense_date);
CREATE INDEX IF NOT EXISTS idx_expenses_category ON expenses(category_id);
CREATE INDEX IF NOT EXISTS idx_subscriptions_category ON subscriptions(category_id);
"""

_db: aiosqlite.Connection | None = None


async def get_db() -> aiosqlite.Connection:
    global _db
    if _db is None:
        _db = await aiosqlite.connect(settings.db_path)
        _db.row_factory = aiosqlite.Row
        await _db.execute("PRAGMA journal_mode=WAL")
        await _db.execute("PRAGMA foreign_keys=ON")
    return _db


async def close_db():
    global _db
    if _db is not None:
        await _db.close()
        _db = None


async def init_db():
    db = await get_db()
    await db.executescript(SCHEMA)
    await db.commit()


def amounts_from_row(row) -> dict[str, float]:
    """Collect the non-null amount_<code> columns of a row into a currency map."""
    keys = row.keys()
    return {
        code: row[col]
        for code, col in AMOUNT_COLUMNS.items()
        if col in keys and row[col] is not None
    }


def amounts_to_columns(amounts: dict[str, float]) -> dict[str, float | None]:
    return {col: amounts.get(code) for code, col in AMOUNT_COLUMNS.items()}
