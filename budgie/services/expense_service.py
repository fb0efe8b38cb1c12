import logging
import uuid
from datetime import date

from budgie.currency import validate_currency
from budgie.db.database import AMOUNT_COLUMNS, amounts_from_row, amounts_to_columns, get_db
from budgie.db.models import Expense
from budgie.services.currency_service import RateCache, convert_to_all_currencies
from budgie.services.proration import to_monday_indexed

logger = logging.getLogger(__name__)

_AMOUNT_COLS = list(AMOUNT_COLUMNS.values())


def _row_to_expense(row) -> Expense:
    return Expense(
        id=row["id"],
        expense_date=date.fromisoformat(row["expense_date"]),
        category_id=row["category_id"],
        original_amount=row["original_amount"],
        original_currency=row["original_currency"],
        amounts=amounts_from_row(row),
        day_of_week=row["day_of_week"],
        description=row["description"],
    )


async def add_expense(
    cache: RateCache,
    amount: float,
    currency: str,
    category_id: str | None,
    expense_date: date,
    description: str | None = None,
) -> Expense:
    """Convert and store a new expense.

    Conversion failures propagate and nothing is written.
    """
    currency = validate_currency(currency)
    amounts = await convert_to_all_currencies(amount, currency, cache)
    expense = Expense(
        id=str(uuid.uuid4()),
        expense_date=expense_date,
        category_id=category_id,
        original_amount=amount,
        original_currency=currency,
        amounts=amounts,
        day_of_week=to_monday_indexed(expense_date),
        description=description,
    )
    await _insert(expense)
    logger.info("Saved expense %s", expense.id, extra={"record_id": expense.id})
    return expense


async def _insert(expense: Expense) -> None:
    db = await get_db()
    columns = [
        "id",
        "expense_date",
        "category_id",
        "original_amount",
        "original_currency",
        "day_of_week",
        *_AMOUNT_COLS,
        "description",
    ]
    amount_values = amounts_to_columns(expense.amounts)
    values = [
        expense.id,
        expense.expense_date.isoformat(),
        expense.category_id,
        expense.original_amount,
        expense.original_currency,
        expense.day_of_week,
        *(amount_values[col] for col in _AMOUNT_COLS),
        expense.description,
    ]
    placeholders = ", ".join("?" for _ in columns)
    await db.execute(f"INSERT INTO expenses ({', '.join(columns)}) VALUES ({placeholders})", values)
    await db.commit()


async def get_expenses(start_date: date | None = None, end_date: date | None = None) -> list[Expense]:
    db = await get_db()
    query = "SELECT * FROM expenses WHERE 1 = 1"
    params: list[str] = []
    if start_date:
        query += " AND expense_date >= ?"
        params.append(start_date.isoformat())
    if end_date:
        query += " AND expense_date <= ?"
        params.append(end_date.isoformat())
    query += " ORDER BY expense_date DESC, created_at DESC"
    cursor = await db.execute(query, params)
    rows = await cursor.fetchall()
    return [_row_to_expense(row) for row in rows]


async def get_recent_expenses(limit: int = 10) -> list[Expense]:
    db = await get_db()
    cursor = await db.execute(
        "SELECT * FROM expenses ORDER BY expense_date DESC, created_at DESC LIMIT ?",
        (limit,),
    )
    rows = await cursor.fetchall()
    return [_row_to_expense(row) for row in rows]


async def get_expense_by_id(expense_id: str) -> Expense | None:
    db = await get_db()
    cursor = await db.execute("SELECT * FROM expenses WHERE id = ?", (expense_id,))
    row = await cursor.fetchone()
    return _row_to_expense(row) if row else None


async def find_expenses_by_prefix(prefix: str) -> list[Expense]:
    db = await get_db()
    cursor = await db.execute("SELECT * FROM expenses WHERE id LIKE ? LIMIT 2", (f"{prefix}%",))
    rows = await cursor.fetchall()
    return [_row_to_expense(row) for row in rows]


async def update_expense(cache: RateCache, expense_id: str, **fields) -> Expense:
    """Apply field changes, re-converting only when amount or currency changed."""
    existing = await get_expense_by_id(expense_id)
    if existing is None:
        raise LookupError(f"Expense {expense_id} not found")

    allowed = {"expense_date", "category_id", "original_amount", "original_currency", "description"}
    fields = {k: v for k, v in fields.items() if k in allowed}
    if "original_currency" in fields:
        fields["original_currency"] = validate_currency(fields["original_currency"])

    amount = fields.get("original_amount", existing.original_amount)
    currency = fields.get("original_currency", existing.original_currency)
    amounts = existing.amounts
    if amount != existing.original_amount or currency != existing.original_currency or not existing.amounts:
        amounts = await convert_to_all_currencies(amount, currency, cache)
        logger.debug("Recomputed conversions for expense %s", expense_id, extra={"record_id": expense_id})

    expense_date = fields.get("expense_date", existing.expense_date)
    updated = Expense(
        id=existing.id,
        expense_date=expense_date,
        category_id=fields.get("category_id", existing.category_id),
        original_amount=amount,
        original_currency=currency,
        amounts=amounts,
        day_of_week=to_monday_indexed(expense_date),
        description=fields.get("description", existing.description),
    )

    db = await get_db()
    amount_values = amounts_to_columns(updated.amounts)
    set_clause = ", ".join(
        [
            "expense_date = ?",
            "category_id = ?",
            "original_amount = ?",
            "original_currency = ?",
            "day_of_week = ?",
            *(f"{col} = ?" for col in _AMOUNT_COLS),
            "description = ?",
        ]
    )
    values = [
        updated.expense_date.isoformat(),
        updated.category_id,
        updated.original_amount,
        updated.original_currency,
        updated.day_of_week,
        *(amount_values[col] for col in _AMOUNT_COLS),
        updated.description,
        expense_id,
    ]
    await db.execute(f"UPDATE expenses SET {set_clause} WHERE id = ?", values)
    await db.commit()
    return updated


async def delete_expense(expense_id: str) -> bool:
    db = await get_db()
    cursor = await db.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))
    await db.commit()
    return cursor.rowcount > 0


async def delete_all_expenses() -> int:
    db = await get_db()
    cursor = await db.execute("DELETE FROM expenses")
    await db.commit()
    return cursor.rowcount


async def count_expenses_in_category(category_id: str) -> int:
    db = await get_db()
    cursor = await db.execute("SELECT COUNT(*) FROM expenses WHERE category_id = ?", (category_id,))
    row = await cursor.fetchone()
    return row[0]
