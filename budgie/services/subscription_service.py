import logging
import uuid
from datetime import date

from budgie.currency import validate_currency
from budgie.db.database import AMOUNT_COLUMNS, amounts_from_row, amounts_to_columns, get_db
from budgie.db.models import Subscription
from budgie.services.currency_service import RateCache, convert_to_all_currencies

logger = logging.getLogger(__name__)

_AMOUNT_COLS = list(AMOUNT_COLUMNS.values())


def _row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row["id"],
        name=row["name"],
        category_id=row["category_id"],
        original_amount=row["original_amount"],
        original_currency=row["original_currency"],
        start_date=date.fromisoformat(row["start_date"]),
        amounts=amounts_from_row(row),
        end_date=date.fromisoformat(row["end_date"]) if row["end_date"] else None,
        description=row["description"],
    )


async def _write_amounts(subscription_id: str, amounts: dict[str, float]) -> None:
    db = await get_db()
    amount_values = amounts_to_columns(amounts)
    set_clause = ", ".join(f"{col} = ?" for col in _AMOUNT_COLS)
    await db.execute(
        f"UPDATE subscriptions SET {set_clause} WHERE id = ?",
        [*(amount_values[col] for col in _AMOUNT_COLS), subscription_id],
    )


async def get_subscriptions() -> list[Subscription]:
    db = await get_db()
    cursor = await db.execute("SELECT * FROM subscriptions ORDER BY name COLLATE NOCASE")
    rows = await cursor.fetchall()
    return [_row_to_subscription(row) for row in rows]


async def get_subscription_by_id(subscription_id: str) -> Subscription | None:
    db = await get_db()
    cursor = await db.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
    row = await cursor.fetchone()
    return _row_to_subscription(row) if row else None


async def get_subscription_by_name(name: str) -> Subscription | None:
    db = await get_db()
    cursor = await db.execute(
        "SELECT * FROM subscriptions WHERE LOWER(name) = LOWER(?) ORDER BY start_date DESC LIMIT 1",
        (name.strip(),),
    )
    row = await cursor.fetchone()
    return _row_to_subscription(row) if row else None


async def add_subscription(
    cache: RateCache,
    name: str,
    amount: float,
    currency: str,
    start_date: date,
    category_id: str | None = "subscriptions",
    end_date: date | None = None,
    description: str | None = None,
) -> Subscription:
    currency = validate_currency(currency)
    if end_date is not None and end_date < start_date:
        raise ValueError("End date must not be before start date")
    amounts = await convert_to_all_currencies(amount, currency, cache)
    sub = Subscription(
        id=str(uuid.uuid4()),
        name=name,
        category_id=category_id,
        original_amount=amount,
        original_currency=currency,
        start_date=start_date,
        amounts=amounts,
        end_date=end_date,
        description=description,
    )
    db = await get_db()
    amount_values = amounts_to_columns(amounts)
    columns = [
        "id",
        "name",
        "category_id",
        "original_amount",
        "original_currency",
        *_AMOUNT_COLS,
        "start_date",
        "end_date",
        "description",
    ]
    values = [
        sub.id,
        sub.name,
        sub.category_id,
        sub.original_amount,
        sub.original_currency,
        *(amount_values[col] for col in _AMOUNT_COLS),
        sub.start_date.isoformat(),
        sub.end_date.isoformat() if sub.end_date else None,
        sub.description,
    ]
    placeholders = ", ".join("?" for _ in columns)
    await db.execute(f"INSERT INTO subscriptions ({', '.join(columns)}) VALUES ({placeholders})", values)
    await db.commit()
    logger.info("Saved subscription %s (%s)", sub.name, sub.id, extra={"record_id": sub.id})
    return sub


async def update_subscription(cache: RateCache, subscription_id: str, **fields) -> Subscription:
    existing = await get_subscription_by_id(subscription_id)
    if existing is None:
        raise LookupError(f"Subscription {subscription_id} not found")

    allowed = {"name", "category_id", "original_amount", "original_currency", "start_date", "end_date", "description"}
    fields = {k: v for k, v in fields.items() if k in allowed}
    if "original_currency" in fields:
        fields["original_currency"] = validate_currency(fields["original_currency"])

    amount = fields.get("original_amount", existing.original_amount)
    currency = fields.get("original_currency", existing.original_currency)
    amounts = existing.amounts
    if not existing.amounts or amount != existing.original_amount or currency != existing.original_currency:
        amounts = await convert_to_all_currencies(amount, currency, cache)

    updated = Subscription(
        id=existing.id,
        name=fields.get("name", existing.name),
        category_id=fields.get("category_id", existing.category_id),
        original_amount=amount,
        original_currency=currency,
        start_date=fields.get("start_date", existing.start_date),
        amounts=amounts,
        end_date=fields.get("end_date", existing.end_date),
        description=fields.get("description", existing.description),
    )
    if updated.end_date is not None and updated.end_date < updated.start_date:
        raise ValueError("End date must not be before start date")

    db = await get_db()
    await db.execute(
        """UPDATE subscriptions SET name = ?, category_id = ?, original_amount = ?,
        original_currency = ?, start_date = ?, end_date = ?, description = ?
        WHERE id = ?""",
        (
            updated.name,
            updated.category_id,
            updated.original_amount,
            updated.original_currency,
            updated.start_date.isoformat(),
            updated.end_date.isoformat() if updated.end_date else None,
            updated.description,
            subscription_id,
        ),
    )
    await _write_amounts(subscription_id, amounts)
    await db.commit()
    return updated


async def end_subscription(name: str, end_date: date) -> Subscription | None:
    """Close an open-ended subscription. Returns None if no subscription matches."""
    sub = await get_subscription_by_name(name)
    if sub is None:
        return None
    if end_date < sub.start_date:
        raise ValueError("End date must not be before start date")
    db = await get_db()
    await db.execute(
        "UPDATE subscriptions SET end_date = ? WHERE id = ?",
        (end_date.isoformat(), sub.id),
    )
    await db.commit()
    sub.end_date = end_date
    return sub


async def delete_subscription(subscription_id: str) -> bool:
    db = await get_db()
    cursor = await db.execute("DELETE FROM subscriptions WHERE id = ?", (subscription_id,))
    await db.commit()
    return cursor.rowcount > 0


async def remove_subscription(name: str) -> bool:
    db = await get_db()
    cursor = await db.execute(
        "DELETE FROM subscriptions WHERE LOWER(name) = LOWER(?)",
        (name.strip(),),
    )
    await db.commit()
    return cursor.rowcount > 0


async def count_subscriptions_in_category(category_id: str) -> int:
    db = await get_db()
    cursor = await db.execute("SELECT COUNT(*) FROM subscriptions WHERE category_id = ?", (category_id,))
    row = await cursor.fetchone()
    return row[0]


async def populate_missing_amounts(cache: RateCache) -> int:
    """Convert subscriptions stored without any amounts. Returns how many were filled."""
    subs = await get_subscriptions()
    filled = 0
    for s in subs:
        if s.amounts:
            continue
        try:
            amounts = await convert_to_all_currencies(s.original_amount, s.original_currency, cache)
        except Exception:
            logger.warning(
                "Failed to convert subscription %s, keeping only its original amount",
                s.name,
                exc_info=True,
                extra={"record_id": s.id},
            )
            amounts = {s.original_currency: s.original_amount}
        await _write_amounts(s.id, amounts)
        filled += 1
    if filled:
        db = await get_db()
        await db.commit()
    return filled
