from budgie.config import settings
from budgie.currency import validate_currency
from budgie.db.database import get_db
from budgie.db.models import AppSettings


async def get_app_settings() -> AppSettings:
    db = await get_db()
    cursor = await db.execute("SELECT * FROM app_settings WHERE id = 1")
    row = await cursor.fetchone()
    if row:
        return AppSettings(
            default_currency=row["default_currency"],
            api_key=row["api_key"],
            monthly_budget=row["monthly_budget"],
        )
    return AppSettings(default_currency=settings.default_currency, api_key=settings.exchange_rate_api_key)


async def _save(app_settings: AppSettings) -> AppSettings:
    db = await get_db()
    await db.execute(
        "INSERT OR REPLACE INTO app_settings (id, default_currency, api_key, monthly_budget) VALUES (1, ?, ?, ?)",
        (app_settings.default_currency, app_settings.api_key, app_settings.monthly_budget),
    )
    await db.commit()
    return app_settings


async def get_display_currency() -> str:
    return (await get_app_settings()).default_currency


async def set_default_currency(currency: str) -> AppSettings:
    current = await get_app_settings()
    current.default_currency = validate_currency(currency)
    return await _save(current)


async def set_api_key(api_key: str | None) -> AppSettings:
    current = await get_app_settings()
    current.api_key = api_key.strip() if api_key and api_key.strip() else None
    return await _save(current)


async def set_monthly_budget(amount: float | None) -> AppSettings:
    if amount is not None and amount <= 0:
        raise ValueError("Monthly budget must be positive")
    current = await get_app_settings()
    current.monthly_budget = amount
    return await _save(current)
