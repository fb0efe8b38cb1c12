import asyncio
import functools
import json
import logging

from aiogram import Bot, Dispatcher
from aiogram.types import CallbackQuery, Message

from budgie.config import settings
from budgie.db.database import close_db, get_db, init_db
from budgie.handlers import (
    categories,
    common,
    expenses,
    report,
    subscriptions,
)
from budgie.handlers import settings as settings_handlers
from budgie.logging import setup_logging
from budgie.services.currency_service import RateCache, has_credential
from budgie.services.settings_service import get_app_settings

setup_logging(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


async def auth_middleware(handler, event: Message, data: dict):
    if settings.allowed_chat_ids and event.chat.id not in settings.allowed_chat_ids:
        logger.warning("Unauthorized access", extra={"chat_id": event.chat.id})
        return
    return await handler(event, data)


async def error_boundary_middleware(handler, event, data: dict):
    try:
        return await handler(event, data)
    except Exception:
        chat_id = event.chat.id if hasattr(event, "chat") and event.chat else None
        logger.error("Handler error", exc_info=True, extra={"chat_id": chat_id})
        try:
            if isinstance(event, Message):
                await event.answer("Something went wrong. Please try again.")
            elif isinstance(event, CallbackQuery):
                await event.answer("Something went wrong.", show_alert=True)
        except Exception:
            logger.error("Failed to send error message", exc_info=True, extra={"chat_id": chat_id})


async def _health_check(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    rate_cache: RateCache | None = None,
):
    await reader.read(4096)
    checks: dict[str, str] = {}
    try:
        db = await get_db()
        await db.execute("SELECT 1")
        checks["db"] = "ok"
    except Exception as e:
        checks["db"] = f"error: {e}"
    if rate_cache is None:
        checks["rates"] = "not configured"
    else:
        checks["rates"] = "live" if has_credential(rate_cache.api_key) else "fallback"
    healthy = checks["db"] == "ok"
    body = json.dumps({"status": "healthy" if healthy else "unhealthy", "checks": checks})
    status = "200 OK" if healthy else "503 Service Unavailable"
    response = f"HTTP/1.1 {status}\r\nContent-Type: application/json\r\nContent-Length: {len(body)}\r\n\r\n{body}"
    writer.write(response.encode())
    await writer.drain()
    writer.close()
    await writer.wait_closed()


async def build_rate_cache() -> RateCache:
    # The env key only seeds a missing settings row; a stored None means /setapikey off.
    app_settings = await get_app_settings()
    return RateCache(api_key=app_settings.api_key)


async def main():
    await init_db()
    rate_cache = await build_rate_cache()

    bot = Bot(token=settings.telegram_bot_token)
    dp = Dispatcher()
    dp["rate_cache"] = rate_cache

    dp.message.outer_middleware(error_boundary_middleware)
    dp.callback_query.outer_middleware(error_boundary_middleware)
    dp.message.middleware(auth_middleware)

    dp.include_router(report.router)
    dp.include_router(expenses.router)
    dp.include_router(subscriptions.router)
    dp.include_router(categories.router)
    dp.include_router(settings_handlers.router)
    dp.include_router(common.router)

    health_server = await asyncio.start_server(
        functools.partial(_health_check, rate_cache=rate_cache), "0.0.0.0", settings.health_check_port
    )
    logger.info("Health check listening on :%d", settings.health_check_port)

    logger.info("Starting Budgie bot")
    try:
        await dp.start_polling(bot)
    finally:
        logger.info("Shutting down gracefully...")
        health_server.close()
        await health_server.wait_closed()
        await close_db()
        logger.info("Shutdown complete")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
