import os

os.environ.setdefault("TELEGRAM_BOT_TOKEN", "test-token-000")

from datetime import UTC, datetime, timedelta

import aiosqlite
import pytest

import budgie.db.database as db_mod
from budgie.services.currency_service import RateCache


@pytest.fixture(autouse=True)
async def test_db(monkeypatch):
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.executescript(db_mod.SCHEMA)
    await conn.commit()

    async def _get_db():
        return conn

    monkeypatch.setattr(db_mod, "get_db", _get_db)
    monkeypatch.setattr(db_mod, "_db", conn)

    yield conn

    await conn.close()


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 2, 15, 12, 0, tzinfo=UTC))


@pytest.fixture
def rate_cache(clock) -> RateCache:
    """A cache with no API key, so every conversion uses fallback rates."""
    return RateCache(api_key=None, clock=clock)
