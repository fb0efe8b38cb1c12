from datetime import date
from unittest.mock import AsyncMock

import pytest

from budgie.services.currency_service import RateCache, RateProviderError
from budgie.services.subscription_service import (
    add_subscription,
    count_subscriptions_in_category,
    delete_subscription,
    end_subscription,
    get_subscription_by_id,
    get_subscription_by_name,
    get_subscriptions,
    populate_missing_amounts,
    remove_subscription,
    update_subscription,
)


async def test_add_and_list(rate_cache):
    await add_subscription(rate_cache, "spotify", 10.0, "EUR", date(2024, 1, 1))
    await add_subscription(rate_cache, "Netflix", 15.0, "USD", date(2024, 1, 5), category_id="tech")

    subs = await get_subscriptions()
    assert [s.name for s in subs] == ["Netflix", "spotify"]
    spotify = subs[1]
    assert spotify.category_id == "subscriptions"
    assert spotify.end_date is None
    assert spotify.amounts["EUR"] == 10.0
    assert spotify.amounts["USD"] == pytest.approx(10.8)


async def test_end_before_start_rejected(rate_cache):
    with pytest.raises(ValueError):
        await add_subscription(rate_cache, "Gym", 30.0, "CHF", date(2024, 3, 1), end_date=date(2024, 2, 1))
    assert await get_subscriptions() == []


async def test_provider_error_stores_nothing(clock):
    cache = RateCache(
        fetcher=AsyncMock(side_effect=RateProviderError("USD", "invalid-key")),
        api_key="secret",
        clock=clock,
    )
    with pytest.raises(RateProviderError):
        await add_subscription(cache, "Gym", 30.0, "USD", date(2024, 1, 1))
    assert await get_subscriptions() == []


async def test_get_by_name_case_insensitive(rate_cache):
    sub = await add_subscription(rate_cache, "iCloud", 2.99, "USD", date(2024, 1, 1))
    found = await get_subscription_by_name("  ICLOUD ")
    assert found is not None and found.id == sub.id
    assert await get_subscription_by_name("dropbox") is None


async def test_end_subscription(rate_cache):
    await add_subscription(rate_cache, "Gym", 290.0, "USD", date(2024, 1, 1))
    ended = await end_subscription("gym", date(2024, 2, 14))
    assert ended.end_date == date(2024, 2, 14)
    assert (await get_subscription_by_name("Gym")).end_date == date(2024, 2, 14)


async def test_end_subscription_same_day_as_start(rate_cache):
    await add_subscription(rate_cache, "Trial", 5.0, "USD", date(2024, 2, 1))
    ended = await end_subscription("Trial", date(2024, 2, 1))
    assert ended.end_date == ended.start_date


async def test_end_subscription_before_start(rate_cache):
    await add_subscription(rate_cache, "Gym", 290.0, "USD", date(2024, 1, 1))
    with pytest.raises(ValueError):
        await end_subscription("Gym", date(2023, 12, 31))


async def test_end_unknown_subscription():
    assert await end_subscription("nothing", date(2024, 1, 1)) is None


async def test_update_subscription(rate_cache):
    sub = await add_subscription(rate_cache, "Gym", 30.0, "USD", date(2024, 1, 1))
    updated = await update_subscription(rate_cache, sub.id, original_amount=40.0, name="Gym+")
    assert updated.name == "Gym+"
    assert updated.amounts["EUR"] == pytest.approx(37.2)

    stored = await get_subscription_by_id(sub.id)
    assert stored.name == "Gym+"
    assert stored.amounts["EUR"] == pytest.approx(37.2)


async def test_update_subscription_validates_dates(rate_cache):
    sub = await add_subscription(rate_cache, "Gym", 30.0, "USD", date(2024, 2, 1))
    with pytest.raises(ValueError):
        await update_subscription(rate_cache, sub.id, end_date=date(2024, 1, 1))


async def test_update_missing_raises(rate_cache):
    with pytest.raises(LookupError):
        await update_subscription(rate_cache, "nope", name="x")


async def test_delete_and_remove(rate_cache):
    a = await add_subscription(rate_cache, "A", 1.0, "USD", date(2024, 1, 1))
    await add_subscription(rate_cache, "B", 1.0, "USD", date(2024, 1, 1))
    assert await delete_subscription(a.id) is True
    assert await remove_subscription("b") is True
    assert await remove_subscription("b") is False
    assert await get_subscriptions() == []


async def test_count_in_category(rate_cache):
    await add_subscription(rate_cache, "A", 1.0, "USD", date(2024, 1, 1), category_id="tech")
    await add_subscription(rate_cache, "B", 1.0, "USD", date(2024, 1, 1), category_id="tech")
    assert await count_subscriptions_in_category("tech") == 2
    assert await count_subscriptions_in_category("home") == 0


async def _insert_bare(test_db, sub_id: str, name: str, amount: float, currency: str) -> None:
    await test_db.execute(
        "INSERT INTO subscriptions (id, name, category_id, original_amount, original_currency, start_date) "
        "VALUES (?, ?, 'subscriptions', ?, ?, '2024-01-01')",
        (sub_id, name, amount, currency),
    )
    await test_db.commit()


async def test_populate_missing_amounts(test_db, rate_cache):
    await _insert_bare(test_db, "legacy-1", "Legacy", 10.0, "EUR")
    await add_subscription(rate_cache, "Fresh", 5.0, "USD", date(2024, 1, 1))

    assert await populate_missing_amounts(rate_cache) == 1
    legacy = await get_subscription_by_id("legacy-1")
    assert legacy.amounts["EUR"] == 10.0
    assert legacy.amounts["JPY"] == pytest.approx(1690.0)
    assert await populate_missing_amounts(rate_cache) == 0


async def test_populate_missing_amounts_keeps_original_on_failure(test_db, clock):
    await _insert_bare(test_db, "legacy-1", "Legacy", 10.0, "EUR")
    cache = RateCache(
        fetcher=AsyncMock(side_effect=RateProviderError("EUR", "quota-reached")),
        api_key="secret",
        clock=clock,
    )

    assert await populate_missing_amounts(cache) == 1
    legacy = await get_subscription_by_id("legacy-1")
    assert legacy.amounts == {"EUR": 10.0}
