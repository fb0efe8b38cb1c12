import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx

from budgie.config import settings
from budgie.currency import SUPPORTED_CURRENCIES, validate_currency

logger = logging.getLogger(__name__)

PLACEHOLDER_API_KEYS: frozenset[str] = frozenset({
    "", "api_key", "apikey", "your_api_key", "your-api-key", "changeme", "none", "xxx",
})

# Approximate quote-per-base rates used when live rates cannot be fetched.
# Currencies not listed here fall back to 1.0.
FALLBACK_RATES: dict[str, dict[str, float]] = {
    "USD": {"EUR": 0.93, "JPY": 157.0, "CHF": 0.90},
    "EUR": {"USD": 1.08, "JPY": 169.0, "CHF": 0.97},
}


class MissingCredentialError(RuntimeError):
    """No usable API key is configured for the rate provider."""


class RateProviderError(RuntimeError):
    """The provider answered with a structured error for a supplied API key."""

    def __init__(self, base_currency: str, error_type: str) -> None:
        self.base_currency = base_currency
        self.error_type = error_type
        super().__init__(f"Failed to fetch exchange rates for {base_currency}: {error_type}")


class RateProviderUnavailable(RuntimeError):
    """The provider could not be reached or returned an unreadable response."""


def has_credential(api_key: str | None) -> bool:
    return api_key is not None and api_key.strip().lower() not in PLACEHOLDER_API_KEYS


async def fetch_latest_rates(
    base_currency: str,
    api_key: str | None,
    *,
    url: str | None = None,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, float]:
    """Fetch the latest quote-per-base rates for every supported currency.

    Raises MissingCredentialError without touching the network when the key is
    absent or a placeholder, RateProviderError when the provider rejects the
    request with a structured error, and RateProviderUnavailable (or an
    httpx.HTTPError) when the provider cannot be used at all.
    """
    if not has_credential(api_key):
        raise MissingCredentialError("Exchange rate API key is missing")
    base = validate_currency(base_currency)
    endpoint = f"{(url or settings.exchange_rate_url).rstrip('/')}/{api_key.strip()}/latest/{base}"

    logger.info("Fetching live rates for base %s", base, extra={"base_currency": base})
    async with httpx.AsyncClient(
        timeout=timeout or settings.exchange_rate_timeout,
        transport=transport,
    ) as client:
        resp = await client.get(endpoint)

    try:
        data = resp.json()
    except ValueError as exc:
        raise RateProviderUnavailable(
            f"Unreadable rate response for {base} (HTTP {resp.status_code})"
        ) from exc

    if not isinstance(data, dict):
        raise RateProviderUnavailable(f"Unexpected rate response for {base}")
    if not resp.is_success or data.get("result") == "error":
        raise RateProviderError(base, data.get("error-type") or f"HTTP error {resp.status_code}")

    conversion_rates = data.get("conversion_rates")
    if not isinstance(conversion_rates, dict):
        raise RateProviderUnavailable(f"Rate response for {base} has no conversion_rates")

    rates = {code: float(conversion_rates.get(code) or 1) for code in SUPPORTED_CURRENCIES}
    rates[base] = 1.0
    logger.info("Fetched %d rates for base %s", len(rates), base, extra={"base_currency": base})
    return rates


def fallback_rates(base_currency: str) -> dict[str, float]:
    rates = dict.fromkeys(SUPPORTED_CURRENCIES, 1.0)
    rates.update(FALLBACK_RATES.get(base_currency, {}))
    rates[base_currency] = 1.0
    return rates


@dataclass(slots=True)
class RateCacheEntry:
    base_currency: str
    rates: dict[str, float]
    fetched_at: datetime
    is_fallback: bool = False


RatesFetcher = Callable[[str, str | None], Awaitable[dict[str, float]]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RateCache:
    """Rate tables keyed by base currency, each valid for ``ttl``.

    Fallback tables are cached like live ones so an unreachable provider is
    not retried on every conversion. Structured provider errors are never
    stored as rates; they are re-raised without a fetch for ``error_ttl``.
    """

    def __init__(
        self,
        fetcher: RatesFetcher = fetch_latest_rates,
        api_key: str | None = None,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
        error_ttl: timedelta | None = None,
    ) -> None:
        self._fetcher = fetcher
        self.api_key = api_key
        self.ttl = ttl if ttl is not None else timedelta(seconds=settings.exchange_rate_cache_seconds)
        self._clock = clock
        self.error_ttl = (
            error_ttl if error_ttl is not None else timedelta(seconds=settings.exchange_rate_error_cache_seconds)
        )
        self._entries: dict[str, RateCacheEntry] = {}
        self._errors: dict[str, tuple[RateProviderError, datetime]] = {}

    def get_entry(self, base_currency: str) -> RateCacheEntry | None:
        return self._entries.get(base_currency.upper())

    def is_fresh(self, entry: RateCacheEntry) -> bool:
        return self._clock() - entry.fetched_at < self.ttl

    def invalidate(self, base_currency: str | None = None) -> None:
        if base_currency is None:
            self._entries.clear()
            self._errors.clear()
        else:
            self._entries.pop(base_currency.upper(), None)
            self._errors.pop(base_currency.upper(), None)

    def set_api_key(self, api_key: str | None) -> None:
        self.api_key = api_key
        self.invalidate()

    async def get_rates(self, base_currency: str) -> dict[str, float]:
        base = validate_currency(base_currency)
        entry = self._entries.get(base)
        if entry is not None and self.is_fresh(entry):
            logger.debug("Rate cache hit for %s (fallback=%s)", base, entry.is_fallback)
            return dict(entry.rates)

        failure = self._errors.get(base)
        if failure is not None:
            error, failed_at = failure
            if self._clock() - failed_at < self.error_ttl:
                raise error
            del self._errors[base]

        is_fallback = False
        if not has_credential(self.api_key):
            logger.warning(
                "No exchange rate API key configured, using fallback rates for %s",
                base,
                extra={"base_currency": base},
            )
            rates, is_fallback = fallback_rates(base), True
        else:
            try:
                rates = await self._fetcher(base, self.api_key)
            except RateProviderError as exc:
                self._errors[base] = (exc, self._clock())
                raise
            except MissingCredentialError:
                logger.warning("Rate provider rejected missing credential, using fallback rates for %s", base)
                rates, is_fallback = fallback_rates(base), True
            except (httpx.HTTPError, RateProviderUnavailable):
                logger.warning(
                    "Exchange rate provider unavailable, using fallback rates for %s",
                    base,
                    exc_info=True,
                    extra={"base_currency": base},
                )
                rates, is_fallback = fallback_rates(base), True

        table = {code: float(rates.get(code, 1.0)) for code in SUPPORTED_CURRENCIES}
        table[base] = 1.0
        self._entries[base] = RateCacheEntry(base, table, self._clock(), is_fallback)
        return dict(table)


async def convert_to_all_currencies(amount: float, base_currency: str, cache: RateCache) -> dict[str, float]:
    """Express ``amount`` in every supported currency.

    RateProviderError propagates so write paths never persist unconverted data.
    """
    base = validate_currency(base_currency)
    rates = await cache.get_rates(base)
    return {code: amount if code == base else amount * rates[code] for code in SUPPORTED_CURRENCIES}


async def get_rate(from_currency: str, to_currency: str, cache: RateCache) -> float:
    target = validate_currency(to_currency)
    rates = await cache.get_rates(from_currency)
    return rates[target]
