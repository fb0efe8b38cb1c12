import re

# Order matters: one amount_<code> column per entry in the expenses/subscriptions tables.
SUPPORTED_CURRENCIES: tuple[str, ...] = ("USD", "EUR", "JPY", "CHF")

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "JPY": "¥",
    "CHF": "CHF",
}

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class InvalidCurrencyError(ValueError):
    def __init__(self, currency: str) -> None:
        self.currency = currency
        super().__init__(
            f"Unknown currency '{currency}'. "
            f"Supported: {', '.join(SUPPORTED_CURRENCIES)}."
        )


def validate_currency(currency: str) -> str:
    code = (currency or "").upper().strip()
    if not _CURRENCY_RE.match(code):
        raise InvalidCurrencyError(currency)
    if code not in SUPPORTED_CURRENCIES:
        raise InvalidCurrencyError(currency)
    return code


def is_supported(currency: str | None) -> bool:
    return bool(currency) and currency.upper().strip() in SUPPORTED_CURRENCIES


def currency_symbol(code: str) -> str:
    return CURRENCY_SYMBOLS.get(code, code)


def format_amount(amount: float, currency_code: str) -> str:
    sym = currency_symbol(currency_code)
    if currency_code == "JPY":
        return f"{sym}{amount:,.0f}"
    if sym in ("€", "$", "£"):
        return f"{sym}{amount:,.2f}"
    return f"{amount:,.2f} {sym}"
