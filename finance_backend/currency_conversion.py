from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from enum import Enum

REFERENCE_RATE = Decimal("1")
MIN_RATE = Decimal("0.01")
MAX_RATE = Decimal("1000")

CURRENCY_SYMBOLS = {
    "BRL": "R$",
    "USD": "$",
    "EUR": "€",
}


class Currency(str, Enum):
    BRL = "BRL"
    USD = "USD"
    EUR = "EUR"

    @classmethod
    def parse(cls, value: object) -> "Currency":
        """Return the matching currency, falling back to BRL for anything unknown."""
        if isinstance(value, Currency):
            return value
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.BRL

    @property
    def symbol(self) -> str:
        return CURRENCY_SYMBOLS[self.value]


REFERENCE_CURRENCY = Currency.BRL


@dataclass(frozen=True)
class CurrencyTable:
    """Units of BRL per 1 unit of each foreign currency.

    BRL is pinned at 1; only USD and EUR carry a mutable rate.
    """

    usd: Decimal = Decimal("5.85")
    eur: Decimal = Decimal("6.15")

    def rate(self, currency: Currency) -> Decimal:
        if currency is Currency.USD:
            return self.usd
        if currency is Currency.EUR:
            return self.eur
        return REFERENCE_RATE

    def with_rate(self, currency: Currency, rate: Decimal | int | float | str) -> "CurrencyTable":
        if currency is Currency.BRL:
            return self
        clamped = clamp_rate(rate)
        if currency is Currency.USD:
            return replace(self, usd=clamped)
        return replace(self, eur=clamped)

    def as_dict(self) -> dict[str, Decimal]:
        return {
            Currency.BRL.value: REFERENCE_RATE,
            Currency.USD.value: self.usd,
            Currency.EUR.value: self.eur,
        }

    @classmethod
    def from_mapping(cls, raw: object) -> "CurrencyTable":
        default = cls()
        if not isinstance(raw, dict):
            return default
        return cls(
            usd=clamp_rate(raw.get("USD"), fallback=default.usd),
            eur=clamp_rate(raw.get("EUR"), fallback=default.eur),
        )


def lock_exchange_rate(
    currency: Currency,
    table: CurrencyTable,
    supplied: Decimal | int | float | str | None = None,
) -> Decimal:
    """Rate captured on a new transaction: 1 for BRL, else supplied or table rate."""
    if currency is Currency.BRL:
        return REFERENCE_RATE
    if supplied is not None:
        return clamp_rate(supplied, fallback=table.rate(currency))
    return table.rate(currency)


def convert_currency(
    amount: Decimal | int | float | str,
    source: Currency,
    target: Currency,
    table: CurrencyTable,
) -> Decimal:
    """Convert between supported currencies through BRL using table rates."""
    coerced_amount = _coerce_amount(amount)
    if source is target:
        return coerced_amount

    amount_in_brl = coerced_amount if source is Currency.BRL else coerced_amount * table.rate(source)
    if target is Currency.BRL:
        return amount_in_brl
    return amount_in_brl / table.rate(target)


def clamp_rate(value: object, fallback: Decimal = REFERENCE_RATE) -> Decimal:
    try:
        rate = _coerce_amount(value)
    except (InvalidOperation, TypeError, ValueError):
        return fallback
    if not rate.is_finite():
        return fallback
    rate = abs(rate)
    if rate < MIN_RATE:
        return MIN_RATE
    if rate > MAX_RATE:
        return MAX_RATE
    return rate


def _coerce_amount(amount: object) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    if amount is None or isinstance(amount, bool):
        raise TypeError("Amount must be numeric.")
    return Decimal(str(amount))
