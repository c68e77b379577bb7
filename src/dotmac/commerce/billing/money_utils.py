"""
Money and currency utilities using py-moneyed and Babel.

Provides currency handling with proper decimal precision,
locale-aware formatting, and currency validation.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from babel import Locale
from babel.core import UnknownLocaleError
from babel.numbers import format_currency, get_currency_precision
from moneyed import Currency, Money, get_currency
from moneyed.classes import CurrencyDoesNotExist

# Default locale for formatting
DEFAULT_LOCALE = "en_US"

ZERO = Decimal("0")


def to_decimal(value: int | float | Decimal | str | None) -> Decimal:
    """Coerce a numeric value to Decimal without binary float noise."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


class MoneyHandler:
    """Central handler for money operations with proper error handling."""

    def __init__(self, default_currency: str = "USD", default_locale: str = DEFAULT_LOCALE) -> None:
        self.default_currency = self.validate_currency(default_currency)
        self.default_locale = self._validate_locale(default_locale)

    def validate_currency(self, currency_code: str) -> Currency:
        """Validate and return Currency object."""
        try:
            return get_currency(currency_code.upper())
        except CurrencyDoesNotExist:
            raise ValueError(f"Invalid currency code: {currency_code}")

    def _validate_locale(self, locale_code: str) -> str:
        """Validate locale code."""
        try:
            Locale.parse(locale_code)
            return locale_code
        except UnknownLocaleError:
            return DEFAULT_LOCALE

    def create_money(
        self, amount: int | float | Decimal | str, currency: str | None = None
    ) -> Money:
        """Create Money object with proper validation."""
        currency = currency or self.default_currency.code
        validated_currency = self.validate_currency(currency)
        return Money(amount=to_decimal(amount), currency=validated_currency)

    def format_money(self, money: Money, locale: str | None = None, **kwargs: Any) -> str:
        """Format Money object with locale-aware formatting."""
        locale = locale or self.default_locale
        validated_locale = self._validate_locale(locale)

        try:
            return format_currency(
                number=money.amount, currency=money.currency.code, locale=validated_locale, **kwargs
            )
        except (TypeError, ValueError):
            # Fallback to simple formatting if locale issues
            return f"{money.currency.code} {money.amount}"

    def get_currency_precision(self, currency_code: str) -> int:
        """Get decimal precision for a currency."""
        return get_currency_precision(currency_code.upper())

    def round_amount(
        self,
        amount: int | float | Decimal | str,
        currency: str | None = None,
        places: int | None = None,
    ) -> Decimal:
        """
        Round an amount half-up to the currency precision.

        ``places`` overrides the precision Babel reports for the currency,
        which is how the configured ``currency_decimal_places`` is honoured.
        """
        if places is None:
            places = self.get_currency_precision(currency or self.default_currency.code)
        quantum = Decimal(1).scaleb(-places)
        return to_decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)

    def round_money(self, money: Money) -> Money:
        """Round Money to proper currency precision."""
        rounded_amount = self.round_amount(money.amount, money.currency.code)
        return Money(amount=rounded_amount, currency=money.currency)

    def money_to_minor_units(self, money: Money) -> int:
        """Convert Money to minor units (e.g., cents for USD)."""
        precision = self.get_currency_precision(money.currency.code)
        return int(self.round_money(money).amount * (10**precision))

    def to_dict(self, money: Money) -> dict[str, Any]:
        """Convert Money to dictionary for serialization."""
        return {
            "amount": str(money.amount),
            "currency": money.currency.code,
            "minor_units": self.money_to_minor_units(money),
        }


# Global instance for convenience
money_handler = MoneyHandler()


# Convenience functions
def create_money(amount: int | float | Decimal | str, currency: str = "USD") -> Money:
    """Create Money object with default handler."""
    return money_handler.create_money(amount, currency)


def format_money(money: Money, locale: str | None = None, **kwargs: Any) -> str:
    """Format Money with default handler."""
    return money_handler.format_money(money, locale, **kwargs)


def round_amount(
    amount: int | float | Decimal | str,
    currency: str | None = None,
    places: int | None = None,
) -> Decimal:
    """Round an amount with the default handler."""
    return money_handler.round_amount(amount, currency, places)


__all__ = [
    "MoneyHandler",
    "money_handler",
    "create_money",
    "format_money",
    "round_amount",
    "to_decimal",
    "ZERO",
]
