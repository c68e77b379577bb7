"""
Money-aware Pydantic models using py-moneyed for accurate currency handling.

Cart totals are computed as Decimals by the cart engine and exposed to
gateways and the UI through these models.
"""

from decimal import Decimal
from typing import Any

from moneyed import Money
from pydantic import BaseModel, ConfigDict, Field, computed_field

from .money_utils import create_money, format_money, money_handler


class MoneyField(BaseModel):
    """Pydantic-compatible Money field for serialization."""

    model_config = ConfigDict(
        frozen=True,
        validate_assignment=True,
    )

    amount: str = Field(description="Amount as string for precision")
    currency: str = Field(description="ISO 4217 currency code")
    minor_units: int = Field(description="Amount in minor units (cents, etc.)")

    @classmethod
    def from_money(cls, money: Money) -> "MoneyField":
        """Create MoneyField from Money object."""
        return cls(
            amount=str(money.amount),
            currency=money.currency.code,
            minor_units=money_handler.money_to_minor_units(money),
        )

    @classmethod
    def from_amount(cls, amount: Decimal, currency: str) -> "MoneyField":
        return cls.from_money(create_money(amount, currency))

    def to_money(self) -> Money:
        """Convert back to Money object."""
        return create_money(self.amount, self.currency)

    def format(self, locale: str = "en_US", **kwargs: Any) -> str:
        """Format money with locale."""
        return format_money(self.to_money(), locale, **kwargs)


class RecurringTotals(BaseModel):
    """Totals charged on every renewal."""

    model_config = ConfigDict(frozen=True)

    subtotal: Decimal = Field(description="Recurring subtotal")
    total: Decimal = Field(description="Recurring total")


class CartTotals(BaseModel):
    """Snapshot of every cart total, rounded to the currency precision."""

    model_config = ConfigDict(frozen=True)

    currency: str = Field(description="ISO 4217 currency code")
    subtotal: Decimal
    total: Decimal
    total_taxes: Decimal
    total_fees: Decimal
    total_discounts: Decimal
    recurring: RecurringTotals

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_money(self) -> MoneyField:
        return MoneyField.from_amount(self.total, self.currency)

    def formatted(self, locale: str = "en_US") -> dict[str, str]:
        """Locale-aware display strings for the UI."""
        return {
            "subtotal": format_money(create_money(self.subtotal, self.currency), locale),
            "total": format_money(create_money(self.total, self.currency), locale),
            "total_taxes": format_money(create_money(self.total_taxes, self.currency), locale),
            "total_fees": format_money(create_money(self.total_fees, self.currency), locale),
            "total_discounts": format_money(
                create_money(self.total_discounts, self.currency), locale
            ),
            "recurring_total": format_money(
                create_money(self.recurring.total, self.currency), locale
            ),
        }


__all__ = ["MoneyField", "CartTotals", "RecurringTotals"]
