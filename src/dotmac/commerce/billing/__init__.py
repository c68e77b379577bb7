"""
Billing primitives shared by the checkout engine.

Provides:
- Billing configuration (checkout switches, tax collection, currency)
- Money handling and half-up rounding
- Serializable cart totals
- The billing exception hierarchy
"""

from __future__ import annotations

from dotmac.commerce.billing.config import (
    BillingConfig,
    CheckoutConfig,
    CurrencyConfig,
    TaxConfig,
    get_billing_config,
    set_billing_config,
)
from dotmac.commerce.billing.exceptions import (
    BillingConfigurationError,
    BillingError,
    CheckoutError,
    EntityCreationError,
    GatewayError,
    GatewayNotFoundError,
    OrderSubmissionError,
    PaymentError,
)
from dotmac.commerce.billing.money_models import CartTotals, MoneyField, RecurringTotals
from dotmac.commerce.billing.money_utils import MoneyHandler, money_handler, round_amount

__all__ = [
    # Configuration
    "BillingConfig",
    "CheckoutConfig",
    "CurrencyConfig",
    "TaxConfig",
    "get_billing_config",
    "set_billing_config",
    # Exceptions
    "BillingError",
    "CheckoutError",
    "EntityCreationError",
    "OrderSubmissionError",
    "PaymentError",
    "GatewayError",
    "GatewayNotFoundError",
    "BillingConfigurationError",
    # Money
    "MoneyHandler",
    "money_handler",
    "round_amount",
    "MoneyField",
    "CartTotals",
    "RecurringTotals",
]
