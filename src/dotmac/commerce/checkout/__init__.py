"""
Checkout cart engine.

Provides:
- Line items and the request-scoped cart
- Cart classification and proration (``build_cart``)
- Order processing inside a unit of work
- Gateway interfaces and the built-in free gateway
"""

from __future__ import annotations

from dotmac.commerce.checkout.builder import CartBuilder, build_cart
from dotmac.commerce.checkout.cart import Cart
from dotmac.commerce.checkout.entitlements import QuotaEntitlementChecker
from dotmac.commerce.checkout.entity_factory import CheckoutEntityFactory
from dotmac.commerce.checkout.errors import CartError, CartErrors
from dotmac.commerce.checkout.gateways import BaseGateway, FreeGateway, GatewayRegistry, Order
from dotmac.commerce.checkout.interfaces import CheckoutDependencies
from dotmac.commerce.checkout.line_item import LineItem
from dotmac.commerce.checkout.models import (
    CartRequest,
    CartType,
    CheckoutSubmission,
    DurationUnit,
    LineItemType,
    ProductKind,
)
from dotmac.commerce.checkout.processor import (
    CheckoutOrderProcessor,
    CheckoutResult,
    OrderResult,
)
from dotmac.commerce.checkout.unit_of_work import SQLAlchemyUnitOfWork, UnitOfWork
from dotmac.commerce.checkout.validator import CheckoutValidator

__all__ = [
    # Cart
    "Cart",
    "CartBuilder",
    "build_cart",
    "LineItem",
    "CartError",
    "CartErrors",
    # Inputs
    "CartRequest",
    "CheckoutSubmission",
    "CartType",
    "DurationUnit",
    "LineItemType",
    "ProductKind",
    # Orders
    "CheckoutDependencies",
    "CheckoutOrderProcessor",
    "CheckoutEntityFactory",
    "CheckoutValidator",
    "OrderResult",
    "CheckoutResult",
    "UnitOfWork",
    "SQLAlchemyUnitOfWork",
    # Gateways
    "BaseGateway",
    "FreeGateway",
    "GatewayRegistry",
    "Order",
    # Entitlements
    "QuotaEntitlementChecker",
]
