"""
Payment gateways.

Gateways are the pluggable last step of an order: they receive the order
(cart, customer, membership, payment), run a preflight while the order
transaction is still open and later process the checkout once the customer
confirms. The built-in ``FreeGateway`` settles carts that collect no money.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import structlog

from dotmac.commerce.billing.exceptions import GatewayNotFoundError
from dotmac.commerce.checkout.cart import Cart
from dotmac.commerce.checkout.interfaces import MembershipRepository, PaymentRepository
from dotmac.commerce.checkout.models import (
    CartType,
    Customer,
    Membership,
    MembershipStatus,
    Payment,
    PaymentStatus,
)
from dotmac.commerce.logging import log_audit_event

logger = structlog.get_logger(__name__)

FREE_GATEWAY_ID = "free"


@dataclass
class Order:
    """Entities of an order handed to a gateway."""

    cart: Cart
    customer: Customer
    membership: Membership
    payment: Payment
    cart_type: CartType


class BaseGateway(ABC):
    """Abstract base class for payment gateways."""

    gateway_id: str = ""

    def __init__(self, return_url: str = "") -> None:
        self.order: Order | None = None
        self.return_url = return_url

    def set_order(self, order: Order) -> None:
        self.order = order

    @abstractmethod
    def run_preflight(self) -> dict[str, Any]:
        """Prepare the remote side of the order. Raise ``GatewayError`` to abort."""

    @abstractmethod
    def process_checkout(
        self,
        payment: Payment,
        membership: Membership,
        customer: Customer,
        cart: Cart,
        cart_type: CartType,
    ) -> bool:
        """Settle the order. Returning ``False`` skips the redirect."""

    def trigger_payment_processed(self, payment: Payment, membership: Membership) -> None:
        logger.info(
            "gateway.payment_processed",
            gateway=self.gateway_id,
            payment_id=payment.id,
            membership_id=membership.id,
            status=payment.status.value,
        )
        log_audit_event(
            "payment_processed",
            "checkout",
            customer_id=payment.customer_id,
            tenant_id=payment.tenant_id,
            resource_type="payment",
            resource_id=payment.id,
            gateway=self.gateway_id,
            membership_id=membership.id,
        )

    def get_return_url(self, payment: Payment | None = None, default_url: str = "") -> str:
        """Where the customer lands after checkout."""
        base_url = self.return_url or default_url
        if payment is None:
            return base_url

        query = urlencode({"payment": payment.id, "status": "done"})
        separator = "&" if "?" in base_url else "?"
        return f"{base_url}{separator}{query}"


class FreeGateway(BaseGateway):
    """Completes orders that do not collect a payment."""

    gateway_id = FREE_GATEWAY_ID

    def __init__(
        self,
        memberships: MembershipRepository,
        payments: PaymentRepository,
        return_url: str = "",
    ) -> None:
        super().__init__(return_url=return_url)
        self.memberships = memberships
        self.payments = payments

    def run_preflight(self) -> dict[str, Any]:
        return {}

    def process_checkout(
        self,
        payment: Payment,
        membership: Membership,
        customer: Customer,
        cart: Cart,
        cart_type: CartType,
    ) -> bool:
        if cart_type == CartType.DOWNGRADE:
            # The swap happens when the current cycle ends.
            membership.scheduled_swap = cart.to_membership_data()
            self.memberships.save(membership)
            logger.info(
                "gateway.free.swap_scheduled",
                membership_id=membership.id,
                plan_id=cart.plan_id,
            )
            return True

        payment.status = PaymentStatus.COMPLETED
        self.payments.save(payment)

        membership.status = MembershipStatus.ACTIVE
        membership.gateway = self.gateway_id
        self.memberships.save(membership)

        self.trigger_payment_processed(payment, membership)
        return True


class GatewayRegistry:
    """Registered gateways keyed by id."""

    def __init__(self, gateways: list[BaseGateway] | None = None) -> None:
        self._gateways: dict[str, BaseGateway] = {}
        for gateway in gateways or []:
            self.register(gateway)

    def register(self, gateway: BaseGateway) -> None:
        if not gateway.gateway_id:
            raise ValueError("Gateways must declare a gateway_id")
        self._gateways[gateway.gateway_id] = gateway

    def get(self, gateway_id: str | None) -> BaseGateway | None:
        if not gateway_id:
            return None
        return self._gateways.get(gateway_id)

    def require(self, gateway_id: str | None) -> BaseGateway:
        gateway = self.get(gateway_id)
        if gateway is None:
            raise GatewayNotFoundError("Payment gateway not registered.", gateway_id=gateway_id)
        return gateway

    def resolve(self, should_collect_payment: bool, requested: str | None) -> BaseGateway:
        """Free gateway when nothing is collected, otherwise the requested paid gateway."""
        if not should_collect_payment:
            return self.require(FREE_GATEWAY_ID)

        if requested == FREE_GATEWAY_ID:
            raise GatewayNotFoundError("Payment gateway not registered.", gateway_id=requested)

        return self.require(requested)

    def __contains__(self, gateway_id: object) -> bool:
        return gateway_id in self._gateways

    def ids(self) -> list[str]:
        return list(self._gateways)


__all__ = [
    "FREE_GATEWAY_ID",
    "Order",
    "BaseGateway",
    "FreeGateway",
    "GatewayRegistry",
]
