"""
Order entity creation.

Turns a priced cart and a checkout submission into durable records: the
customer, the membership, an optional pending site and the payment. Runs
inside the order processor's unit of work; any failure raises
``EntityCreationError`` so the whole order is rolled back.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from dotmac.commerce.billing.exceptions import EntityCreationError
from dotmac.commerce.checkout.cart import Cart
from dotmac.commerce.checkout.interfaces import CheckoutDependencies
from dotmac.commerce.checkout.models import (
    CartType,
    CheckoutSubmission,
    Customer,
    EmailVerification,
    Membership,
    Payment,
    PaymentStatus,
    Site,
)
from dotmac.commerce.checkout.periods import end_of_day

logger = structlog.get_logger(__name__)

CANCEL_PREVIOUS_PAYMENT_TYPES = (CartType.UPGRADE, CartType.DOWNGRADE, CartType.ADDON)


class CheckoutEntityFactory:
    """Creates or reuses the records an order needs."""

    def __init__(
        self,
        cart: Cart,
        deps: CheckoutDependencies,
        gateway_id: str = "",
        payment_memo: dict[tuple[Any, ...], Payment] | None = None,
    ) -> None:
        self.cart = cart
        self.deps = deps
        self.gateway_id = gateway_id
        self.payment_memo = payment_memo if payment_memo is not None else {}

    @property
    def cart_type(self) -> CartType:
        return self.cart.cart_type

    def get_customer_email_verification_status(self) -> EmailVerification:
        policy = self.deps.config.checkout.enable_email_verification

        if policy == "never":
            return EmailVerification.NONE

        if policy == "always":
            return EmailVerification.PENDING

        if not self.cart.should_collect_payment():
            return EmailVerification.PENDING
        return EmailVerification.NONE

    def _billing_expiration(self) -> datetime | None:
        billing_start = self.cart.get_billing_start_date()
        return end_of_day(billing_start) if billing_start else None

    def maybe_create_customer(self, submission: CheckoutSubmission) -> Customer:
        customer = self.cart.customer
        if customer is not None:
            return customer

        email = submission.email_address or ""

        if email and self.deps.customers.get_by_email(email) is not None:
            raise EntityCreationError(
                "The email address you entered is already in use.",
                entity="customer",
                code="email_exists",
            )

        customer = self.deps.customers.create(
            {
                "tenant_id": submission.tenant_id,
                "email": email,
                "username": submission.username or "",
                "password": submission.password,
                "country": submission.billing_country,
                "state": submission.billing_state,
                "city": submission.billing_city,
                "email_verification": self.get_customer_email_verification_status(),
            }
        )

        if customer is None:
            raise EntityCreationError("The customer could not be created.", entity="customer")

        logger.info("checkout.customer.created", customer_id=customer.id)
        return customer

    def maybe_create_membership(self, customer: Customer) -> Membership:
        if self.cart.membership is not None:
            return self.cart.membership

        data = self.cart.to_membership_data()
        data.update(
            {
                "tenant_id": customer.tenant_id,
                "customer_id": customer.id,
                "user_id": customer.user_id,
                "gateway": self.gateway_id,
                "date_expiration": self._billing_expiration(),
            }
        )

        membership = self.deps.memberships.create(data)
        if membership is None:
            raise EntityCreationError("The membership could not be created.", entity="membership")

        discount_code = self.cart.get_discount_code()
        if discount_code is not None:
            membership.discount_code = discount_code
            membership = self.deps.memberships.save(membership)

        logger.info(
            "checkout.membership.created",
            membership_id=membership.id,
            customer_id=customer.id,
            plan_id=membership.plan_id,
        )
        return membership

    def maybe_create_site(
        self, submission: CheckoutSubmission, customer: Customer, membership: Membership
    ) -> Site | None:
        sites = self.deps.memberships.get_sites(membership.id)
        if sites:
            return sites[0]

        site_url = submission.site_url
        site_title = submission.site_title

        if not site_url and not site_title:
            return None

        if not site_url:
            raise EntityCreationError("A site URL is required to create a site.", entity="site")

        site_domain = submission.extra.get("site_domain")
        domain = f"{site_url}.{site_domain}" if site_domain else site_url

        site = self.deps.sites.create_pending(
            {
                "domain": domain,
                "path": "/",
                "title": site_title or site_url,
                "template_id": submission.template_id,
                "customer_id": customer.id,
                "membership_id": membership.id,
            }
        )

        if site is None:
            raise EntityCreationError("The site could not be created.", entity="site")

        logger.info("checkout.site.pending", membership_id=membership.id, domain=domain)
        return site

    def maybe_create_payment(self, customer: Customer, membership: Membership) -> Payment:
        payment = self.cart.payment
        if payment is not None:
            if payment.gateway != self.gateway_id:
                payment.gateway = self.gateway_id
                payment = self.deps.payments.save(payment)
            return payment

        identity = self.cart.identity()
        memoised = self.payment_memo.get(identity)
        if memoised is not None:
            logger.debug("checkout.payment.reused", payment_id=memoised.id)
            return memoised

        previous_payment = self.deps.memberships.get_last_pending_payment(membership.id)
        if previous_payment is not None and self.cart_type in CANCEL_PREVIOUS_PAYMENT_TYPES:
            previous_payment.status = PaymentStatus.CANCELLED
            self.deps.payments.save(previous_payment)
            logger.info(
                "checkout.payment.previous_cancelled",
                payment_id=previous_payment.id,
                membership_id=membership.id,
            )

        data = self.cart.to_payment_data()
        data.update(
            {
                "tenant_id": customer.tenant_id,
                "customer_id": customer.id,
                "membership_id": membership.id,
                "gateway": self.gateway_id,
            }
        )

        if not self.cart.should_collect_payment() and self.cart_type == CartType.DOWNGRADE:
            data["status"] = PaymentStatus.COMPLETED

        payment = self.deps.payments.create(data)
        if payment is None:
            raise EntityCreationError("The payment could not be created.", entity="payment")

        if self.cart.has_trial():
            payment.tax_total = payment.subtotal = payment.total = self.cart._round(0)
            payment = self.deps.payments.save(payment)

        self.payment_memo[identity] = payment

        logger.info(
            "checkout.payment.created",
            payment_id=payment.id,
            membership_id=membership.id,
            status=payment.status.value,
            total=str(payment.total),
        )
        return payment


__all__ = ["CheckoutEntityFactory", "CANCEL_PREVIOUS_PAYMENT_TYPES"]
