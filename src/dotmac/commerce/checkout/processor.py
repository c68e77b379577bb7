"""
Checkout order processor.

Orchestrates an order submission end to end: build and validate the cart,
resolve the gateway, create the customer, membership, pending site and
payment inside one unit of work, then hand the order to the gateway.
Exceptions raised at this boundary are converted into cart errors; nothing
escapes ``handle_order_submission`` or ``process_checkout``.
"""

from __future__ import annotations

import traceback
from decimal import Decimal
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from dotmac.commerce.billing.exceptions import (
    EntityCreationError,
    GatewayError,
    GatewayNotFoundError,
    OrderSubmissionError,
)
from dotmac.commerce.checkout.builder import build_cart
from dotmac.commerce.checkout.cart import Cart
from dotmac.commerce.checkout.entity_factory import CheckoutEntityFactory
from dotmac.commerce.checkout.errors import CartError
from dotmac.commerce.checkout.gateways import FREE_GATEWAY_ID, BaseGateway, GatewayRegistry, Order
from dotmac.commerce.checkout.interfaces import CheckoutDependencies, SessionStore
from dotmac.commerce.checkout.models import (
    CartRequest,
    CheckoutSubmission,
    Customer,
    EmailVerification,
    Membership,
    MembershipStatus,
    Payment,
    Site,
)
from dotmac.commerce.checkout.periods import end_of_day
from dotmac.commerce.checkout.unit_of_work import UnitOfWork
from dotmac.commerce.checkout.validator import CheckoutValidator
from dotmac.commerce.logging import log_audit_event

logger = structlog.get_logger(__name__)

ORIGINAL_CART_META_KEY = "original_cart"


class OrderResult(BaseModel):
    """Outcome of an order submission."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    data: dict[str, Any] = Field(default_factory=dict)
    errors: list[CartError] = Field(default_factory=list)

    @classmethod
    def failure(cls, errors: list[CartError]) -> OrderResult:
        return cls(success=False, errors=errors)


class CheckoutResult(BaseModel):
    """Outcome of the second, gateway-facing checkout phase."""

    success: bool
    redirect_url: str | None = None
    errors: list[CartError] = Field(default_factory=list)


class CheckoutOrderProcessor:
    """Turns checkout submissions into persisted, gateway-ready orders."""

    def __init__(
        self,
        deps: CheckoutDependencies,
        gateways: GatewayRegistry,
        unit_of_work: UnitOfWork,
        session_store: SessionStore | None = None,
        validator: CheckoutValidator | None = None,
    ) -> None:
        self.deps = deps
        self.gateways = gateways
        self.unit_of_work = unit_of_work
        self.session_store = session_store
        self.validator = validator or CheckoutValidator()

        self.cart: Cart | None = None
        self.customer: Customer | None = None
        self.membership: Membership | None = None
        self.pending_site: Site | None = None
        self.payment: Payment | None = None

        # Payments created by this processor, keyed by cart identity.
        self._payments: dict[tuple[Any, ...], Payment] = {}

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    def _rollback(self) -> None:
        self.unit_of_work.rollback()
        self._payments.clear()
        logger.info("checkout.order.rolled_back")

    def _commit(self) -> None:
        self.unit_of_work.commit()
        self._payments.clear()

    def handle_order_submission(self, submission: CheckoutSubmission) -> OrderResult:
        """Process an order inside one transaction; commit only when it fully succeeds."""
        self.unit_of_work.begin()

        try:
            result = self.process_order(submission)
        except Exception as exc:
            cart_type = self.cart.cart_type.value if self.cart is not None else None
            logger.exception("checkout.order.exception", cart_type=cart_type, error=str(exc))
            self._rollback()

            wrapped = OrderSubmissionError(str(exc), cart_type=cart_type)
            error = CartError(
                code=wrapped.error_code,
                message=wrapped.message,
                data={**wrapped.context, "trace": "".join(traceback.format_exception(exc))},
            )
            return OrderResult.failure([error])

        if not result.success:
            self._rollback()
            logger.info("checkout.order.failed", codes=[error.code for error in result.errors])
            return result

        self._commit()

        if self.session_store is not None:
            self.session_store.clear()

        logger.info(
            "checkout.order.committed",
            payment_id=result.data.get("payment_id"),
            membership_id=result.data.get("membership_id"),
            cart_type=result.data.get("cart_type"),
        )
        if self.deps.config.audit_log_enabled and self.customer is not None:
            log_audit_event(
                "order_committed",
                "checkout",
                customer_id=self.customer.id,
                tenant_id=self.customer.tenant_id,
                resource_type="payment",
                resource_id=result.data.get("payment_id"),
            )
        return result

    # ------------------------------------------------------------------
    # Order processing
    # ------------------------------------------------------------------

    def process_order(self, submission: CheckoutSubmission) -> OrderResult:
        cart, errors = build_cart(submission.to_cart_request(), self.deps)
        self.cart = cart

        if errors or not cart.is_valid():
            return OrderResult.failure(cart.errors.to_list())

        try:
            gateway = self.gateways.resolve(cart.should_collect_payment(), submission.gateway)
        except GatewayNotFoundError as exc:
            logger.info("checkout.gateway.missing", requested=submission.gateway)
            return OrderResult.failure([CartError.from_exception(exc)])

        validation_errors = self.validator.validate(submission, cart)
        if validation_errors:
            return OrderResult.failure(validation_errors.to_list())

        factory = CheckoutEntityFactory(
            cart, self.deps, gateway_id=gateway.gateway_id, payment_memo=self._payments
        )

        try:
            self.customer = factory.maybe_create_customer(submission)
            cart.customer = self.customer
            self.membership = factory.maybe_create_membership(self.customer)
            self.pending_site = factory.maybe_create_site(
                submission, self.customer, self.membership
            )
            self.payment = factory.maybe_create_payment(self.customer, self.membership)
        except EntityCreationError as exc:
            logger.info("checkout.entity.failed", entity=exc.context.get("entity"), code=exc.error_code)
            return OrderResult.failure([CartError.from_exception(exc)])

        cart.membership = self.membership
        cart.payment = self.payment

        self.payment.meta[ORIGINAL_CART_META_KEY] = {
            "request": cart.request.model_dump(mode="json"),
            "summary": cart.done(),
        }
        self.payment = self.deps.payments.save(self.payment)

        gateway.set_order(
            Order(
                cart=cart,
                customer=self.customer,
                membership=self.membership,
                payment=self.payment,
                cart_type=cart.cart_type,
            )
        )

        try:
            self.membership = self._settle_without_payment(
                cart, gateway, self.customer, self.membership, self.payment
            )

            success_data: dict[str, Any] = {
                "total": cart.get_total(),
                "recurring_total": cart.get_recurring_total(),
                "membership_id": self.membership.id,
                "payment_id": self.payment.id,
                "cart_type": cart.cart_type.value,
                "auto_renew": cart.should_auto_renew(),
                "gateway": {"slug": gateway.gateway_id, "data": {}},
            }

            preflight = gateway.run_preflight()
            success_data["gateway"]["data"] = preflight if isinstance(preflight, dict) else {}
        except GatewayError as exc:
            logger.info("checkout.gateway.preflight_failed", gateway=gateway.gateway_id, code=exc.error_code)
            return OrderResult.failure([CartError.from_exception(exc)])
        except Exception as exc:
            logger.exception("checkout.order.gateway_exception", gateway=gateway.gateway_id)
            return OrderResult.failure([CartError.from_exception(exc, with_trace=True)])

        logger.info(
            "checkout.order.processed",
            cart_type=cart.cart_type.value,
            gateway=gateway.gateway_id,
            payment_id=self.payment.id,
        )
        return OrderResult(success=True, data=success_data)

    def _settle_without_payment(
        self,
        cart: Cart,
        gateway: BaseGateway,
        customer: Customer,
        membership: Membership,
        payment: Payment,
    ) -> Membership:
        """Activate free orders and start trials before the gateway takes over."""
        email_pending = customer.email_verification == EmailVerification.PENDING

        if cart.is_free() and cart.get_recurring_total() == Decimal("0") and not email_pending:
            if cart.plan_id == membership.plan_id:
                membership.status = MembershipStatus.ACTIVE
                membership = self.deps.memberships.save(membership)

            gateway.trigger_payment_processed(payment, membership)
            return membership

        if not cart.has_trial():
            return membership

        billing_start = cart.get_billing_start_date()
        if billing_start is not None:
            membership.date_trial_end = end_of_day(billing_start)
            membership.date_expiration = end_of_day(billing_start)

        if self.deps.config.checkout.allow_trial_without_payment_method and not email_pending:
            membership.status = MembershipStatus.TRIALING

        membership = self.deps.memberships.save(membership)
        gateway.trigger_payment_processed(payment, membership)
        return membership

    def create_order(self, submission: CheckoutSubmission) -> dict[str, Any]:
        """Price a submission without persisting anything."""
        cart, _ = build_cart(submission.to_cart_request(), self.deps, cancel_conflicting=False)
        return cart.done()

    # ------------------------------------------------------------------
    # Gateway checkout
    # ------------------------------------------------------------------

    def _original_cart(self, payment: Payment) -> Cart:
        """Rebuild the cart the payment was created for.

        Uses the request stored on the payment at order time; payments
        without one are recovered from their own line items.
        """
        snapshot = payment.meta.get(ORIGINAL_CART_META_KEY)
        if isinstance(snapshot, dict) and snapshot.get("request"):
            request = CartRequest.model_validate(snapshot["request"])
        else:
            request = CartRequest(
                tenant_id=payment.tenant_id,
                customer_id=payment.customer_id,
                membership_id=payment.membership_id,
                payment_id=payment.id,
            )

        cart, _ = build_cart(request, self.deps, cancel_conflicting=False)
        return cart

    def process_checkout(self, payment_id: int, gateway_id: str | None = None) -> CheckoutResult:
        """Dispatch a created order to its gateway and compute the redirect."""
        payment = self.deps.payments.get(payment_id)

        if payment is None:
            return CheckoutResult(
                success=False,
                errors=[CartError(code="no-payment", message=f"Payment ({payment_id}) not found.")],
            )

        membership: Membership | None = None

        try:
            customer = self.deps.customers.get(payment.customer_id)
            membership = (
                self.deps.memberships.get(payment.membership_id) if payment.membership_id else None
            )
            if customer is None or membership is None:
                raise LookupError(f"Payment ({payment.id}) has no customer or membership.")

            cart = self._original_cart(payment)
            cart.membership = membership
            cart.customer = customer
            cart.payment = payment

            if payment.is_completed():
                gateway = self.gateways.get(payment.gateway)
            elif not cart.should_collect_payment():
                gateway = self.gateways.get(FREE_GATEWAY_ID)
            elif gateway_id == FREE_GATEWAY_ID:
                gateway = None
            else:
                gateway = self.gateways.get(gateway_id)

            if gateway is None:
                return CheckoutResult(
                    success=False,
                    errors=[CartError(code="no-gateway", message="Payment gateway not registered.")],
                )

            cart_type = cart.cart_type
            gateway.set_order(
                Order(
                    cart=cart,
                    customer=customer,
                    membership=membership,
                    payment=payment,
                    cart_type=cart_type,
                )
            )

            status = gateway.process_checkout(payment, membership, customer, cart, cart_type)
            if status is False:
                return CheckoutResult(success=True)

            logger.info(
                "checkout.done",
                gateway=gateway.gateway_id,
                payment_id=payment.id,
                membership_id=membership.id,
                cart_type=cart_type.value,
            )
            redirect_url = gateway.get_return_url(
                payment, default_url=self.deps.config.checkout.checkout_url
            )
            return CheckoutResult(success=True, redirect_url=redirect_url)
        except Exception as exc:
            logger.error(
                "checkout.process_checkout.failed",
                membership_id=membership.id if membership else "unknown",
                payment_id=payment.id,
                error=str(exc),
            )
            return CheckoutResult(
                success=False,
                errors=[
                    CartError(
                        code="error",
                        message=str(exc),
                        data={
                            "trace": "".join(traceback.format_exception(exc)),
                            "payment_id": payment.id,
                        },
                    )
                ],
            )


__all__ = ["CheckoutOrderProcessor", "OrderResult", "CheckoutResult", "ORIGINAL_CART_META_KEY"]
