"""
Cart builder.

Classifies a checkout attempt and fills the cart accordingly. The decision
tree is evaluated in priority order and the first match wins:

1. payment recovery (a payment id was supplied),
2. membership change (a membership id was supplied): upgrade, downgrade or
   addon, including proration of the unused part of the current cycle,
3. fresh purchase.

Every step returns ``True`` when the build is finished (successfully or
with errors recorded on the cart) and ``False`` to fall through to the
next step.
"""

from __future__ import annotations

from decimal import Decimal

import structlog

from dotmac.commerce.checkout.cart import Cart
from dotmac.commerce.checkout.errors import CartError
from dotmac.commerce.checkout.interfaces import CheckoutDependencies
from dotmac.commerce.checkout.line_item import LineItem
from dotmac.commerce.checkout.models import (
    CartRequest,
    CartType,
    LineItemType,
    Membership,
    MembershipStatus,
    PaymentStatus,
    Product,
)
from dotmac.commerce.checkout.periods import days_in_cycle, describe_period
from dotmac.commerce.logging import log_audit_event

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
PENDING_PAYMENT_TOLERANCE = Decimal("0.01")

NO_CHANGES_MESSAGE = "This cart proposes no changes to the current membership."


def price_per_day(amount: Decimal, days: int) -> Decimal:
    return amount / days if days > 0 else amount


class CartBuilder:
    """Decides what kind of cart a request is and builds it."""

    def __init__(
        self, cart: Cart, deps: CheckoutDependencies, cancel_conflicting: bool = True
    ) -> None:
        self.cart = cart
        self.deps = deps
        self.request = cart.request
        self.cancel_conflicting = cancel_conflicting

    def build(self) -> bool:
        """Run the decision tree. Returns ``False`` when errors were recorded."""
        if self.build_from_payment(self.request.payment_id):
            return not self.cart.errors.has_errors()

        membership_id = self.request.membership_id
        if not membership_id and self.cart.membership is not None:
            membership_id = self.cart.membership.id

        if self.build_from_membership(membership_id):
            return not self.cart.errors.has_errors()

        self.cart.cart_type = CartType.NEW

        for product_id in self.request.products:
            self.cart.add_product(product_id)

        if self.cancel_conflicting:
            self.cancel_conflicting_pending_payments()

        return not self.cart.errors.has_errors()

    # ------------------------------------------------------------------
    # Payment recovery
    # ------------------------------------------------------------------

    def build_from_payment(self, payment_id: int | None) -> bool:
        """Rebuild the cart of a pending payment so it can be paid again."""
        if not payment_id:
            return False

        cart = self.cart
        payment = self.deps.payments.get(payment_id)

        if payment is None:
            cart.errors.add("payment_not_found", "The payment in question was not found.")
            return True

        cart.payment = payment

        customer = cart.customer
        if not cart.country:
            cart.country = customer.country if customer else ""

        cart.currency = payment.currency

        if customer is None or customer.id != payment.customer_id:
            cart.errors.add("lacks_permission", "You are not allowed to modify this payment.")
            return True

        membership = (
            self.deps.memberships.get(payment.membership_id) if payment.membership_id else None
        )
        if membership is None:
            cart.errors.add("membership_not_found", "The membership in question was not found.")
            return True

        if payment.discount_code:
            membership_code = membership.discount_code
            if membership_code and membership_code.code == payment.discount_code.upper():
                cart.add_discount_code(membership_code)
            else:
                cart.add_discount_code(payment.discount_code)

        cart.membership = membership
        cart.duration = membership.duration
        cart.duration_unit = membership.duration_unit

        for snapshot in payment.line_items:
            product = (
                self.deps.products.get_product(snapshot.product_id)
                if snapshot.product_id is not None
                else None
            )

            if product is not None:
                if product.recurring and not product.has_period(
                    membership.duration, membership.duration_unit
                ):
                    variation = product.get_as_variation(
                        membership.duration, membership.duration_unit
                    )
                    if variation is not None:
                        product = variation

                cart.add_to_products(product)

                if (
                    snapshot.type == LineItemType.PRODUCT
                    and product.is_plan()
                    and not cart.plan_id
                ):
                    cart.plan_id = product.id
                    cart.billing_cycles = product.billing_cycles
                    cart.duration = snapshot.duration
                    cart.duration_unit = snapshot.duration_unit

            cart.add_line_item(LineItem.from_payment_line_item(snapshot, product))

        if payment.status == PaymentStatus.COMPLETED:
            logger.info("cart.recovery.payment_completed", payment_id=payment.id)
            return False

        if payment.status.value not in self.deps.config.checkout.retry_allowed_statuses:
            cart.errors.add("invalid_status", "The payment in question has an invalid status.")
            return True

        if membership.is_active() or (membership.is_trialing() and not cart.has_trial()):
            logger.info(
                "cart.recovery.membership_live",
                payment_id=payment.id,
                membership_id=membership.id,
                status=membership.status.value,
            )
            return False

        cart.cart_type = CartType.RETRY
        logger.info("cart.classified", cart_type=cart.cart_type.value, payment_id=payment.id)
        return True

    # ------------------------------------------------------------------
    # Membership change
    # ------------------------------------------------------------------

    def build_from_membership(self, membership_id: int | None) -> bool:
        """Classify a change to an existing membership."""
        if not membership_id:
            return False

        cart = self.cart
        cart.cart_type = CartType.UPGRADE

        membership = self.deps.memberships.get(membership_id)
        if membership is None:
            cart.errors.add("membership_not_found", "The membership in question was not found.")
            return True

        cart.membership = membership

        customer = cart.customer
        if customer is None or customer.id != membership.customer_id:
            cart.errors.add("lacks_permission", "You are not allowed to modify this membership.")
            return True

        if not cart.country:
            cart.country = customer.country

        cart.currency = membership.currency

        if not self.request.products:
            if cart.payment is not None:
                return False

            cart.errors.add("no_changes", NO_CHANGES_MESSAGE)
            return True

        for product_id in self.request.products:
            cart.add_product(product_id)

        if not cart.plan_id:
            if not cart.products:
                cart.errors.add("no_changes", NO_CHANGES_MESSAGE)
                return True

            return self._build_addon(membership, readd_plan=True)

        duration = cart.duration
        duration_unit = cart.duration_unit

        is_plan_change = (
            membership.plan_id != cart.plan_id
            or membership.duration != duration
            or membership.duration_unit != duration_unit
        )

        if not is_plan_change and len(cart.products) > 1:
            return self._build_addon(membership, readd_plan=False)

        if not is_plan_change:
            cart.clear_products()
            cart.clear_line_items()
            cart.errors.add("no_changes", NO_CHANGES_MESSAGE)
            return True

        if not self.check_entitlements(membership):
            return True

        if not cart.has_recurring() and not cart.is_free():
            self.calculate_prorate_credits()
            logger.info(
                "cart.classified",
                cart_type=cart.cart_type.value,
                membership_id=membership.id,
                lifetime=True,
            )
            return True

        days_in_old_cycle = days_in_cycle(membership.duration_unit, membership.duration)
        days_in_new_cycle = days_in_cycle(duration_unit, duration)

        old_price_per_day = price_per_day(membership.amount, days_in_old_cycle)
        new_price_per_day = price_per_day(cart.get_recurring_total(), days_in_new_cycle)

        is_same_product = membership.plan_id == cart.plan_id

        if days_in_old_cycle != days_in_new_cycle:
            old_plan = self.deps.products.get_product(membership.plan_id)
            new_plan = cart.get_plan()

            if old_plan is not None and new_plan is not None:
                variations = self.search_for_same_period_plans(old_plan, new_plan)
                if variations:
                    old_variation, new_variation = variations
                    old_price_per_day = price_per_day(
                        old_variation.amount,
                        days_in_cycle(old_variation.duration_unit, old_variation.duration),
                    )
                    new_price_per_day = price_per_day(
                        new_variation.amount,
                        days_in_cycle(new_variation.duration_unit, new_variation.duration),
                    )

        if (
            not membership.is_free()
            and old_price_per_day < new_price_per_day
            and days_in_old_cycle > days_in_new_cycle
            and membership.status == MembershipStatus.ACTIVE
        ):
            cart.clear_products()
            cart.clear_line_items()
            period = describe_period(membership.duration, membership.duration_unit)
            cart.errors.add("no_changes", f"You already have an active {period} agreement.")
            logger.info(
                "cart.downgrade.rejected",
                membership_id=membership.id,
                old_price_per_day=str(old_price_per_day),
                new_price_per_day=str(new_price_per_day),
            )
            return True

        is_downgrade = (is_same_product and membership.amount > cart.get_recurring_total()) or (
            not is_same_product and old_price_per_day > new_price_per_day
        )

        if is_downgrade:
            cart.cart_type = CartType.DOWNGRADE

            if membership.is_active() or membership.is_trialing():
                cart.add_line_item(
                    LineItem(
                        type=LineItemType.CREDIT,
                        title="Scheduled Swap Credit",
                        description="Swap scheduled to next billing cycle.",
                        discountable=False,
                        taxable=False,
                        quantity=1,
                        unit_price=-cart.get_total(),
                    )
                )

        if cart.cart_type == CartType.UPGRADE:
            self.calculate_prorate_credits()

        logger.info(
            "cart.classified",
            cart_type=cart.cart_type.value,
            membership_id=membership.id,
            plan_id=cart.plan_id,
        )
        return True

    def _build_addon(self, membership: Membership, readd_plan: bool) -> bool:
        """Price add-ons against the current plan and credit the unused cycle."""
        cart = self.cart
        cart.cart_type = CartType.ADDON

        skip_plan_setup_fee = membership.times_billed > 0

        if readd_plan:
            if not membership.is_free():
                cart.duration = membership.duration
                cart.duration_unit = membership.duration_unit

            cart.add_product(membership.plan_id, skip_setup_fee=skip_plan_setup_fee)
        else:
            cart.clear_products()
            cart.clear_line_items()
            cart.duration = membership.duration
            cart.duration_unit = membership.duration_unit

            for product_id in self.request.products:
                product = cart.find_product(product_id)
                is_current_plan = product is not None and product.id == membership.plan_id
                cart.add_product(
                    product_id, skip_setup_fee=is_current_plan and skip_plan_setup_fee
                )

        self.calculate_prorate_credits()

        logger.info(
            "cart.classified",
            cart_type=cart.cart_type.value,
            membership_id=membership.id,
            skip_plan_setup_fee=skip_plan_setup_fee,
        )
        return True

    def check_entitlements(self, membership: Membership) -> bool:
        """Record one error per resource over the new plan's quotas. True when within limits."""
        cart = self.cart
        new_plan = cart.get_plan()
        if new_plan is None:
            return True

        limitations = new_plan.limitations
        found_overlimits = False

        for site in self.deps.memberships.get_sites(membership.id):
            post_overlimits = self.deps.entitlements.check_all_post_types(limitations, site)
            for post_type, overlimit in (post_overlimits or {}).items():
                found_overlimits = True
                cart.errors.add(
                    f"overlimits_{post_type}",
                    f"Your site currently has {overlimit.current} "
                    f"{overlimit.label_for(overlimit.current)} but the new plan is limited to "
                    f"{overlimit.limit} {overlimit.label_for(overlimit.limit)}. You must trash "
                    f"{overlimit.excess} {overlimit.label_for(overlimit.excess)} before you can "
                    "downgrade your plan.",
                    {"site_id": site.id},
                )

            domain_overlimit = self.deps.entitlements.check_all_domains(limitations, site)
            if domain_overlimit is None:
                continue

            found_overlimits = True
            if domain_overlimit.limit == 0:
                message = (
                    "This new plan does NOT support custom domains. You must remove all custom "
                    "domains before you can downgrade your plan."
                )
            else:
                message = (
                    f"Your site currently has {domain_overlimit.current} "
                    f"{domain_overlimit.label_for(domain_overlimit.current)} but the new plan is "
                    f"limited to {domain_overlimit.limit} "
                    f"{domain_overlimit.label_for(domain_overlimit.limit)}. You must remove "
                    f"{domain_overlimit.excess} {domain_overlimit.label_for(domain_overlimit.excess)} "
                    "before you can downgrade your plan."
                )
            cart.errors.add("overlimits", message, {"site_id": site.id})

        if found_overlimits:
            logger.info(
                "cart.entitlements.overlimit",
                membership_id=membership.id,
                plan_id=new_plan.id,
                codes=cart.errors.codes(),
            )
        return not found_overlimits

    def search_for_same_period_plans(
        self, plan_a: Product, plan_b: Product
    ) -> tuple[Product, Product] | None:
        """Find versions of both plans priced for the same billing period."""
        if plan_a.has_period(plan_b.duration, plan_b.duration_unit):
            return plan_a, plan_b

        plan_a_variation = plan_a.get_as_variation(plan_b.duration, plan_b.duration_unit)
        if plan_a_variation is not None:
            return plan_a_variation, plan_b

        plan_b_variation = plan_b.get_as_variation(plan_a.duration, plan_a.duration_unit)
        if plan_b_variation is not None:
            return plan_a, plan_b_variation

        duration = self.cart.duration
        duration_unit = self.cart.duration_unit

        if duration and duration_unit and not plan_b.has_period(duration, duration_unit):
            plan_a_variation = plan_a.get_as_variation(duration, duration_unit)
            if plan_a_variation is None:
                return None

            if plan_b.has_period(plan_a_variation.duration, plan_a_variation.duration_unit):
                return plan_a_variation, plan_b

            plan_b_variation = plan_b.get_as_variation(duration, duration_unit)
            if plan_b_variation is not None:
                return plan_a_variation, plan_b_variation

        return None

    # ------------------------------------------------------------------
    # Proration
    # ------------------------------------------------------------------

    def calculate_prorate_credits(self) -> Decimal:
        """Credit the unused part of the current membership. Returns the credit added."""
        cart = self.cart
        membership = cart.membership
        if membership is None or membership.is_trialing():
            return ZERO

        if membership.is_lifetime() or not membership.recurring:
            credit = membership.initial_amount
        else:
            now = cart.now()
            days_in_old_cycle = days_in_cycle(membership.duration_unit, membership.duration)
            old_price_per_day = price_per_day(membership.amount, days_in_old_cycle)

            today = now.date()
            started_today = (
                membership.date_created is not None and membership.date_created.date() == today
            ) or (membership.date_renewed is not None and membership.date_renewed.date() == today)

            if started_today:
                days_unused = days_in_old_cycle
            else:
                days_unused = membership.get_remaining_days_in_cycle(now)

            credit = min(days_unused * old_price_per_day, membership.amount)

        if not credit:
            return ZERO

        if cart.get_fees() or cart.cart_type == CartType.UPGRADE:
            credit += self._setup_fee_credit(membership)

        credit = cart._round(credit)
        if not credit:
            return ZERO

        cart.add_line_item(
            LineItem(
                type=LineItemType.CREDIT,
                title="Credit",
                description="Prorated amount based on the previous membership.",
                discountable=False,
                taxable=False,
                quantity=1,
                unit_price=-credit,
            )
        )

        logger.info(
            "cart.proration.credit",
            membership_id=membership.id,
            cart_type=cart.cart_type.value,
            credit=str(credit),
        )
        return credit

    def _setup_fee_credit(self, membership: Membership) -> Decimal:
        old_plan = self.deps.products.get_product(membership.plan_id)
        new_plan = self.cart.get_plan()
        if old_plan is None or new_plan is None:
            return ZERO

        fee_credit = min(old_plan.setup_fee, new_plan.setup_fee)
        if fee_credit <= 0:
            return ZERO

        fee_item = LineItem(
            type=LineItemType.FEE,
            product=old_plan,
            title="",
            description="--",
            taxable=old_plan.taxable,
            tax_category=old_plan.tax_category,
            recurring=False,
            unit_price=fee_credit,
            quantity=1,
        )
        fee_item = self.cart.apply_taxes_to_item(fee_item)
        return fee_item.recalculate_totals().total

    # ------------------------------------------------------------------
    # Fresh purchase
    # ------------------------------------------------------------------

    def cancel_conflicting_pending_payments(self) -> list[int]:
        """Cancel the customer's other pending payments whose totals differ from this cart."""
        cart = self.cart
        customer = cart.customer
        if cart.cart_type != CartType.NEW or customer is None:
            return []

        cart_total = cart.get_total()
        cancelled: list[int] = []

        for payment in self.deps.payments.list_pending_for_customer(customer.id):
            if cart.payment is not None and payment.id == cart.payment.id:
                continue

            if abs(payment.total - cart_total) <= PENDING_PAYMENT_TOLERANCE:
                continue

            payment.status = PaymentStatus.CANCELLED
            self.deps.payments.save(payment)
            cancelled.append(payment.id)

            logger.info(
                "cart.pending_payment.cancelled",
                payment_id=payment.id,
                customer_id=customer.id,
                payment_total=str(payment.total),
                cart_total=str(cart_total),
            )
            if self.deps.config.audit_log_enabled:
                log_audit_event(
                    "payment_cancelled",
                    "checkout",
                    customer_id=customer.id,
                    tenant_id=customer.tenant_id,
                    resource_type="payment",
                    resource_id=payment.id,
                    reason="conflicting_pending_payment",
                )

        return cancelled


def build_cart(
    request: CartRequest, deps: CheckoutDependencies, cancel_conflicting: bool = True
) -> tuple[Cart, list[CartError]]:
    """Build and price a cart from raw request inputs.

    Returns the cart together with the errors recorded while building it; an
    empty error list means the cart is fully priced and classified.
    With ``cancel_conflicting=False`` the build never writes, which previews
    and cart restores rely on.
    """
    cart = Cart(request, deps)

    CartBuilder(cart, deps, cancel_conflicting=cancel_conflicting).build()

    if not deps.config.checkout.force_auto_renew:
        cart.auto_renew = request.auto_renew

    totals = cart.calculate_totals()

    logger.debug(
        "cart.built",
        cart_type=cart.cart_type.value,
        total=str(totals.total),
        recurring_total=str(totals.recurring.total),
        errors=cart.errors.codes(),
    )
    return cart, cart.errors.to_list()


__all__ = ["CartBuilder", "build_cart", "price_per_day"]
