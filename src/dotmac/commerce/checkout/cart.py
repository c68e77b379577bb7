"""
Checkout cart.

The cart is the request-scoped aggregate of one checkout attempt: who is
buying, which membership or payment is involved, the billing period and
the priced line items. It is rebuilt from a ``CartRequest`` on every
request by ``build_cart`` and never persisted; payments keep a snapshot of
its line items instead.

Totals are summed from the line items and rounded half-up to the currency
precision only when read, so rounding error does not compound across many
items.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import structlog

from dotmac.commerce.billing.money_models import CartTotals, RecurringTotals
from dotmac.commerce.billing.money_utils import round_amount
from dotmac.commerce.checkout.errors import CartError, CartErrors
from dotmac.commerce.checkout.line_item import LineItem
from dotmac.commerce.checkout.models import (
    CartRequest,
    CartType,
    Customer,
    DiscountCode,
    DurationUnit,
    LineItemType,
    Membership,
    Payment,
    PaymentStatus,
    Product,
)
from dotmac.commerce.checkout.periods import add_period

if TYPE_CHECKING:
    from dotmac.commerce.checkout.interfaces import CheckoutDependencies

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


class Cart:
    """Priced contents of one checkout attempt."""

    def __init__(self, request: CartRequest, deps: CheckoutDependencies) -> None:
        self.request = request
        self.deps = deps
        self.config = deps.config
        self.errors = CartErrors()

        self.cart_type: CartType = request.cart_type
        self.country = request.country
        self.state = request.state
        self.city = request.city
        self.currency = request.currency
        self.duration: int | None = request.duration
        self.duration_unit: DurationUnit | None = request.duration_unit
        self.billing_cycles = 0
        self.plan_id: int | None = None

        self.products: list[Product] = []
        self.line_items: dict[str, LineItem] = {}

        self.customer: Customer | None = (
            deps.customers.get(request.customer_id) if request.customer_id else None
        )
        self.membership: Membership | None = None
        self.payment: Payment | None = None
        self.discount_code: DiscountCode | None = None

        self.auto_renew = True
        self.cart_descriptor: str | None = None
        self.extra: dict[str, Any] = dict(request.extra)

        self._set_discount_code(request.discount_code)

    @classmethod
    def build(cls, request: CartRequest, deps: CheckoutDependencies) -> tuple[Cart, list[CartError]]:
        """Alias of ``build_cart``."""
        from dotmac.commerce.checkout.builder import build_cart

        return build_cart(request, deps)

    def __repr__(self) -> str:
        return (
            f"Cart(type={self.cart_type.value!r}, plan_id={self.plan_id!r}, "
            f"line_items={len(self.line_items)}, errors={self.errors.codes()!r})"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _round(self, amount: Decimal) -> Decimal:
        return round_amount(
            amount,
            self.currency or self.config.currency.default_currency,
            places=self.config.currency.currency_decimal_places,
        )

    def now(self) -> datetime:
        return self.deps.clock()

    def is_tax_exempt(self) -> bool:
        return self.request.tax_exempt

    def get_param(self, key: str, default: Any = None) -> Any:
        return self.extra.get(key, default)

    def set_param(self, key: str, value: Any) -> None:
        self.extra[key] = value

    def get_extra_params(self) -> dict[str, Any]:
        return dict(self.extra)

    # ------------------------------------------------------------------
    # Discount codes
    # ------------------------------------------------------------------

    def _set_discount_code(self, code: str | None) -> bool:
        if not code:
            return False

        code = code.strip().upper()
        discount_code = self.deps.discount_codes.get_discount_code_by_code(code)

        if discount_code is None:
            self.errors.add(
                "discount_code", f"The code {code} do not exist or is no longer valid."
            )
            return False

        invalid = discount_code.is_valid(now=self.now())
        if invalid is not None:
            self.errors.add_error(invalid)
            return False

        self.discount_code = discount_code
        return True

    def add_discount_code(self, code: DiscountCode | str) -> bool:
        """Attach a discount code without validating it (used by recovery)."""
        if isinstance(code, DiscountCode):
            self.discount_code = code
            return True

        discount_code = self.deps.discount_codes.get_discount_code_by_code(code.strip().upper())
        if discount_code is None:
            return False

        self.discount_code = discount_code
        return True

    def get_discount_code(self) -> DiscountCode | None:
        return self.discount_code

    # ------------------------------------------------------------------
    # Products and line items
    # ------------------------------------------------------------------

    def find_product(self, product_id_or_slug: int | str) -> Product | None:
        if isinstance(product_id_or_slug, int) or str(product_id_or_slug).isdigit():
            return self.deps.products.get_product(int(product_id_or_slug))
        return self.deps.products.get_product_by_slug(str(product_id_or_slug))

    def add_to_products(self, product: Product) -> None:
        self.products.append(product)

    def clear_products(self) -> None:
        self.products = []
        self.plan_id = None

    def clear_line_items(self) -> None:
        self.line_items = {}

    def get_line_items(self) -> list[LineItem]:
        return list(self.line_items.values())

    def add_line_item(self, line_item: LineItem) -> None:
        """Price the item with the cart's discount and taxes, then store it first."""
        if line_item.is_discountable():
            line_item = self.apply_discounts_to_item(line_item)

        if line_item.is_taxable():
            line_item = self.apply_taxes_to_item(line_item)

        rest = {key: item for key, item in self.line_items.items() if key != line_item.id}
        self.line_items = {line_item.id: line_item, **rest}

    def add_product(
        self, product_id_or_slug: int | str, quantity: int = 1, skip_setup_fee: bool = False
    ) -> bool:
        """Add a product, its price variation for the cart period and its setup fee."""
        product = self.find_product(product_id_or_slug)

        if product is None:
            self.errors.add(
                "missing-product", "The product you are trying to add does not exist."
            )
            return False

        if (
            product.recurring
            and self.duration
            and not product.has_period(self.duration, self.duration_unit)
        ):
            variation = product.get_as_variation(self.duration, self.duration_unit)

            if variation is None:
                unit = DurationUnit(self.duration_unit).value if self.duration_unit else ""
                self.errors.add(
                    "missing-price-variations",
                    f"{product.name} does not have a valid price variation for that billing "
                    f"period (every {self.duration} {unit}(s)) and was not added to the cart.",
                )
                return False

            product = variation

        if product.is_plan():
            if self.plan_id:
                self.errors.add("plan-already-added", "Theres already a plan in this membership.")
                return False

            self.plan_id = product.id
            self.billing_cycles = product.billing_cycles

        if not self.duration:
            self.duration = product.duration
            self.duration_unit = product.duration_unit

        if not self.currency:
            self.currency = product.currency

        self.products.append(product)

        self.add_line_item(LineItem.from_product(product, quantity=quantity))

        if not product.setup_fee:
            return True

        if self.cart_type == CartType.RENEWAL or skip_setup_fee:
            logger.debug(
                "cart.setup_fee.skipped",
                product_id=product.id,
                cart_type=self.cart_type.value,
            )
            return True

        label = "Signup Fee for %s" if product.setup_fee > 0 else "Signup Credit for %s"

        self.add_line_item(
            LineItem(
                type=LineItemType.FEE,
                product=product,
                product_slug=product.slug,
                title=label % product.name,
                description="--",
                taxable=product.taxable,
                tax_category=product.tax_category,
                discountable=True,
                recurring=False,
                unit_price=product.setup_fee,
                quantity=quantity,
            )
        )
        return True

    def apply_discounts_to_item(self, line_item: LineItem) -> LineItem:
        if not line_item.is_discountable() or self.discount_code is None:
            return line_item

        if self.discount_code.is_valid(line_item.product_id, now=self.now()) is not None:
            return line_item

        code = self.discount_code
        if line_item.type == LineItemType.FEE:
            if code.setup_fee_value <= 0:
                return line_item

            line_item.attributes(
                discount_rate=code.setup_fee_value,
                discount_type=code.setup_fee_type,
                apply_discount_to_renewals=False,
                discount_label=code.code.upper(),
            )
        else:
            line_item.attributes(
                discount_rate=code.value,
                discount_type=code.type,
                apply_discount_to_renewals=code.apply_to_renewals,
                discount_label=code.code.upper(),
            )

        return line_item.recalculate_totals()

    def apply_taxes_to_item(self, line_item: LineItem) -> LineItem:
        if not self.config.tax.enable_tax_collection:
            return line_item

        if not line_item.is_taxable() or not line_item.tax_category:
            return line_item

        tax_rates = self.deps.tax_rates.applicable_tax_rates(
            self.country, line_item.tax_category, self.state, self.city
        )
        if not tax_rates:
            return line_item

        # The most specific rate is returned last.
        applicable = tax_rates[-1]

        line_item.attributes(
            tax_rate=applicable.tax_rate,
            tax_label=applicable.title,
            tax_inclusive=self.config.tax.inclusive_tax,
            tax_exempt=self.is_tax_exempt(),
        )
        return line_item.recalculate_totals()

    def get_line_items_by_type(
        self,
        line_item_type: LineItemType | str = LineItemType.PRODUCT,
        where: Callable[[LineItem], bool] | None = None,
    ) -> dict[str, LineItem]:
        return {
            key: item
            for key, item in self.line_items.items()
            if item.type == line_item_type and (where is None or where(item))
        }

    def get_fees(self) -> dict[str, LineItem]:
        return self.get_line_items_by_type(LineItemType.FEE)

    def get_discounts(self) -> dict[str, LineItem]:
        return self.get_line_items_by_type(LineItemType.DISCOUNT)

    def get_credits(self) -> dict[str, LineItem]:
        return self.get_line_items_by_type(LineItemType.CREDIT)

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    def get_plan(self) -> Product | None:
        if not self.plan_id:
            return None

        for product in self.products:
            if product.id == self.plan_id:
                return product
        return self.deps.products.get_product(self.plan_id)

    def has_plan(self) -> bool:
        return self.get_plan() is not None

    # ------------------------------------------------------------------
    # Validity and classification
    # ------------------------------------------------------------------

    def is_valid(self) -> bool:
        """False when errors were recorded or recurring items disagree on the interval."""
        if self.errors.has_errors():
            return False

        interval: tuple[Any, ...] | None = None

        for line_item in self.line_items.values():
            if not line_item.is_recurring():
                continue

            item_interval = (line_item.duration, line_item.duration_unit, line_item.billing_cycles)
            if interval is None:
                interval = item_interval
                continue

            if item_interval != interval:
                self.errors.add(
                    "wrong",
                    f"Interval {_format_interval(item_interval)} and "
                    f"{_format_interval(interval)} do not match.",
                )
                logger.info(
                    "cart.interval_mismatch",
                    first=_format_interval(interval),
                    second=_format_interval(item_interval),
                )
                return False

        return True

    def is_free(self) -> bool:
        return self.get_total() == 0

    def has_recurring(self) -> bool:
        return self.get_recurring_total() > 0

    def has_discount(self) -> bool:
        return self.get_total_discounts() > 0

    def should_collect_payment(self) -> bool:
        if self.is_free() and self.get_recurring_total() == 0:
            return False

        if self.has_trial():
            return not self.config.checkout.allow_trial_without_payment_method

        return True

    def has_trial(self) -> bool:
        """True when a product carries a trial the customer is still eligible for."""
        if not self.products:
            return False

        if self.get_billing_start_date() is None:
            return False

        if self.customer is None:
            return True

        if self.membership and self.payment and self.membership.is_trialing():
            return self.payment.total == 0

        return not self.customer.has_trialed

    def should_auto_renew(self) -> bool:
        return bool(self.auto_renew)

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    def get_subtotal(self) -> Decimal:
        excluded = (LineItemType.DISCOUNT, LineItemType.CREDIT)
        subtotal = sum(
            (item.subtotal for item in self.line_items.values() if item.type not in excluded),
            ZERO,
        )
        return self._round(max(subtotal, ZERO))

    def get_total(self) -> Decimal:
        total = sum((item.total for item in self.line_items.values()), ZERO)
        return self._round(max(total, ZERO))

    def get_recurring_total(self) -> Decimal:
        total = ZERO

        for item in self.line_items.values():
            if not item.is_recurring():
                continue

            if item.discount_total > 0 and not item.should_apply_discount_to_renewals():
                total += item.clone(discount_rate=ZERO).total
            else:
                total += item.total

        return self._round(max(total, ZERO))

    def get_recurring_subtotal(self) -> Decimal:
        subtotal = sum(
            (item.subtotal for item in self.line_items.values() if item.is_recurring()), ZERO
        )
        return self._round(max(subtotal, ZERO))

    def get_total_taxes(self) -> Decimal:
        taxes = sum((item.tax_total for item in self.line_items.values()), ZERO)
        return self._round(max(taxes, ZERO))

    def get_total_discounts(self) -> Decimal:
        discounts = sum((item.discount_total for item in self.line_items.values()), ZERO)
        return self._round(max(discounts, ZERO))

    def get_total_fees(self, total: Decimal | None = None, only_recurring: bool = False) -> Decimal:
        """Sum of fee items; negative fees never exceed ``total`` when it is given."""
        fees = ZERO
        for fee in self.get_fees().values():
            if only_recurring and not fee.is_recurring():
                continue
            fees += fee.total

        if total and fees + total < 0:
            fees = -total

        return self._round(fees)

    def get_tax_breakthrough(self) -> dict[Decimal, Decimal]:
        """Tax total per tax rate."""
        brackets: dict[Decimal, Decimal] = {}
        for item in self.line_items.values():
            brackets[item.tax_rate] = brackets.get(item.tax_rate, ZERO) + item.tax_total
        return {rate: self._round(amount) for rate, amount in brackets.items()}

    def calculate_totals(self) -> CartTotals:
        return CartTotals(
            currency=self.currency or self.config.currency.default_currency,
            subtotal=self.get_subtotal(),
            total=self.get_total(),
            total_taxes=self.get_total_taxes(),
            total_fees=self.get_total_fees(),
            total_discounts=self.get_total_discounts(),
            recurring=RecurringTotals(
                subtotal=self.get_recurring_subtotal(),
                total=self.get_recurring_total(),
            ),
        )

    # ------------------------------------------------------------------
    # Dates
    # ------------------------------------------------------------------

    def _membership_is_live(self) -> bool:
        return self.membership is not None and (
            self.membership.is_active() or self.membership.is_trialing()
        )

    def get_billing_start_date(self) -> datetime | None:
        """When the first charge happens: the end of the shortest trial, if every product has one."""
        if self.is_free() and not self.has_recurring():
            return None

        if self.cart_type == CartType.DOWNGRADE and self._membership_is_live():
            return self.membership.date_expiration  # type: ignore[union-attr]

        if not self.products:
            return None

        now = self.now()
        smallest: datetime | None = None

        for product in self.products:
            if not product.has_trial():
                return None

            trial_end = add_period(now, product.trial_duration, product.trial_duration_unit)
            if smallest is None or trial_end < smallest:
                smallest = trial_end

        return smallest

    def get_billing_next_charge_date(self) -> datetime | None:
        if self.cart_type == CartType.DOWNGRADE and self._membership_is_live():
            return self.membership.date_expiration  # type: ignore[union-attr]

        now = self.now()
        has_trial = self.has_trial()
        smallest: datetime | None = None

        for product in self.products:
            if not product.recurring or (product.has_trial() and has_trial):
                continue

            next_charge = add_period(now, product.duration, product.duration_unit)
            if smallest is None or next_charge < smallest:
                smallest = next_charge

        return smallest

    # ------------------------------------------------------------------
    # Descriptors and serialization
    # ------------------------------------------------------------------

    def get_cart_descriptor(self) -> str:
        """Statement descriptor built from the company name and product titles."""
        if self.cart_descriptor:
            return self.cart_descriptor

        titles = [item.title for item in self.line_items.values() if item.product_id is not None]
        return f"{self.config.checkout.company_name} - {', '.join(titles)}".strip()

    def set_cart_descriptor(self, descriptor: str) -> None:
        self.cart_descriptor = descriptor

    def get_cart_url(self) -> str:
        """Checkout URL that reproduces this cart."""
        base_url = ""

        plan = self.get_plan()
        if plan is not None:
            base_url += plan.slug

        if self.duration and int(self.duration) != 1:
            base_url += f"/{self.duration}"

        if self.duration_unit and self.duration_unit != DurationUnit.MONTH:
            base_url += f"/{DurationUnit(self.duration_unit).value}"

        addons = [product.slug for product in self.products if product.id != self.plan_id]
        if not addons:
            return base_url

        return f"{base_url}?{urlencode({'products[]': addons}, doseq=True)}"

    def to_membership_data(self) -> dict[str, Any]:
        plan = self.get_plan()
        addon_products = {
            item.product_id: item.quantity
            for item in self.get_line_items_by_type(
                LineItemType.PRODUCT, lambda item: item.product_id != self.plan_id
            ).values()
            if item.product_id is not None
        }

        return {
            "recurring": self.has_recurring(),
            "plan_id": plan.id if plan else None,
            "initial_amount": self.get_total(),
            "addon_products": addon_products,
            "currency": self.currency,
            "duration": self.duration,
            "duration_unit": self.duration_unit,
            "amount": self.get_recurring_total(),
            "times_billed": 0,
            "billing_cycles": plan.billing_cycles if plan else 0,
            "auto_renew": self.should_auto_renew(),
        }

    def to_payment_data(self) -> dict[str, Any]:
        return {
            "status": PaymentStatus.PENDING,
            "currency": self.currency,
            "tax_total": self.get_total_taxes(),
            "fees": self.get_total_fees(),
            "discounts": self.get_total_discounts(),
            "line_items": [item.to_payment_line_item() for item in self.line_items.values()],
            "discount_code": self.discount_code.code if self.discount_code else "",
            "subtotal": self.get_subtotal(),
            "total": self.get_total(),
        }

    def done(self) -> dict[str, Any]:
        """Everything the checkout UI and gateways need, as plain data."""
        billing_start = self.get_billing_start_date()
        next_charge = self.get_billing_next_charge_date()

        return {
            "errors": self.errors.to_dicts(),
            "url": self.get_cart_url(),
            "type": self.cart_type.value,
            "valid": self.is_valid(),
            "is_free": self.is_free(),
            "should_collect_payment": self.should_collect_payment(),
            "has_plan": self.has_plan(),
            "has_recurring": self.has_recurring(),
            "has_discount": self.has_discount(),
            "has_trial": self.has_trial(),
            "line_items": [item.to_dict() for item in self.line_items.values()],
            "discount_code": self.discount_code.code if self.discount_code else None,
            "totals": self.calculate_totals().model_dump(mode="json"),
            "extra": self.get_extra_params(),
            "dates": {
                "date_trial_end": billing_start.isoformat() if billing_start else None,
                "date_next_charge": next_charge.isoformat() if next_charge else None,
            },
        }

    def to_dict(self) -> dict[str, Any]:
        return self.done()

    def identity(self) -> tuple[Any, ...]:
        """Key identifying what this cart charges for, used to avoid duplicate payments."""
        return (
            self.cart_type.value,
            self.customer.id if self.customer else None,
            self.membership.id if self.membership else None,
            self.payment.id if self.payment else None,
            tuple(
                sorted(
                    (item.type.value, item.product_id or 0, str(item.unit_price), item.quantity)
                    for item in self.line_items.values()
                )
            ),
        )


def _format_interval(interval: tuple[Any, ...]) -> str:
    duration, unit, cycles = interval
    unit_value = unit.value if isinstance(unit, DurationUnit) else unit
    return f"{duration}-{unit_value}-{cycles}"


__all__ = ["Cart"]
