"""
Checkout domain models.

Enumerations plus the external entities the cart engine reads: products,
customers, memberships, payments, discount codes, sites and tax rates.
Repositories own these records; the engine only reads pricing-relevant
fields and hands mutated copies back through the repository interfaces.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dotmac.commerce.checkout.errors import CartError
from dotmac.commerce.checkout.periods import days_in_cycle

# ============================================================
# Enumerations
# ============================================================


class CartType(str, Enum):
    """Cart classification."""

    NEW = "new"
    RETRY = "retry"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    ADDON = "addon"
    RENEWAL = "renewal"


class LineItemType(str, Enum):
    """Line item kinds."""

    PRODUCT = "product"
    FEE = "fee"
    DISCOUNT = "discount"
    CREDIT = "credit"


class ProductKind(str, Enum):
    """Closed set of product kinds."""

    PLAN = "plan"
    ADDON = "addon"


class DurationUnit(str, Enum):
    """Billing period units."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class DiscountType(str, Enum):
    """How a discount or tax rate is applied."""

    PERCENTAGE = "percentage"
    ABSOLUTE = "absolute"


class MembershipStatus(str, Enum):
    """Membership lifecycle states."""

    PENDING = "pending"
    ACTIVE = "active"
    TRIALING = "trialing"
    ON_HOLD = "on-hold"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment lifecycle states."""

    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially-refunded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EmailVerification(str, Enum):
    """Customer email verification status."""

    NONE = "none"
    PENDING = "pending"
    VERIFIED = "verified"


# ============================================================
# Base model
# ============================================================


class CheckoutModel(BaseModel):
    """Base model for checkout entities."""

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)


# ============================================================
# Products
# ============================================================


class PriceVariation(CheckoutModel):
    """Alternate price of a product for another billing period."""

    duration: int = Field(ge=1)
    duration_unit: DurationUnit
    amount: Decimal


class PlanLimitations(CheckoutModel):
    """Quotas a plan grants. ``None`` and missing keys mean unlimited."""

    post_types: dict[str, int] = Field(default_factory=dict)
    custom_domains: int | None = None


class Product(CheckoutModel):
    """Catalog product, either a plan or an add-on."""

    id: int
    slug: str
    name: str
    kind: ProductKind = ProductKind.PLAN
    amount: Decimal = Decimal("0")
    setup_fee: Decimal = Decimal("0")
    currency: str = "USD"
    recurring: bool = True
    duration: int = 1
    duration_unit: DurationUnit = DurationUnit.MONTH
    billing_cycles: int = 0
    trial_duration: int = 0
    trial_duration_unit: DurationUnit = DurationUnit.DAY
    taxable: bool = False
    tax_category: str = ""
    price_variations: list[PriceVariation] = Field(default_factory=list)
    limitations: PlanLimitations = Field(default_factory=PlanLimitations)

    def is_free(self) -> bool:
        return self.amount == 0

    def has_trial(self) -> bool:
        return self.trial_duration > 0

    def is_plan(self) -> bool:
        return self.kind == ProductKind.PLAN

    def has_period(self, duration: int | None, duration_unit: DurationUnit | str | None) -> bool:
        return self.duration == duration and self.duration_unit == duration_unit

    def get_price_variation(
        self, duration: int, duration_unit: DurationUnit | str
    ) -> PriceVariation | None:
        """Return the variation priced for the given period, if any."""
        for variation in self.price_variations:
            if variation.duration == int(duration) and variation.duration_unit == duration_unit:
                return variation
        return None

    def get_as_variation(
        self, duration: int, duration_unit: DurationUnit | str
    ) -> Product | None:
        """Return a copy of this product re-priced for another billing period."""
        if self.has_period(int(duration), duration_unit):
            return self

        variation = self.get_price_variation(duration, duration_unit)
        if variation is None:
            return None

        return self.model_copy(
            update={
                "amount": variation.amount,
                "duration": variation.duration,
                "duration_unit": variation.duration_unit,
            }
        )


# ============================================================
# Customers, memberships and sites
# ============================================================


class Customer(CheckoutModel):
    """Customer account."""

    id: int
    tenant_id: str = "default"
    user_id: int | None = None
    email: str = ""
    username: str = ""
    country: str = ""
    state: str = ""
    city: str = ""
    has_trialed: bool = False
    email_verification: EmailVerification = EmailVerification.NONE


class Membership(CheckoutModel):
    """A customer's subscription to a plan."""

    id: int
    tenant_id: str = "default"
    customer_id: int
    plan_id: int
    addon_products: dict[int, int] = Field(default_factory=dict)
    status: MembershipStatus = MembershipStatus.PENDING
    amount: Decimal = Decimal("0")
    initial_amount: Decimal = Decimal("0")
    currency: str = "USD"
    duration: int = 1
    duration_unit: DurationUnit = DurationUnit.MONTH
    billing_cycles: int = 0
    recurring: bool = True
    auto_renew: bool = True
    times_billed: int = 0
    gateway: str = ""
    discount_code: DiscountCode | None = None
    date_created: datetime | None = None
    date_renewed: datetime | None = None
    date_expiration: datetime | None = None
    date_trial_end: datetime | None = None
    scheduled_swap: dict[str, Any] | None = None

    def is_active(self) -> bool:
        return self.status == MembershipStatus.ACTIVE

    def is_trialing(self) -> bool:
        return self.status == MembershipStatus.TRIALING

    def is_free(self) -> bool:
        return self.amount == 0 and self.initial_amount == 0

    def is_lifetime(self) -> bool:
        return self.date_expiration is None

    def days_in_cycle(self) -> int:
        return days_in_cycle(self.duration_unit, self.duration)

    def get_remaining_days_in_cycle(self, now: datetime | None = None) -> int:
        """Whole days left before expiration, bounded by the cycle length."""
        if self.date_expiration is None:
            return 0

        now = now or datetime.now(UTC)
        remaining = (self.date_expiration - now).days
        return max(0, min(remaining, self.days_in_cycle()))


class Site(CheckoutModel):
    """Site attached to a membership, with its current resource usage."""

    id: int | None = None
    membership_id: int | None = None
    customer_id: int | None = None
    domain: str = ""
    path: str = "/"
    title: str = ""
    template_id: int | None = None
    pending: bool = False
    post_counts: dict[str, int] = Field(default_factory=dict)
    custom_domain_count: int = 0


# ============================================================
# Payments
# ============================================================


class PaymentLineItem(CheckoutModel):
    """Snapshot of a priced line item stored on a payment."""

    id: str
    type: LineItemType = LineItemType.PRODUCT
    product_id: int | None = None
    product_slug: str | None = None
    title: str = ""
    description: str = ""
    unit_price: Decimal = Decimal("0")
    quantity: int = 1
    duration: int | None = None
    duration_unit: DurationUnit | None = None
    billing_cycles: int = 0
    recurring: bool = False
    taxable: bool = False
    tax_category: str = ""
    tax_rate: Decimal = Decimal("0")
    tax_type: DiscountType = DiscountType.PERCENTAGE
    tax_label: str = ""
    tax_inclusive: bool = False
    tax_exempt: bool = False
    discountable: bool = False
    discount_rate: Decimal = Decimal("0")
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_label: str = ""
    apply_discount_to_renewals: bool = True
    subtotal: Decimal = Decimal("0")
    discount_total: Decimal = Decimal("0")
    tax_total: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class Payment(CheckoutModel):
    """Payment record, pending until a gateway completes it."""

    id: int
    tenant_id: str = "default"
    customer_id: int
    membership_id: int | None = None
    status: PaymentStatus = PaymentStatus.PENDING
    currency: str = "USD"
    gateway: str = ""
    line_items: list[PaymentLineItem] = Field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    tax_total: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    discounts: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    discount_code: str = ""
    meta: dict[str, Any] = Field(default_factory=dict)

    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED


# ============================================================
# Discounts, taxes and entitlements
# ============================================================


class DiscountCode(CheckoutModel):
    """Coupon applied to product and setup fee line items."""

    code: str
    value: Decimal = Decimal("0")
    type: DiscountType = DiscountType.PERCENTAGE
    apply_to_renewals: bool = False
    setup_fee_value: Decimal = Decimal("0")
    setup_fee_type: DiscountType = DiscountType.PERCENTAGE
    allowed_products: list[int] = Field(default_factory=list)
    active: bool = True
    max_uses: int | None = None
    uses: int = 0
    date_start: datetime | None = None
    date_expiration: datetime | None = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    def is_valid(self, product_id: int | None = None, now: datetime | None = None) -> CartError | None:
        """Return ``None`` when usable, otherwise the reason as a cart error."""
        now = now or datetime.now(UTC)

        if not self.active:
            return CartError(
                code="discount_code", message="This coupon code is not valid."
            )

        if self.max_uses is not None and self.uses >= self.max_uses:
            return CartError(
                code="discount_code",
                message="This discount code was already redeemed the maximum amount of times.",
            )

        if self.date_start and now < self.date_start:
            return CartError(code="discount_code", message="This coupon code is not valid.")

        if self.date_expiration and now > self.date_expiration:
            return CartError(code="discount_code", message="This coupon code is not valid.")

        if product_id is not None and self.allowed_products and product_id not in self.allowed_products:
            return CartError(
                code="discount_code",
                message="This coupon code is not valid for this product.",
            )

        return None


class TaxRate(CheckoutModel):
    """A rate returned by the tax rate resolver."""

    tax_rate: Decimal
    title: str = ""


class Overlimit(CheckoutModel):
    """Resource usage above what a plan allows."""

    resource: str
    current: int
    limit: int
    singular: str = ""
    plural: str = ""

    @property
    def excess(self) -> int:
        return self.current - self.limit

    def label_for(self, count: int) -> str:
        return self.plural if count > 1 else self.singular


Membership.model_rebuild()


# ============================================================
# Checkout inputs
# ============================================================


class CartRequest(BaseModel):
    """Immutable raw inputs of one checkout attempt."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str = "default"
    customer_id: int | None = None
    cart_type: CartType = CartType.NEW
    products: tuple[int | str, ...] = ()
    duration: int | None = None
    duration_unit: DurationUnit | None = None
    membership_id: int | None = None
    payment_id: int | None = None
    discount_code: str | None = None
    auto_renew: bool = True
    country: str = ""
    state: str = ""
    city: str = ""
    currency: str = ""
    tax_exempt: bool = False
    extra: dict[str, Any] = Field(default_factory=dict)

    @field_validator("products", mode="before")
    @classmethod
    def coerce_products(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, (str, int)):
            return (v,)
        return tuple(v)


class CheckoutSubmission(BaseModel):
    """Checkout form submission: cart inputs plus account and site fields."""

    model_config = ConfigDict(str_strip_whitespace=True)

    tenant_id: str = "default"
    customer_id: int | None = None
    cart_type: CartType = CartType.NEW
    products: list[int | str] = Field(default_factory=list)
    duration: int | None = None
    duration_unit: DurationUnit | None = None
    membership_id: int | None = None
    payment_id: int | None = None
    discount_code: str | None = None
    auto_renew: bool = True
    billing_country: str = ""
    billing_state: str = ""
    billing_city: str = ""
    gateway: str | None = None
    email_address: str | None = None
    email_address_conf: str | None = None
    username: str | None = None
    password: str | None = None
    password_conf: str | None = None
    site_url: str | None = None
    site_title: str | None = None
    template_id: int | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_cart_request(self) -> CartRequest:
        return CartRequest(
            tenant_id=self.tenant_id,
            customer_id=self.customer_id,
            cart_type=self.cart_type,
            products=tuple(self.products),
            duration=self.duration,
            duration_unit=self.duration_unit,
            membership_id=self.membership_id,
            payment_id=self.payment_id,
            discount_code=self.discount_code,
            auto_renew=self.auto_renew,
            country=self.billing_country,
            state=self.billing_state,
            city=self.billing_city,
            extra=dict(self.extra),
        )


__all__ = [
    "CartType",
    "LineItemType",
    "ProductKind",
    "DurationUnit",
    "DiscountType",
    "MembershipStatus",
    "PaymentStatus",
    "EmailVerification",
    "CheckoutModel",
    "PriceVariation",
    "PlanLimitations",
    "Product",
    "Customer",
    "Membership",
    "Site",
    "PaymentLineItem",
    "Payment",
    "DiscountCode",
    "TaxRate",
    "Overlimit",
    "CartRequest",
    "CheckoutSubmission",
]
