"""
Interfaces of the external collaborators the checkout engine consumes.

Repositories, resolvers and the entitlement checker are structural
protocols so any persistence layer can back them. ``CheckoutDependencies``
bundles one implementation of each with the billing configuration and a
clock, and is the only handle the engine has on the outside world.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from dotmac.commerce.billing.config import BillingConfig, get_billing_config
from dotmac.commerce.checkout.models import (
    Customer,
    DiscountCode,
    Membership,
    Overlimit,
    Payment,
    PlanLimitations,
    Product,
    Site,
    TaxRate,
)


@runtime_checkable
class ProductRepository(Protocol):
    """Read access to the product catalog."""

    def get_product(self, product_id: int) -> Product | None:
        ...

    def get_product_by_slug(self, slug: str) -> Product | None:
        ...


@runtime_checkable
class CustomerRepository(Protocol):
    """Customer persistence."""

    def get(self, customer_id: int) -> Customer | None:
        ...

    def get_by_email(self, email: str) -> Customer | None:
        ...

    def create(self, data: dict[str, Any]) -> Customer | None:
        ...

    def save(self, customer: Customer) -> Customer:
        ...


@runtime_checkable
class MembershipRepository(Protocol):
    """Membership persistence and membership-scoped queries."""

    def get(self, membership_id: int) -> Membership | None:
        ...

    def create(self, data: dict[str, Any]) -> Membership | None:
        ...

    def save(self, membership: Membership) -> Membership:
        ...

    def get_sites(self, membership_id: int) -> list[Site]:
        ...

    def get_last_pending_payment(self, membership_id: int) -> Payment | None:
        ...


@runtime_checkable
class PaymentRepository(Protocol):
    """Payment persistence."""

    def get(self, payment_id: int) -> Payment | None:
        ...

    def create(self, data: dict[str, Any]) -> Payment | None:
        ...

    def save(self, payment: Payment) -> Payment:
        ...

    def list_pending_for_customer(self, customer_id: int) -> list[Payment]:
        ...


@runtime_checkable
class SiteRepository(Protocol):
    """Creates sites that stay pending until their membership is paid."""

    def create_pending(self, data: dict[str, Any]) -> Site | None:
        ...


@runtime_checkable
class TaxRateResolver(Protocol):
    """Looks up the tax rates applicable to a location and category."""

    def applicable_tax_rates(
        self, country: str, tax_category: str, state: str = "", city: str = ""
    ) -> list[TaxRate]:
        ...


@runtime_checkable
class DiscountCodeResolver(Protocol):
    """Finds discount codes by their (upper-cased) code."""

    def get_discount_code_by_code(self, code: str) -> DiscountCode | None:
        ...


@runtime_checkable
class EntitlementChecker(Protocol):
    """Compares a site's resource usage against plan limitations."""

    def check_all_post_types(
        self, limitations: PlanLimitations, site: Site
    ) -> dict[str, Overlimit] | None:
        ...

    def check_all_domains(self, limitations: PlanLimitations, site: Site) -> Overlimit | None:
        ...


@runtime_checkable
class SessionStore(Protocol):
    """Checkout session/draft storage, cleared after a committed order."""

    def clear(self) -> None:
        ...


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class CheckoutDependencies:
    """Everything the cart engine needs from the outside world."""

    products: ProductRepository
    customers: CustomerRepository
    memberships: MembershipRepository
    payments: PaymentRepository
    sites: SiteRepository
    tax_rates: TaxRateResolver
    discount_codes: DiscountCodeResolver
    entitlements: EntitlementChecker
    config: BillingConfig = field(default_factory=get_billing_config)
    clock: Callable[[], datetime] = utc_now

    def now(self) -> datetime:
        return self.clock()


__all__ = [
    "ProductRepository",
    "CustomerRepository",
    "MembershipRepository",
    "PaymentRepository",
    "SiteRepository",
    "TaxRateResolver",
    "DiscountCodeResolver",
    "EntitlementChecker",
    "SessionStore",
    "CheckoutDependencies",
    "utc_now",
]
