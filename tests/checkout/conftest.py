"""Checkout fixtures: in-memory collaborators and a fixed clock."""

import pytest

from dotmac.commerce.checkout.entitlements import QuotaEntitlementChecker
from dotmac.commerce.checkout.interfaces import CheckoutDependencies
from dotmac.commerce.checkout.models import CartRequest, Customer
from tests.checkout.fakes import (
    CATALOG,
    InMemoryCustomerRepository,
    InMemoryDiscountCodeResolver,
    InMemoryMembershipRepository,
    InMemoryPaymentRepository,
    InMemoryProductRepository,
    InMemorySiteRepository,
    StaticTaxRateResolver,
    fixed_clock,
)


@pytest.fixture
def customer():
    return Customer(id=1, email="jane@dotmac.io", username="jane", country="US")


@pytest.fixture
def deps(billing_config, customer):
    payments = InMemoryPaymentRepository()
    memberships = InMemoryMembershipRepository(payments)
    customers = InMemoryCustomerRepository()
    customers.add(customer)

    return CheckoutDependencies(
        products=InMemoryProductRepository(CATALOG),
        customers=customers,
        memberships=memberships,
        payments=payments,
        sites=InMemorySiteRepository(memberships),
        tax_rates=StaticTaxRateResolver(),
        discount_codes=InMemoryDiscountCodeResolver(),
        entitlements=QuotaEntitlementChecker(),
        config=billing_config,
        clock=fixed_clock,
    )


@pytest.fixture
def make_request():
    """Build a ``CartRequest`` for the default customer."""

    def _make(**overrides):
        data = {"customer_id": 1}
        data.update(overrides)
        return CartRequest(**data)

    return _make
