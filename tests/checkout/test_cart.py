"""Tests for cart pricing, totals and serialization."""

from datetime import timedelta
from decimal import Decimal

import pytest

from dotmac.commerce.billing.config import BillingConfig, TaxConfig
from dotmac.commerce.billing.money_models import CartTotals
from dotmac.commerce.checkout.cart import Cart
from dotmac.commerce.checkout.line_item import LineItem
from dotmac.commerce.checkout.models import (
    CartType,
    DiscountCode,
    DiscountType,
    DurationUnit,
    LineItemType,
    TaxRate,
)
from tests.checkout.fakes import BASIC, NOW, TRIAL_PLAN


@pytest.fixture
def cart(deps, make_request):
    return Cart(make_request(), deps)


@pytest.fixture
def taxed_deps(deps):
    deps.config = BillingConfig(tax=TaxConfig(enable_tax_collection=True))
    deps.tax_rates.rates = [
        TaxRate(tax_rate=Decimal("5"), title="State"),
        TaxRate(tax_rate=Decimal("10"), title="City"),
    ]
    return deps


@pytest.mark.unit
class TestAddProduct:
    """Adding catalog products to a cart."""

    def test_add_product_by_id_and_slug(self, cart):
        assert cart.add_product(1) is True
        assert cart.add_product("storage") is True

        assert cart.plan_id == 1
        assert [product.slug for product in cart.products] == ["basic", "storage"]
        assert cart.get_total() == Decimal("15.00")

    def test_first_product_sets_period_and_currency(self, cart):
        cart.add_product("pro-annual")

        assert cart.duration == 1
        assert cart.duration_unit == DurationUnit.YEAR
        assert cart.currency == "USD"

    def test_missing_product(self, cart):
        assert cart.add_product("nope") is False
        assert cart.errors.codes() == ["missing-product"]

    def test_second_plan_is_rejected(self, cart):
        cart.add_product("basic")

        assert cart.add_product("premium") is False
        assert cart.errors.codes() == ["plan-already-added"]
        assert cart.plan_id == 1

    def test_price_variation_replaces_product_price(self, deps, make_request):
        cart = Cart(make_request(duration=1, duration_unit=DurationUnit.YEAR), deps)

        cart.add_product("basic")

        item = cart.get_line_items()[0]
        assert item.unit_price == Decimal("100")
        assert item.duration_unit == DurationUnit.YEAR
        assert cart.get_plan().amount == Decimal("100")

    def test_missing_price_variation_is_an_error(self, deps, make_request):
        cart = Cart(make_request(duration=1, duration_unit=DurationUnit.YEAR), deps)

        assert cart.add_product("starter") is False
        assert cart.errors.codes() == ["missing-price-variations"]
        assert cart.get_line_items() == []

    def test_non_recurring_product_ignores_cart_period(self, deps, make_request):
        cart = Cart(make_request(duration=1, duration_unit=DurationUnit.YEAR), deps)

        assert cart.add_product("onboarding") is True
        assert cart.duration_unit == DurationUnit.YEAR

    def test_setup_fee_line_item(self, cart):
        cart.add_product("business")

        fees = list(cart.get_fees().values())
        assert len(fees) == 1
        assert fees[0].title == "Signup Fee for Business"
        assert fees[0].unit_price == Decimal("15")
        assert fees[0].recurring is False
        assert cart.get_total() == Decimal("55.00")
        assert cart.get_recurring_total() == Decimal("40.00")
        assert cart.get_total_fees() == Decimal("15.00")

    def test_negative_setup_fee_is_a_signup_credit(self, deps, cart):
        deps.products.add(
            BASIC.model_copy(update={"id": 50, "slug": "promo", "setup_fee": Decimal("-5")})
        )

        cart.add_product("promo")

        fee = next(iter(cart.get_fees().values()))
        assert fee.title == "Signup Credit for Basic"
        assert cart.get_total() == Decimal("5.00")

    def test_skip_setup_fee(self, cart):
        cart.add_product("business", skip_setup_fee=True)

        assert cart.get_fees() == {}

    def test_renewal_carts_never_charge_setup_fees(self, deps, make_request):
        cart = Cart(make_request(cart_type=CartType.RENEWAL), deps)

        cart.add_product("business")

        assert cart.get_fees() == {}

    def test_line_items_are_stored_most_recent_first(self, cart):
        cart.add_product("basic")
        cart.add_product("storage")

        assert [item.product_slug for item in cart.get_line_items()] == ["storage", "basic"]


@pytest.mark.unit
class TestDiscounts:
    """Discount codes applied to line items."""

    def test_unknown_code_is_reported(self, deps, make_request):
        cart = Cart(make_request(discount_code="nothing"), deps)

        assert cart.errors.codes() == ["discount_code"]
        assert cart.discount_code is None

    def test_invalid_code_reports_its_own_error(self, deps, make_request):
        deps.discount_codes.add(DiscountCode(code="OLD", value=Decimal("10"), active=False))

        cart = Cart(make_request(discount_code="old"), deps)

        assert cart.errors.codes() == ["discount_code"]
        assert cart.errors.to_list()[0].message == "This coupon code is not valid."

    def test_percentage_code_discounts_products(self, deps, make_request):
        deps.discount_codes.add(DiscountCode(code="TEN", value=Decimal("10")))
        cart = Cart(make_request(discount_code=" ten "), deps)

        cart.add_product("onboarding")

        item = cart.get_line_items()[0]
        assert item.discount_label == "TEN"
        assert cart.get_total() == Decimal("90.00")
        assert cart.get_total_discounts() == Decimal("10.00")
        assert cart.has_discount() is True

    def test_setup_fee_uses_the_setup_fee_discount(self, deps, make_request):
        deps.discount_codes.add(
            DiscountCode(
                code="NOFEE",
                value=Decimal("0"),
                setup_fee_value=Decimal("100"),
                apply_to_renewals=True,
            )
        )
        cart = Cart(make_request(discount_code="NOFEE"), deps)

        cart.add_product("business")

        fee = next(iter(cart.get_fees().values()))
        assert fee.total == 0
        assert fee.apply_discount_to_renewals is False
        assert cart.get_total() == Decimal("40.00")

    def test_discount_not_applied_to_renewals_is_excluded_from_recurring_total(
        self, deps, make_request
    ):
        deps.discount_codes.add(
            DiscountCode(code="FIRST", value=Decimal("50"), apply_to_renewals=False)
        )
        cart = Cart(make_request(discount_code="FIRST"), deps)

        cart.add_product("premium")

        assert cart.get_total() == Decimal("10.00")
        assert cart.get_recurring_total() == Decimal("20.00")

    def test_code_restricted_to_other_products(self, deps, make_request):
        deps.discount_codes.add(
            DiscountCode(code="PREM", value=Decimal("50"), allowed_products=[2])
        )
        cart = Cart(make_request(discount_code="PREM"), deps)

        cart.add_product("basic")

        assert cart.get_total() == Decimal("10.00")
        assert cart.has_discount() is False

    def test_add_discount_code_accepts_model(self, cart):
        code = DiscountCode(code="direct", value=Decimal("5"), type=DiscountType.ABSOLUTE)

        assert cart.add_discount_code(code) is True

        cart.add_product("basic")
        assert cart.get_discount_code().code == "DIRECT"
        assert cart.get_total() == Decimal("5.00")


@pytest.mark.unit
class TestTaxes:
    """Tax rates resolved for taxable line items."""

    def test_taxes_are_skipped_when_collection_is_disabled(self, deps, cart):
        deps.products.add(
            BASIC.model_copy(
                update={"id": 60, "slug": "taxed", "taxable": True, "tax_category": "default"}
            )
        )

        cart.add_product("taxed")

        assert cart.get_total_taxes() == 0
        assert deps.tax_rates.calls == []

    def test_last_returned_rate_is_applied(self, taxed_deps, make_request):
        taxed_deps.products.add(
            BASIC.model_copy(
                update={"id": 60, "slug": "taxed", "taxable": True, "tax_category": "default"}
            )
        )
        cart = Cart(make_request(country="US", state="NY", city="NYC"), taxed_deps)

        cart.add_product("taxed")

        item = cart.get_line_items()[0]
        assert item.tax_rate == Decimal("10")
        assert item.tax_label == "City"
        assert cart.get_total_taxes() == Decimal("1.00")
        assert cart.get_total() == Decimal("11.00")
        assert taxed_deps.tax_rates.calls == [("US", "default", "NY", "NYC")]
        assert cart.get_tax_breakthrough() == {Decimal("10"): Decimal("1.00")}

    def test_items_without_tax_category_are_not_taxed(self, taxed_deps, make_request):
        taxed_deps.products.add(
            BASIC.model_copy(update={"id": 61, "slug": "nocat", "taxable": True})
        )
        cart = Cart(make_request(), taxed_deps)

        cart.add_product("nocat")

        assert cart.get_total_taxes() == 0

    def test_tax_exempt_requests(self, taxed_deps, make_request):
        taxed_deps.products.add(
            BASIC.model_copy(
                update={"id": 60, "slug": "taxed", "taxable": True, "tax_category": "default"}
            )
        )
        cart = Cart(make_request(tax_exempt=True), taxed_deps)

        cart.add_product("taxed")

        assert cart.get_total_taxes() == 0
        assert cart.get_total() == Decimal("10.00")


@pytest.mark.unit
class TestTotalsAndValidity:
    """Cart-level totals, rounding and consistency checks."""

    def test_totals_round_half_up_once(self, cart):
        for _ in range(3):
            cart.add_line_item(LineItem(unit_price=Decimal("0.005")))

        assert cart.get_total() == Decimal("0.02")

    def test_total_is_clamped_at_zero(self, cart):
        cart.add_product("basic")
        cart.add_line_item(LineItem(type=LineItemType.CREDIT, unit_price=Decimal("-50")))

        assert cart.get_total() == 0
        assert cart.is_free() is True
        assert cart.get_subtotal() == Decimal("10.00")

    def test_line_items_filter_by_type(self, cart):
        cart.add_product("basic")
        cart.add_line_item(LineItem(type=LineItemType.CREDIT, unit_price=Decimal("-2")))
        cart.add_line_item(LineItem(type=LineItemType.DISCOUNT, unit_price=Decimal("-1")))

        assert [item.unit_price for item in cart.get_credits().values()] == [Decimal("-2")]
        assert [item.unit_price for item in cart.get_discounts().values()] == [Decimal("-1")]
        assert cart.get_fees() == {}
        assert len(cart.get_line_items_by_type(LineItemType.PRODUCT)) == 1

    def test_mismatched_recurring_intervals_invalidate_the_cart(self, cart):
        cart.add_product("basic")
        cart.add_line_item(LineItem.from_product(cart.find_product("weekly-support")))

        assert cart.is_valid() is False
        assert cart.errors.codes() == ["wrong"]

    def test_matching_intervals_are_valid(self, cart):
        cart.add_product("basic")
        cart.add_product("storage")
        cart.add_product("onboarding")

        assert cart.is_valid() is True

    def test_calculate_totals(self, cart):
        cart.add_product("business")

        totals = cart.calculate_totals()

        assert isinstance(totals, CartTotals)
        assert totals.total == Decimal("55.00")
        assert totals.subtotal == Decimal("55.00")
        assert totals.total_fees == Decimal("15.00")
        assert totals.recurring.total == Decimal("40.00")
        assert totals.total_money.minor_units == 5500

    def test_get_total_fees_never_exceeds_total(self, cart):
        cart.add_line_item(LineItem(type=LineItemType.FEE, unit_price=Decimal("-30")))

        assert cart.get_total_fees(total=Decimal("20")) == Decimal("-20.00")

    def test_should_collect_payment(self, cart):
        assert cart.should_collect_payment() is False

        cart.add_product("basic")

        assert cart.should_collect_payment() is True

    def test_free_recurring_plan_does_not_collect(self, cart):
        cart.add_product("free")

        assert cart.is_free() is True
        assert cart.has_recurring() is False
        assert cart.should_collect_payment() is False


@pytest.mark.unit
class TestTrialsAndDates:
    """Trial eligibility and billing dates."""

    def test_trial_sets_billing_start_date(self, deps, make_request):
        cart = Cart(make_request(customer_id=None), deps)
        cart.add_product("trial")

        assert cart.has_trial() is True
        assert cart.get_billing_start_date() == NOW + timedelta(days=14)
        assert cart.should_collect_payment() is True

    def test_trial_without_payment_method(self, deps, make_request):
        deps.config.checkout.allow_trial_without_payment_method = True
        cart = Cart(make_request(customer_id=None), deps)
        cart.add_product("trial")

        assert cart.should_collect_payment() is False

    def test_customers_who_already_trialed_are_not_eligible(self, deps, customer, make_request):
        customer.has_trialed = True
        cart = Cart(make_request(), deps)
        cart.add_product("trial")

        assert cart.has_trial() is False

    def test_any_product_without_trial_disables_it(self, deps, make_request):
        cart = Cart(make_request(customer_id=None), deps)
        cart.add_product("trial")
        cart.add_product("storage")

        assert cart.get_billing_start_date() is None
        assert cart.has_trial() is False

    def test_next_charge_date_is_one_period_out(self, cart):
        cart.add_product("basic")

        assert cart.get_billing_next_charge_date() == NOW.replace(month=4)

    def test_next_charge_date_skips_trial_products(self, deps, make_request):
        cart = Cart(make_request(customer_id=None), deps)
        cart.add_product(TRIAL_PLAN.id)

        assert cart.get_billing_next_charge_date() is None


@pytest.mark.unit
class TestSerialization:
    """Data handed to gateways, the UI and persistence."""

    def test_cart_url(self, deps, make_request):
        cart = Cart(make_request(duration=1, duration_unit=DurationUnit.YEAR), deps)
        cart.add_product("basic")
        cart.add_product("onboarding")

        assert cart.get_cart_url() == "basic/year?products%5B%5D=onboarding"

    def test_cart_descriptor(self, cart):
        cart.add_product("basic")

        assert cart.get_cart_descriptor() == "DotMac - Basic"

        cart.set_cart_descriptor("Custom")
        assert cart.get_cart_descriptor() == "Custom"

    def test_membership_data(self, cart):
        cart.add_product("business")
        cart.add_product("storage")

        data = cart.to_membership_data()

        assert data["plan_id"] == 7
        assert data["amount"] == Decimal("45.00")
        assert data["initial_amount"] == Decimal("60.00")
        assert data["addon_products"] == {10: 1}
        assert data["recurring"] is True
        assert data["auto_renew"] is True

    def test_payment_data(self, cart):
        cart.add_product("business")

        data = cart.to_payment_data()

        assert data["total"] == Decimal("55.00")
        assert data["fees"] == Decimal("15.00")
        assert len(data["line_items"]) == 2
        assert data["discount_code"] == ""

    def test_done(self, cart):
        cart.add_product("basic")

        done = cart.done()

        assert done["type"] == "new"
        assert done["valid"] is True
        assert done["errors"] == []
        assert done["totals"]["total"] == "10.00"
        assert done["dates"]["date_next_charge"] == NOW.replace(month=4).isoformat()

    def test_extra_params(self, deps, make_request):
        cart = Cart(make_request(extra={"ref": "partner"}), deps)

        cart.set_param("utm", "mail")

        assert cart.get_param("ref") == "partner"
        assert cart.get_extra_params() == {"ref": "partner", "utm": "mail"}
