"""Tests for order submission and the gateway checkout phase."""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from dotmac.commerce.billing.exceptions import GatewayError
from dotmac.commerce.checkout.gateways import FreeGateway, GatewayRegistry
from dotmac.commerce.checkout.line_item import LineItem
from dotmac.commerce.checkout.models import (
    CheckoutSubmission,
    MembershipStatus,
    Payment,
    PaymentStatus,
)
from dotmac.commerce.checkout.processor import (
    ORIGINAL_CART_META_KEY,
    CheckoutOrderProcessor,
)
from dotmac.commerce.checkout.unit_of_work import UnitOfWork
from tests.checkout.fakes import (
    BASIC,
    CopyingPaymentRepository,
    FakeSessionStore,
    ManualGateway,
    make_membership,
)


@pytest.fixture
def manual_gateway():
    return ManualGateway()


@pytest.fixture
def gateways(deps, manual_gateway):
    return GatewayRegistry([FreeGateway(deps.memberships, deps.payments), manual_gateway])


@pytest.fixture
def unit_of_work():
    return MagicMock(spec=UnitOfWork)


@pytest.fixture
def session_store():
    return FakeSessionStore()


@pytest.fixture
def processor(deps, gateways, unit_of_work, session_store):
    return CheckoutOrderProcessor(deps, gateways, unit_of_work, session_store=session_store)


@pytest.fixture
def make_submission():
    """Build a submission for a brand new customer."""

    def _make(**overrides):
        data = {
            "products": ["basic"],
            "email_address": "jane2@dotmac.io",
            "email_address_conf": "jane2@dotmac.io",
            "username": "jane_doe",
            "password": "secret123",
            "password_conf": "secret123",
            "site_url": "janesite",
            "site_title": "My Site",
            "gateway": "manual",
        }
        data.update(overrides)
        return CheckoutSubmission(**data)

    return _make


@pytest.mark.unit
class TestOrderSubmission:
    """The transactional order submission."""

    def test_paid_order_creates_entities_and_commits(
        self, processor, deps, unit_of_work, session_store, make_submission
    ):
        result = processor.handle_order_submission(make_submission())

        assert result.success is True
        assert result.errors == []
        assert result.data["cart_type"] == "new"
        assert result.data["total"] == Decimal("10.00")
        assert result.data["gateway"] == {
            "slug": "manual",
            "data": {"client_secret": f"secret_{result.data['payment_id']}"},
        }

        customer = deps.customers.get_by_email("jane2@dotmac.io")
        membership = deps.memberships.get(result.data["membership_id"])
        payment = deps.payments.get(result.data["payment_id"])

        assert customer is not None
        assert membership.customer_id == customer.id
        assert membership.plan_id == BASIC.id
        assert membership.gateway == "manual"
        assert payment.status == PaymentStatus.PENDING
        assert payment.gateway == "manual"
        snapshot = payment.meta[ORIGINAL_CART_META_KEY]
        assert snapshot["request"] == processor.cart.request.model_dump(mode="json")
        assert snapshot["request"]["products"] == ["basic"]
        assert snapshot["summary"]["totals"]["total"] == "10.00"

        site = deps.sites.created[0]
        assert site.domain == "janesite"
        assert site.title == "My Site"
        assert site.pending is True
        assert processor.pending_site is site

        unit_of_work.begin.assert_called_once()
        unit_of_work.commit.assert_called_once()
        unit_of_work.rollback.assert_not_called()
        assert session_store.cleared == 1

    def test_site_domain_uses_network_suffix(self, processor, deps, make_submission):
        result = processor.handle_order_submission(
            make_submission(extra={"site_domain": "dotmac.site"})
        )

        assert result.success is True
        assert deps.sites.created[0].domain == "janesite.dotmac.site"

    def test_invalid_cart_rolls_back(self, processor, unit_of_work, session_store, make_submission):
        result = processor.handle_order_submission(make_submission(products=["nope"]))

        assert result.success is False
        assert [error.code for error in result.errors] == ["missing-product"]
        unit_of_work.rollback.assert_called_once()
        unit_of_work.commit.assert_not_called()
        assert session_store.cleared == 0

    def test_unknown_gateway(self, processor, make_submission):
        result = processor.handle_order_submission(make_submission(gateway="paypal"))

        assert [error.code for error in result.errors] == ["no-gateway"]
        assert result.errors[0].message == "Payment gateway not registered."

    def test_validation_errors_are_reported(self, processor, unit_of_work, make_submission):
        result = processor.handle_order_submission(
            make_submission(username="ab", password_conf="different")
        )

        assert result.success is False
        assert [error.code for error in result.errors] == [
            "validation_username",
            "validation_password_conf",
        ]
        unit_of_work.rollback.assert_called_once()

    def test_existing_email_is_rejected(self, processor, make_submission):
        result = processor.handle_order_submission(
            make_submission(email_address="jane@dotmac.io", email_address_conf="jane@dotmac.io")
        )

        assert [error.code for error in result.errors] == ["email_exists"]

    def test_unexpected_exception_becomes_cart_error(
        self, processor, deps, unit_of_work, make_submission
    ):
        with patch.object(deps.customers, "create", side_effect=RuntimeError("database is down")):
            result = processor.handle_order_submission(make_submission())

        assert result.success is False
        error = result.errors[0]
        assert error.code == "exception-order-submission"
        assert error.message == "database is down"
        assert error.data["cart_type"] == "new"
        assert "RuntimeError" in error.data["trace"]
        unit_of_work.rollback.assert_called_once()
        unit_of_work.commit.assert_not_called()

    def test_preflight_failure_rolls_back(self, deps, unit_of_work, make_submission):
        gateway = ManualGateway(
            preflight_error=GatewayError("Card declined.", gateway_id="manual", code="card_declined")
        )
        processor = CheckoutOrderProcessor(
            deps,
            GatewayRegistry([FreeGateway(deps.memberships, deps.payments), gateway]),
            unit_of_work,
        )

        result = processor.handle_order_submission(make_submission())

        assert [error.code for error in result.errors] == ["card_declined"]
        assert result.errors[0].data == {"gateway_id": "manual"}
        unit_of_work.rollback.assert_called_once()

    def test_preflight_crash_is_reported_with_trace(
        self, processor, manual_gateway, unit_of_work, make_submission
    ):
        with patch.object(manual_gateway, "run_preflight", side_effect=KeyError("secret")):
            result = processor.handle_order_submission(make_submission())

        assert result.errors[0].code == "exception"
        assert "trace" in result.errors[0].data
        unit_of_work.rollback.assert_called_once()

    def test_free_order_is_activated(self, processor, deps, make_submission):
        deps.config.checkout.enable_email_verification = "never"

        result = processor.handle_order_submission(make_submission(products=["free"], gateway=None))

        assert result.success is True
        assert result.data["gateway"] == {"slug": "free", "data": {}}
        membership = deps.memberships.get(result.data["membership_id"])
        assert membership.status == MembershipStatus.ACTIVE

    def test_free_order_waits_for_email_verification(self, processor, deps, make_submission):
        result = processor.handle_order_submission(make_submission(products=["free"], gateway=None))

        assert result.success is True
        membership = deps.memberships.get(result.data["membership_id"])
        assert membership.status == MembershipStatus.PENDING

    def test_trial_without_payment_method_starts_trialing(self, processor, deps, make_submission):
        deps.config.checkout.enable_email_verification = "never"
        deps.config.checkout.allow_trial_without_payment_method = True

        result = processor.handle_order_submission(make_submission(products=["trial"], gateway=None))

        assert result.success is True
        membership = deps.memberships.get(result.data["membership_id"])
        payment = deps.payments.get(result.data["payment_id"])
        trial_end = datetime(2026, 3, 29, 23, 59, 59, tzinfo=UTC)

        assert membership.status == MembershipStatus.TRIALING
        assert membership.date_trial_end == trial_end
        assert membership.date_expiration == trial_end
        assert payment.total == Decimal("0.00")

    def test_repeated_processing_reuses_payment(self, processor, deps, make_submission):
        submission = make_submission(customer_id=1)

        first = processor.process_order(submission)
        second = processor.process_order(submission)

        assert first.success is True
        assert second.data["payment_id"] == first.data["payment_id"]
        assert len(deps.payments.payments) == 1

    def test_orders_from_different_new_customers_get_their_own_payments(
        self, processor, deps, make_submission
    ):
        first = processor.handle_order_submission(make_submission())
        second = processor.handle_order_submission(
            make_submission(
                email_address="bob@dotmac.io",
                email_address_conf="bob@dotmac.io",
                username="bob_smith",
                site_url="bobsite",
            )
        )

        assert first.success is True
        assert second.success is True
        assert second.data["payment_id"] != first.data["payment_id"]

        bob = deps.customers.get_by_email("bob@dotmac.io")
        payment = deps.payments.get(second.data["payment_id"])
        assert payment.customer_id == bob.id
        assert payment.membership_id == second.data["membership_id"]
        assert len(deps.payments.payments) == 2

    def test_commit_forgets_created_payments(self, processor, deps, make_submission):
        first = processor.handle_order_submission(make_submission(customer_id=1))
        second = processor.handle_order_submission(make_submission(customer_id=1))

        assert second.success is True
        assert second.data["payment_id"] != first.data["payment_id"]
        assert len(deps.payments.payments) == 2

    def test_rollback_forgets_created_payments(self, processor, deps, make_submission):
        submission = make_submission(customer_id=1)
        processor.process_order(submission)

        processor.handle_order_submission(make_submission(customer_id=1, products=["nope"]))
        processor.process_order(submission)

        assert len(deps.payments.payments) == 2


@pytest.mark.unit
class TestCreateOrder:
    def test_prices_without_persisting(self, processor, deps, make_submission):
        data = processor.create_order(make_submission(customer_id=1))

        assert data["type"] == "new"
        assert data["totals"]["total"] == "10.00"
        assert deps.payments.payments == {}

    def test_preview_leaves_pending_payments_alone(
        self, processor, deps, unit_of_work, make_submission
    ):
        deps.payments.add(Payment(id=950, customer_id=1, total=Decimal("50")))

        data = processor.create_order(make_submission(customer_id=1))

        assert data["totals"]["total"] == "10.00"
        assert deps.payments.get(950).status == PaymentStatus.PENDING
        unit_of_work.begin.assert_not_called()


@pytest.mark.unit
class TestProcessCheckout:
    """The gateway-facing checkout phase."""

    def test_paid_order_redirects_to_return_url(self, processor, manual_gateway, make_submission):
        order = processor.handle_order_submission(make_submission())
        payment_id = order.data["payment_id"]

        result = processor.process_checkout(payment_id, "manual")

        assert result.success is True
        assert result.redirect_url == f"/register?payment={payment_id}&status=done"
        assert manual_gateway.checkouts == [(payment_id, order.data["membership_id"], "new")]

    def test_gateway_return_url_wins(self, deps, unit_of_work, make_submission):
        gateway = ManualGateway(return_url="https://dotmac.io/thanks")
        processor = CheckoutOrderProcessor(deps, GatewayRegistry([gateway]), unit_of_work)
        order = processor.handle_order_submission(make_submission())

        result = processor.process_checkout(order.data["payment_id"], "manual")

        assert result.redirect_url == (
            f"https://dotmac.io/thanks?payment={order.data['payment_id']}&status=done"
        )

    def test_free_order_is_completed(self, processor, deps, make_submission):
        order = processor.handle_order_submission(make_submission(products=["free"], gateway=None))

        result = processor.process_checkout(order.data["payment_id"])

        assert result.success is True
        assert result.redirect_url == f"/register?payment={order.data['payment_id']}&status=done"
        assert deps.payments.get(order.data["payment_id"]).status == PaymentStatus.COMPLETED
        membership = deps.memberships.get(order.data["membership_id"])
        assert membership.status == MembershipStatus.ACTIVE
        assert membership.gateway == "free"

    def test_missing_payment(self, processor):
        result = processor.process_checkout(999)

        assert result.success is False
        assert result.errors[0].code == "no-payment"
        assert result.errors[0].message == "Payment (999) not found."

    def test_free_gateway_cannot_settle_a_paid_order(self, processor, make_submission):
        order = processor.handle_order_submission(make_submission())

        result = processor.process_checkout(order.data["payment_id"], "free")

        assert result.success is False
        assert [error.code for error in result.errors] == ["no-gateway"]

    def test_gateway_crash_is_reported(self, processor, manual_gateway, make_submission):
        order = processor.handle_order_submission(make_submission())

        with patch.object(manual_gateway, "process_checkout", side_effect=RuntimeError("timeout")):
            result = processor.process_checkout(order.data["payment_id"], "manual")

        assert result.success is False
        assert result.errors[0].code == "error"
        assert result.errors[0].message == "timeout"
        assert result.errors[0].data["payment_id"] == order.data["payment_id"]

    def test_gateway_can_skip_redirect(self, processor, manual_gateway, make_submission):
        order = processor.handle_order_submission(make_submission())

        with patch.object(manual_gateway, "process_checkout", return_value=False):
            result = processor.process_checkout(order.data["payment_id"], "manual")

        assert result.success is True
        assert result.redirect_url is None

    def test_original_cart_is_persisted_with_the_payment(
        self, deps, unit_of_work, manual_gateway, make_submission
    ):
        payments = CopyingPaymentRepository()
        deps.payments = payments
        deps.memberships.payments = payments
        processor = CheckoutOrderProcessor(
            deps,
            GatewayRegistry([FreeGateway(deps.memberships, payments), manual_gateway]),
            unit_of_work,
        )

        order = processor.handle_order_submission(make_submission())
        payment_id = order.data["payment_id"]

        stored = payments.get(payment_id).meta[ORIGINAL_CART_META_KEY]
        assert stored["request"]["products"] == ["basic"]
        assert stored["summary"]["type"] == "new"

        result = processor.process_checkout(payment_id, "manual")

        assert result.success is True
        assert manual_gateway.checkouts == [(payment_id, order.data["membership_id"], "new")]

    def test_cart_is_rebuilt_when_not_stored_on_payment(self, processor, deps, manual_gateway):
        deps.memberships.add(make_membership(BASIC, status=MembershipStatus.PENDING))
        deps.payments.add(
            Payment(
                id=900,
                customer_id=1,
                membership_id=1,
                line_items=[LineItem.from_product(BASIC).to_payment_line_item()],
                total=Decimal("10"),
            )
        )

        result = processor.process_checkout(900, "manual")

        assert result.success is True
        assert manual_gateway.checkouts == [(900, 1, "retry")]
