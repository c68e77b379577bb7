"""
Billing and checkout exceptions.

Custom exceptions for the rare conditions the cart engine does not accumulate
as cart errors. Provides status codes, context, and recovery hints.
"""

from typing import Any


class BillingError(Exception):
    """
    Base billing system error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class CheckoutError(BillingError):
    """Checkout-related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "CHECKOUT_ERROR", status_code=400, context=context, recovery_hint=recovery_hint
        )


class EntityCreationError(CheckoutError):
    """A customer, membership, site or payment could not be persisted."""

    def __init__(self, message: str, entity: str, code: str | None = None) -> None:
        super().__init__(
            message,
            context={"entity": entity},
            recovery_hint="Review the submitted checkout data and try again",
        )
        self.error_code = code or f"{entity.upper()}_CREATION_FAILED"


class OrderSubmissionError(CheckoutError):
    """Unexpected fault raised while an order submission transaction was open."""

    def __init__(self, message: str, cart_type: str | None = None) -> None:
        context: dict[str, Any] = {}
        if cart_type:
            context["cart_type"] = cart_type

        super().__init__(
            message,
            context=context,
            recovery_hint="The order was rolled back; it is safe to submit it again",
        )
        self.error_code = "exception-order-submission"
        self.status_code = 500


class PaymentError(BillingError):
    """Payment processing errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "PAYMENT_ERROR", status_code=402, context=context, recovery_hint=recovery_hint
        )


class GatewayError(PaymentError):
    """A payment gateway refused or failed to handle an order."""

    def __init__(self, message: str, gateway_id: str | None = None, code: str | None = None) -> None:
        context: dict[str, Any] = {}
        if gateway_id:
            context["gateway_id"] = gateway_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Try again or pick a different payment method",
        )
        self.error_code = code or "GATEWAY_ERROR"


class GatewayNotFoundError(GatewayError):
    """Requested gateway is not registered."""

    def __init__(self, message: str, gateway_id: str | None = None) -> None:
        super().__init__(message, gateway_id=gateway_id, code="no-gateway")
        self.status_code = 404


class BillingConfigurationError(BillingError):
    """Billing configuration errors."""

    def __init__(
        self, message: str, config_key: str | None = None, recovery_hint: str | None = None
    ):
        context = {}
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message,
            "BILLING_CONFIG_ERROR",
            status_code=500,
            context=context,
            recovery_hint=recovery_hint or "Check billing configuration settings",
        )
