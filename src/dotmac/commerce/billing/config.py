"""
Billing module configuration
"""

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dotmac.commerce.billing.exceptions import BillingConfigurationError

EMAIL_VERIFICATION_POLICIES = ("never", "always", "free_only")


class CheckoutConfig(BaseModel):
    """Checkout behaviour configuration"""

    model_config = ConfigDict()

    company_name: str = Field("DotMac", description="Prefix used in cart descriptors")
    force_auto_renew: bool = Field(True, description="Always auto-renew memberships")
    allow_trial_without_payment_method: bool = Field(
        False, description="Let trial carts skip payment method collection"
    )
    retry_allowed_statuses: list[str] = Field(
        default=["pending"],
        description="Payment statuses that a retry cart may recover",
    )
    enable_email_verification: str = Field(
        "free_only", description="Email verification policy (never, always, free_only)"
    )
    checkout_url: str = Field("/register", description="Base URL of the checkout form")

    @field_validator("enable_email_verification")
    @classmethod
    def validate_email_verification(cls, v: str) -> str:
        if v not in EMAIL_VERIFICATION_POLICIES:
            raise ValueError(f"Unknown email verification policy: {v}")
        return v


class TaxConfig(BaseModel):
    """Tax configuration"""

    model_config = ConfigDict()

    enable_tax_collection: bool = Field(False, description="Collect taxes on checkout")
    inclusive_tax: bool = Field(False, description="Catalog prices already include tax")


class CurrencyConfig(BaseModel):
    """Currency configuration - Single currency support"""

    model_config = ConfigDict()

    default_currency: str = Field("USD", description="Default currency code")
    currency_decimal_places: int = Field(2, description="Number of decimal places")


def _default_checkout_config() -> CheckoutConfig:
    """Create default CheckoutConfig instance"""
    return CheckoutConfig(
        company_name="DotMac",
        force_auto_renew=True,
        allow_trial_without_payment_method=False,
        enable_email_verification="free_only",
    )


def _default_tax_config() -> TaxConfig:
    """Create default TaxConfig instance"""
    return TaxConfig(enable_tax_collection=False, inclusive_tax=False)


def _default_currency_config() -> CurrencyConfig:
    """Create default CurrencyConfig instance"""
    return CurrencyConfig(default_currency="USD", currency_decimal_places=2)


class BillingConfig(BaseModel):
    """Main billing configuration"""

    model_config = ConfigDict()

    checkout: CheckoutConfig = Field(default_factory=_default_checkout_config)
    tax: TaxConfig = Field(default_factory=_default_tax_config)
    currency: CurrencyConfig = Field(default_factory=_default_currency_config)

    # Audit
    audit_log_enabled: bool = Field(True, description="Enable checkout audit logging")

    @classmethod
    def from_env(cls) -> "BillingConfig":
        """Create configuration from settings plus a few plain environment variables"""
        from dotmac.commerce.billing.money_utils import money_handler
        from dotmac.commerce.settings import settings

        config_dict: dict[str, Any] = {}

        config_dict["checkout"] = CheckoutConfig(
            company_name=settings.checkout.company_name,
            force_auto_renew=settings.checkout.force_auto_renew,
            allow_trial_without_payment_method=settings.checkout.allow_trial_without_payment_method,
            retry_allowed_statuses=list(settings.checkout.retry_allowed_statuses),
            enable_email_verification=settings.checkout.enable_email_verification,
            checkout_url=os.getenv("CHECKOUT_URL", "/register"),
        )

        config_dict["tax"] = TaxConfig(
            enable_tax_collection=settings.tax.enable_tax_collection,
            inclusive_tax=settings.tax.inclusive_tax,
        )

        currency_code = os.getenv("DEFAULT_CURRENCY", settings.currency.default_currency)
        try:
            money_handler.validate_currency(currency_code)
        except ValueError as exc:
            raise BillingConfigurationError(
                str(exc),
                config_key="DEFAULT_CURRENCY",
                recovery_hint="Use an ISO 4217 currency code",
            ) from exc

        config_dict["currency"] = CurrencyConfig(
            default_currency=currency_code.upper(),
            currency_decimal_places=int(
                os.getenv("CURRENCY_DECIMAL_PLACES", str(settings.currency.currency_decimal_places))
            ),
        )

        config_dict["audit_log_enabled"] = (
            os.getenv("CHECKOUT_AUDIT_LOG", "true").lower() == "true"
        )

        return cls(**config_dict)


# Global configuration instance
_billing_config: BillingConfig | None = None


def get_billing_config() -> BillingConfig:
    """Get the global billing configuration instance"""
    global _billing_config
    if _billing_config is None:
        _billing_config = BillingConfig.from_env()
    return _billing_config


def set_billing_config(config: BillingConfig | None) -> None:
    """Set the global billing configuration instance"""
    global _billing_config
    _billing_config = config
