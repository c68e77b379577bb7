"""
Checkout submission validation.

Account and site fields of a submission are validated with pydantic
models; every failure becomes a ``validation_<field>`` cart error.
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel, EmailStr, Field, ValidationError, ValidationInfo, field_validator

from dotmac.commerce.checkout.cart import Cart
from dotmac.commerce.checkout.errors import CartErrors
from dotmac.commerce.checkout.models import CartType, CheckoutSubmission

logger = structlog.get_logger(__name__)

FIELD_LABELS = {
    "email_address": "Email",
    "email_address_conf": "Email confirmation",
    "username": "Username",
    "password": "Password",
    "password_conf": "Password confirmation",
    "site_url": "Site URL",
    "site_title": "Site title",
}


class AccountFields(BaseModel):
    """Fields required to create a customer account."""

    email_address: EmailStr
    email_address_conf: str | None = None
    username: str = Field(pattern=r"^[a-z0-9_-]{4,}$")
    password: str = Field(min_length=6)
    password_conf: str | None = None

    @field_validator("email_address_conf")
    @classmethod
    def email_confirmation_matches(cls, v: str | None, info: ValidationInfo) -> str | None:
        email = info.data.get("email_address")
        if v is not None and email is not None and v.lower() != str(email).lower():
            raise ValueError("The email confirmation does not match the email address.")
        return v

    @field_validator("password_conf")
    @classmethod
    def password_confirmation_matches(cls, v: str | None, info: ValidationInfo) -> str | None:
        password = info.data.get("password")
        if v is not None and password is not None and v != password:
            raise ValueError("The password confirmation does not match the password.")
        return v


class SiteFields(BaseModel):
    """Fields describing the site created with a new membership."""

    site_url: str | None = Field(None, min_length=3, max_length=63, pattern=r"^[a-z0-9-]+$")
    site_title: str | None = Field(None, min_length=4)


def _message_for(error: dict[str, Any]) -> str:
    field = str(error["loc"][0]) if error["loc"] else ""
    label = FIELD_LABELS.get(field, field)

    ctx = error.get("ctx") or {}
    if error["type"] == "value_error" and "error" in ctx:
        return str(ctx["error"])

    if error["type"] == "missing":
        return f"{label} is required."

    return f"{label}: {error['msg'].rstrip('.')}."


class CheckoutValidator:
    """Validates the account and site fields of a checkout submission."""

    def validate(self, submission: CheckoutSubmission, cart: Cart) -> CartErrors:
        errors = CartErrors()

        # Logged-in customers do not fill in account fields.
        if cart.customer is None:
            self._validate_model(AccountFields, submission, errors)

        if cart.cart_type == CartType.NEW:
            self._validate_model(SiteFields, submission, errors)

        if errors:
            logger.info("checkout.validation.failed", codes=errors.codes())
        return errors

    def _validate_model(
        self, model: type[BaseModel], submission: CheckoutSubmission, errors: CartErrors
    ) -> None:
        data = {
            name: getattr(submission, name)
            for name in model.model_fields
            if getattr(submission, name, None) is not None
        }

        try:
            model.model_validate(data)
        except ValidationError as exc:
            for error in exc.errors():
                field = str(error["loc"][0]) if error["loc"] else "submission"
                errors.add(f"validation_{field}", _message_for(error))


__all__ = ["AccountFields", "SiteFields", "CheckoutValidator"]
