"""
Cart error accumulator.

The cart engine never raises for business failures. Every failure is
appended to a ``CartErrors`` collection and the caller decides whether to
stop, so several problems (for example one entitlement violation per site)
can be reported together.
"""

from __future__ import annotations

import traceback
from collections.abc import Iterable, Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dotmac.commerce.billing.exceptions import BillingError


class CartError(BaseModel):
    """A single ``{code, message}`` error with optional diagnostics."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")
    data: dict[str, Any] | None = Field(None, description="Diagnostics such as a trace")

    @classmethod
    def from_exception(cls, exc: BaseException, with_trace: bool = False) -> CartError:
        """Convert an exception into the cart error shape.

        Billing exceptions keep their own ``error_code``; anything else is
        reported under the generic ``exception`` code.
        """
        if isinstance(exc, BillingError):
            code = exc.error_code
            message = exc.message
            data: dict[str, Any] = dict(exc.context)
        else:
            code = "exception"
            message = str(exc)
            data = {}

        if with_trace:
            data["trace"] = "".join(traceback.format_exception(exc))

        return cls(code=code, message=message, data=data or None)


class CartErrors:
    """Ordered collection of cart errors."""

    def __init__(self, errors: Iterable[CartError] | None = None) -> None:
        self._errors: list[CartError] = list(errors or [])

    def add(self, code: str, message: str, data: dict[str, Any] | None = None) -> None:
        self._errors.append(CartError(code=code, message=message, data=data))

    def add_error(self, error: CartError) -> None:
        self._errors.append(error)

    def merge(self, other: CartErrors | Iterable[CartError]) -> None:
        for error in other:
            self._errors.append(error)

    def has_errors(self) -> bool:
        return bool(self._errors)

    def has_code(self, code: str) -> bool:
        return any(error.code == code for error in self._errors)

    def codes(self) -> list[str]:
        return [error.code for error in self._errors]

    def clear(self) -> None:
        self._errors.clear()

    def to_list(self) -> list[CartError]:
        return list(self._errors)

    def to_dicts(self) -> list[dict[str, Any]]:
        """Serialize as ``{code, message}`` pairs for the UI."""
        return [{"code": error.code, "message": error.message} for error in self._errors]

    def __iter__(self) -> Iterator[CartError]:
        return iter(self._errors)

    def __len__(self) -> int:
        return len(self._errors)

    def __bool__(self) -> bool:
        return self.has_errors()

    def __repr__(self) -> str:
        return f"CartErrors({self.codes()!r})"


__all__ = ["CartError", "CartErrors"]
