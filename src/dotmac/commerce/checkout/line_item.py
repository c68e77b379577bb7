"""
Line item value type.

A line item is one priced unit of a cart: a product charge, a setup fee, a
discount or a credit. Its derived totals are a pure function of its
attributes and are recomputed by ``recalculate_totals()``; nothing is
rounded here, the cart rounds when it reads a total.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from dotmac.commerce.checkout.models import (
    DiscountType,
    DurationUnit,
    LineItemType,
    PaymentLineItem,
    Product,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def generate_line_item_id() -> str:
    return f"LN_{uuid4().hex}"


class LineItem(BaseModel):
    """One priced unit of a cart."""

    model_config = ConfigDict(validate_assignment=False, arbitrary_types_allowed=True)

    id: str = Field(default_factory=generate_line_item_id)
    type: LineItemType = LineItemType.PRODUCT

    product: Product | None = Field(None, exclude=True)
    product_id: int | None = None
    product_slug: str | None = None

    title: str = ""
    description: str = ""
    unit_price: Decimal = ZERO
    quantity: int = 1

    duration: int | None = None
    duration_unit: DurationUnit | None = None
    billing_cycles: int = 0
    recurring: bool = False

    taxable: bool = False
    tax_category: str = ""
    tax_rate: Decimal = ZERO
    tax_type: DiscountType = DiscountType.PERCENTAGE
    tax_label: str = ""
    tax_inclusive: bool = False
    tax_exempt: bool = False

    discountable: bool = False
    discount_rate: Decimal = ZERO
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_label: str = ""
    apply_discount_to_renewals: bool = True

    subtotal: Decimal = ZERO
    discount_total: Decimal = ZERO
    tax_total: Decimal = ZERO
    total: Decimal = ZERO

    def model_post_init(self, __context: Any) -> None:
        if self.product is not None and self.product_id is None:
            self.product_id = self.product.id
        self.recalculate_totals()

    @classmethod
    def from_product(cls, product: Product, **attributes: Any) -> LineItem:
        """Build a line item whose defaults come from a catalog product."""
        data: dict[str, Any] = {
            "type": LineItemType.PRODUCT,
            "product": product,
            "product_id": product.id,
            "product_slug": product.slug,
            "title": product.name,
            "unit_price": product.amount,
            "duration": product.duration,
            "duration_unit": product.duration_unit,
            "billing_cycles": product.billing_cycles,
            "recurring": product.recurring,
            "taxable": product.taxable,
            "tax_category": product.tax_category,
            "discountable": True,
        }
        data.update(attributes)
        return cls(**data)

    @classmethod
    def from_payment_line_item(
        cls, snapshot: PaymentLineItem, product: Product | None = None
    ) -> LineItem:
        """Restore a line item stored on a payment."""
        data = snapshot.model_dump(exclude={"subtotal", "discount_total", "tax_total", "total"})
        return cls(product=product, **data)

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    def _discount_for(self, subtotal: Decimal) -> Decimal:
        if not self.discount_rate:
            return ZERO

        if self.discount_type == DiscountType.PERCENTAGE:
            discount = subtotal * self.discount_rate / HUNDRED
        else:
            discount = self.discount_rate

        if subtotal > 0:
            discount = min(discount, subtotal)
        return discount

    def _tax_for(self, amount: Decimal) -> Decimal:
        if not self.taxable or self.tax_exempt or not self.tax_rate:
            return ZERO

        if self.tax_type == DiscountType.ABSOLUTE:
            return self.tax_rate

        if self.tax_inclusive:
            return amount - amount / (1 + self.tax_rate / HUNDRED)
        return amount * self.tax_rate / HUNDRED

    def recalculate_totals(self) -> LineItem:
        """Recompute subtotal, discount, tax and total from the attributes."""
        subtotal = self.unit_price * self.quantity
        discount_total = self._discount_for(subtotal)
        discounted = subtotal - discount_total
        tax_total = self._tax_for(discounted)

        self.subtotal = subtotal
        self.discount_total = discount_total
        self.tax_total = tax_total
        self.total = discounted if self.tax_inclusive else discounted + tax_total
        return self

    def attributes(self, **changes: Any) -> LineItem:
        """Update attributes in place; call ``recalculate_totals`` afterwards."""
        for key, value in changes.items():
            if key not in type(self).model_fields:
                raise AttributeError(f"LineItem has no attribute {key!r}")
            setattr(self, key, value)
        return self

    def clone(self, **changes: Any) -> LineItem:
        """Recalculated copy with some attributes changed."""
        copy = self.model_copy(update=changes)
        return copy.recalculate_totals()

    # ------------------------------------------------------------------
    # Queries and serialization
    # ------------------------------------------------------------------

    def is_recurring(self) -> bool:
        return self.recurring

    def is_taxable(self) -> bool:
        return self.taxable

    def is_discountable(self) -> bool:
        return self.discountable

    def should_apply_discount_to_renewals(self) -> bool:
        return self.apply_discount_to_renewals

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_payment_line_item(self) -> PaymentLineItem:
        return PaymentLineItem(**self.model_dump(exclude={"product"}))


__all__ = ["LineItem", "generate_line_item_id"]
