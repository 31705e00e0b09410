import uuid
from decimal import Decimal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel, Field


class CartItemCreate(SQLModel):
    """
    Payload for adding to cart.
    """

    model_config = ConfigDict(extra="forbid")

    product_id: uuid.UUID
    variant_id: uuid.UUID | None = None
    quantity: int = Field(gt=0)


class CartItemUpdate(SQLModel):
    """
    Payload for changing the quantity of a cart line.

    is_absolute=True  -> quantity is the new value
    is_absolute=False -> quantity is a delta (may be negative)
    A resulting quantity <= 0 removes the line.
    """

    model_config = ConfigDict(extra="forbid")

    variant_id: uuid.UUID | None = None
    quantity: int
    is_absolute: bool = True


class CartItemRead(SQLModel):
    """
    Read model for a single cart item, including line_total.
    """

    id: uuid.UUID
    product_id: uuid.UUID
    variant_id: uuid.UUID | None = None
    name: str | None = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class CartSummary(SQLModel):
    """
    Full cart response model with totals.

    ``id`` is None when the identity has no cart yet (empty projection).
    ``coupon_error`` explains why an applied coupon currently gives no discount.
    """

    id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    session_id: str | None = None
    items: list[CartItemRead] = []
    item_count: int = 0
    total_quantity: int = 0
    subtotal: Decimal = Decimal("0.00")
    discount_total: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")
    coupon_code: str | None = None
    coupon_is_automatic: bool = False
    coupon_error: str | None = None


class CartItemUpdateResult(SQLModel):
    removed: bool
    cart: CartSummary


class CouponApplyRequest(SQLModel):
    model_config = ConfigDict(extra="forbid")

    code: str

    @field_validator("code")
    @classmethod
    def not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("code cannot be empty")
        return v


class CouponApplyResult(SQLModel):
    code: str
    discount_amount: Decimal
    cart_total: Decimal
