import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel, Field

from app.models.order import (
    OrderItemStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
)


def _strip_or_none(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    return v or None


class OrderCreate(SQLModel):
    """
    Payload for creating an order from the current cart.

    Backend derives:
      - user_id from token
      - status = PENDING
      - amounts and coupon snapshot from the cart
      - items from the cart
    """

    model_config = ConfigDict(extra="forbid")

    payment_method: PaymentMethod = PaymentMethod.COD
    notes: str | None = None
    customer_notes: str | None = None

    @field_validator("notes", "customer_notes")
    @classmethod
    def normalize_text(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class OrderRead(SQLModel):
    """
    Lightweight representation of an order (without items).
    """

    id: uuid.UUID
    order_number: str
    user_id: uuid.UUID
    status: OrderStatus
    subtotal: Decimal
    discount_total: Decimal
    total: Decimal
    refunded_amount: Decimal
    coupon_code: str | None
    notes: str | None
    customer_notes: str | None
    cancel_reason: str | None
    canceled_at: datetime | None
    completed_at: datetime | None
    created_at: datetime


class OrderPage(SQLModel):
    """
    One page of a customer's orders plus the total matching count.
    """

    orders: list[OrderRead]
    total_count: int
    skip: int
    limit: int


class OrderItemRead(SQLModel):
    """
    Representation of a single order line item.
    """

    id: uuid.UUID
    order_id: uuid.UUID
    product_id: uuid.UUID
    variant_id: uuid.UUID | None
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    status: OrderItemStatus
    canceled_at: datetime | None
    cancel_reason: str | None
    returned_at: datetime | None
    refund_id: uuid.UUID | None


class PaymentRead(SQLModel):
    id: uuid.UUID
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: str | None


class RefundRead(SQLModel):
    id: uuid.UUID
    order_id: uuid.UUID
    amount: Decimal
    reason: str | None
    refund_method: str | None
    status: RefundStatus
    created_at: datetime


class OrderWithItemsRead(OrderRead):
    """
    Full order view including items, payments and refunds.
    """

    items: list[OrderItemRead]
    payments: list[PaymentRead] = []
    refunds: list[RefundRead] = []


class OrderStatusUpdate(SQLModel):
    """
    Admin payload to change order status.
    """

    model_config = ConfigDict(extra="forbid")

    status: OrderStatus
    reason: str | None = None


class OrderCancelRequest(SQLModel):
    model_config = ConfigDict(extra="forbid")

    reason: str | None = None

    @field_validator("reason")
    @classmethod
    def normalize_reason(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class OrderItemsCancelRequest(OrderCancelRequest):
    item_ids: list[uuid.UUID] = Field(min_length=1)


class OrderCancelResult(SQLModel):
    order: OrderWithItemsRead
    refund: RefundRead | None = None
    total_refund_amount: Decimal


class ReturnRequest(SQLModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(min_length=1)
    refund_method: str = Field(min_length=1)


class ReturnResult(SQLModel):
    order_item_id: uuid.UUID
    refund_id: uuid.UUID
    refund_status: RefundStatus
    refund_amount: Decimal


class PaymentConfirm(SQLModel):
    model_config = ConfigDict(extra="forbid")

    transaction_id: str | None = None
