import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlmodel import SQLModel, Field


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    ON_HOLD = "ON_HOLD"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"


class OrderItemStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    RETURNED = "RETURNED"


class PaymentMethod(str, Enum):
    CARD = "CARD"
    COD = "COD"
    WALLET = "WALLET"
    BANK_TRANSFER = "BANK_TRANSFER"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class Order(SQLModel, table=True):
    """
    Customer order, created from a cart at checkout.

    Money fields are frozen at creation; only ``refunded_amount`` moves
    afterwards and it never exceeds ``total``.
    """

    __tablename__ = "orders"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_number: str = Field(
        max_length=32,
        unique=True,
        index=True,
        description="Human-friendly number, e.g. CL-20250518-48213",
    )

    user_id: uuid.UUID = Field(
        foreign_key="users.id",
        index=True,
    )

    status: OrderStatus = Field(
        default=OrderStatus.PENDING,
        index=True,
        description="Order status lifecycle",
    )

    subtotal: Decimal = Field(max_digits=12, decimal_places=2)
    discount_total: Decimal = Field(
        default=Decimal("0.00"), max_digits=12, decimal_places=2
    )
    total: Decimal = Field(max_digits=12, decimal_places=2)
    refunded_amount: Decimal = Field(
        default=Decimal("0.00"), max_digits=12, decimal_places=2
    )

    # Frozen coupon snapshot
    coupon_id: uuid.UUID | None = Field(default=None, foreign_key="coupons.id")
    coupon_code: str | None = Field(default=None, max_length=64)

    notes: str | None = None
    customer_notes: str | None = None

    cancel_reason: str | None = None
    canceled_at: datetime | None = None
    # Set when the order is DELIVERED; start of the return window
    completed_at: datetime | None = None

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


class OrderItem(SQLModel, table=True):
    """
    Immutable snapshot of a cart line, with its own cancel/return sub-state.
    """

    __tablename__ = "order_items"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(
        foreign_key="orders.id",
        index=True,
    )

    product_id: uuid.UUID = Field(
        foreign_key="products.id",
        index=True,
    )

    variant_id: uuid.UUID | None = Field(
        default=None,
        foreign_key="product_variants.id",
    )

    name: str = Field(max_length=100)
    sku: str | None = Field(default=None, max_length=64)

    quantity: int = Field(
        gt=0,
        description="Quantity ordered (>=1)",
    )

    unit_price: Decimal = Field(
        max_digits=12,
        decimal_places=2,
        description="Unit price at time of order",
    )

    line_total: Decimal = Field(max_digits=12, decimal_places=2)

    # Same order as the cart lines it was created from
    position: int = Field(default=0)

    status: OrderItemStatus = Field(default=OrderItemStatus.ACTIVE, index=True)

    canceled_at: datetime | None = None
    cancel_reason: str | None = None
    returned_at: datetime | None = None
    return_reason: str | None = None

    refund_id: uuid.UUID | None = Field(default=None, foreign_key="refunds.id")


class Payment(SQLModel, table=True):
    """
    Minimal payment record. Only ``status == PAID`` matters to the core:
    it decides whether cancellations create a Refund.
    """

    __tablename__ = "payments"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)

    amount: Decimal = Field(max_digits=12, decimal_places=2)
    method: PaymentMethod
    status: PaymentStatus = Field(default=PaymentStatus.PENDING)
    transaction_id: str | None = None

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


class Refund(SQLModel, table=True):
    __tablename__ = "refunds"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)

    amount: Decimal = Field(max_digits=12, decimal_places=2)
    reason: str | None = None
    notes: str | None = None
    refund_method: str | None = None
    status: RefundStatus = Field(default=RefundStatus.PENDING)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
