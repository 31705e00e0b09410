import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class CouponScope(str, Enum):
    ALL_PRODUCTS = "ALL_PRODUCTS"
    SPECIFIC_PRODUCTS = "SPECIFIC_PRODUCTS"
    SPECIFIC_CATEGORIES = "SPECIFIC_CATEGORIES"


class CouponStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class Coupon(SQLModel, table=True):
    """
    Discount coupon managed by administrators.

    ``code`` is stored normalized (stripped, upper-case) and is unique.
    Scoped coupons list the product / category ids they apply to.
    """

    __tablename__ = "coupons"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    code: str = Field(
        max_length=64,
        unique=True,
        index=True,
    )

    name: str = Field(max_length=100)
    description: str | None = None

    discount_type: DiscountType
    value: Decimal = Field(
        max_digits=12,
        decimal_places=2,
        description="Percent (0-100] for PERCENTAGE, amount for FIXED_AMOUNT",
    )

    scope: CouponScope = Field(default=CouponScope.ALL_PRODUCTS)
    applicable_product_ids: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    applicable_category_ids: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )

    minimum_order_amount: Decimal | None = Field(
        default=None, max_digits=12, decimal_places=2
    )
    maximum_discount_amount: Decimal | None = Field(
        default=None, max_digits=12, decimal_places=2
    )

    is_automatically_applied: bool = Field(default=False, index=True)
    is_one_time_use: bool = Field(default=False)
    customer_usage_limit: int | None = Field(default=None, ge=1)
    usage_count: int = Field(default=0, ge=0)

    # Higher wins when several automatic coupons qualify
    priority: int = Field(default=1)

    start_date: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    end_date: datetime | None = None

    status: CouponStatus = Field(default=CouponStatus.ACTIVE, index=True)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    deleted_at: datetime | None = None


class CouponUsage(SQLModel, table=True):
    """
    One row per successful redemption (written at order creation).
    """

    __tablename__ = "coupon_usages"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    coupon_id: uuid.UUID = Field(foreign_key="coupons.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)

    discount_amount: Decimal = Field(max_digits=12, decimal_places=2)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
