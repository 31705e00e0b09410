import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel, Field

from app.models.coupon import CouponScope, CouponStatus, DiscountType


class CouponBase(SQLModel):
    """
    Shared coupon fields (admin payloads).
    """

    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    discount_type: DiscountType
    value: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    scope: CouponScope = CouponScope.ALL_PRODUCTS
    applicable_product_ids: list[uuid.UUID] = []
    applicable_category_ids: list[uuid.UUID] = []
    minimum_order_amount: Decimal | None = Field(default=None, ge=0)
    maximum_discount_amount: Decimal | None = Field(default=None, gt=0)
    is_automatically_applied: bool = False
    is_one_time_use: bool = False
    customer_usage_limit: int | None = Field(default=None, ge=1)
    priority: int = 1
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: CouponStatus = CouponStatus.ACTIVE


class CouponCreate(CouponBase):
    """
    Payload for creating a coupon. ``code`` is normalized by the service.
    """

    model_config = ConfigDict(extra="forbid")

    code: str = Field(min_length=1, max_length=64)

    @field_validator("code")
    @classmethod
    def strip_code(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("code cannot be empty")
        return v


class CouponUpdate(SQLModel):
    """
    Partial update; only fields that are sent are changed.
    """

    model_config = ConfigDict(extra="forbid")

    code: str | None = Field(default=None, min_length=1, max_length=64)
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    discount_type: DiscountType | None = None
    value: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    scope: CouponScope | None = None
    applicable_product_ids: list[uuid.UUID] | None = None
    applicable_category_ids: list[uuid.UUID] | None = None
    minimum_order_amount: Decimal | None = Field(default=None, ge=0)
    maximum_discount_amount: Decimal | None = Field(default=None, gt=0)
    is_automatically_applied: bool | None = None
    is_one_time_use: bool | None = None
    customer_usage_limit: int | None = Field(default=None, ge=1)
    priority: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: CouponStatus | None = None


class CouponRead(SQLModel):
    id: uuid.UUID
    code: str
    name: str
    description: str | None
    discount_type: DiscountType
    value: Decimal
    scope: CouponScope
    applicable_product_ids: list[str]
    applicable_category_ids: list[str]
    minimum_order_amount: Decimal | None
    maximum_discount_amount: Decimal | None
    is_automatically_applied: bool
    is_one_time_use: bool
    customer_usage_limit: int | None
    usage_count: int
    priority: int
    start_date: datetime
    end_date: datetime | None
    status: CouponStatus
    created_at: datetime
