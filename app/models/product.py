import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlmodel import SQLModel, Field


class Product(SQLModel, table=True):
    """
    Catalog entry as seen by the cart and order core.

    Stock for lines without a variant lives in ``stock_on_hand`` here;
    lines with a variant draw from ``ProductVariant.stock_on_hand``.
    """

    __tablename__ = "products"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    name: str = Field(
        max_length=100,
        index=True,
        description="Display name",
    )

    sku: str | None = Field(
        default=None,
        max_length=64,
        description="Stock keeping unit",
    )

    category_id: uuid.UUID | None = Field(
        default=None,
        index=True,
        description="Category used by category-scoped coupons",
    )

    price: Decimal = Field(
        gt=0,
        max_digits=12,
        decimal_places=2,
        description="Unit price",
    )

    stock_on_hand: int = Field(
        default=0,
        ge=0,
        description="How many units currently in stock",
    )

    is_active: bool = Field(
        default=True,
        index=True,
        description="Whether this product can be added to carts",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )


class ProductVariant(SQLModel, table=True):
    """
    Size / color variant of a product with its own stock.
    """

    __tablename__ = "product_variants"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    product_id: uuid.UUID = Field(
        foreign_key="products.id",
        index=True,
        description="FK to products.id",
    )

    name: str = Field(
        max_length=100,
        description="e.g. 'M / Blue'",
    )

    sku: str | None = Field(default=None, max_length=64)

    # None => inherit Product.price
    price: Decimal | None = Field(
        default=None,
        max_digits=12,
        decimal_places=2,
    )

    stock_on_hand: int = Field(
        default=0,
        ge=0,
        description="How many units of this variant are in stock",
    )
