import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, UniqueConstraint, text
from sqlmodel import SQLModel, Field


class Cart(SQLModel, table=True):
    """
    Shopping cart owned by exactly one identity:
    an authenticated user (user_id) or a guest session (session_id).
    """

    __tablename__ = "carts"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (session_id IS NULL)",
            name="cart_single_owner",
        ),
    )

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    user_id: uuid.UUID | None = Field(
        default=None,
        foreign_key="users.id",
        unique=True,
        index=True,
    )

    session_id: str | None = Field(
        default=None,
        max_length=128,
        unique=True,
        index=True,
    )

    # Manually applied coupon; totals are re-evaluated on every read
    coupon_id: uuid.UUID | None = Field(
        default=None,
        foreign_key="coupons.id",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


class CartItem(SQLModel, table=True):
    """
    Cart line. One cart cannot have 2 rows for the same (product, variant).
    NULL variant ids compare as distinct, so variant-less lines get their
    own partial unique index.
    """

    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", "variant_id", name="uq_cart_line"),
        Index(
            "uq_cart_line_no_variant",
            "cart_id",
            "product_id",
            unique=True,
            postgresql_where=text("variant_id IS NULL"),
            sqlite_where=text("variant_id IS NULL"),
        ),
    )

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    cart_id: uuid.UUID = Field(
        foreign_key="carts.id",
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

    quantity: int = Field(
        gt=0,
        description="Must be >= 1",
    )

    unit_price: Decimal = Field(
        max_digits=12,
        decimal_places=2,
        description="Price when added to cart",
    )

    # Insertion order inside the cart
    position: int = Field(default=0)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
