"""Pytest fixtures for the storefront core tests."""

import os

# Settings are read at import time (engine, JWT secret), so set them first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from jose import jwt
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.core.identity import Role
from app.models.cart import Cart, CartItem  # noqa: F401
from app.models.coupon import Coupon, CouponUsage, DiscountType  # noqa: F401
from app.models.order import Order, OrderItem, Payment, Refund  # noqa: F401
from app.models.product import Product, ProductVariant
from app.models.user import User
from app.repositories.cart_repo import CartRepository
from app.repositories.coupon_repo import CouponRepository
from app.repositories.inventory_repo import InventoryRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.product_repo import ProductRepository
from app.services.cart_service import CartService
from app.services.coupon_service import CouponService
from app.services.inventory_service import InventoryService
from app.services.order_service import OrderService

JWT_SECRET = os.environ["JWT_SECRET"]


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


# ---- services ----


@pytest.fixture
def inventory_service():
    return InventoryService(InventoryRepository())


@pytest.fixture
def coupon_service():
    return CouponService(CouponRepository(), CartRepository(), ProductRepository())


@pytest.fixture
def cart_service(inventory_service, coupon_service):
    return CartService(
        CartRepository(), ProductRepository(), inventory_service, coupon_service
    )


@pytest.fixture
def order_service(inventory_service, coupon_service):
    return OrderService(
        OrderRepository(),
        CartRepository(),
        ProductRepository(),
        inventory_service,
        coupon_service,
    )


# ---- seed helpers ----


@pytest.fixture
def make_user(session):
    def _make(role: Role = Role.CUSTOMER, email: str | None = None) -> User:
        user_id = uuid.uuid4()
        user = User(
            id=user_id,
            email=email or f"{user_id.hex[:8]}@example.com",
            name="tester",
            role=role,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_product(session):
    def _make(
        price: str = "10.00",
        stock: int = 10,
        name: str = "Product",
        category_id: uuid.UUID | None = None,
        is_active: bool = True,
    ) -> Product:
        product = Product(
            name=name,
            price=Decimal(price),
            stock_on_hand=stock,
            category_id=category_id,
            is_active=is_active,
        )
        session.add(product)
        session.commit()
        session.refresh(product)
        return product

    return _make


@pytest.fixture
def make_variant(session):
    def _make(
        product: Product,
        stock: int = 10,
        price: str | None = None,
        name: str = "M / Blue",
    ) -> ProductVariant:
        variant = ProductVariant(
            product_id=product.id,
            name=name,
            price=Decimal(price) if price is not None else None,
            stock_on_hand=stock,
        )
        session.add(variant)
        session.commit()
        session.refresh(variant)
        return variant

    return _make


@pytest.fixture
def make_coupon(session):
    def _make(code: str = "SAVE10", **overrides) -> Coupon:
        fields = dict(
            code=code,
            name=code.title(),
            discount_type=DiscountType.PERCENTAGE,
            value=Decimal("10"),
            start_date=datetime.now(timezone.utc) - timedelta(days=1),
        )
        fields.update(overrides)
        for key in ("value", "minimum_order_amount", "maximum_discount_amount"):
            if isinstance(fields.get(key), str):
                fields[key] = Decimal(fields[key])
        coupon = Coupon(**fields)
        session.add(coupon)
        session.commit()
        session.refresh(coupon)
        return coupon

    return _make


def make_token(user: User, expires_in: timedelta = timedelta(hours=1)) -> str:
    return jwt.encode(
        {
            "sub": str(user.id),
            "email": user.email,
            "exp": datetime.now(timezone.utc) + expires_in,
        },
        JWT_SECRET,
        algorithm="HS256",
    )


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user)}"}
