import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.errors import (
    DuplicateCode,
    EmptyCart,
    Expired,
    InvalidState,
    NotEligible,
    NotFound,
    UsageLimitReached,
    ValidationFailed,
)
from app.core.identity import AuthenticatedUser, Guest
from app.models.coupon import CouponScope, CouponStatus, DiscountType
from app.schemas.coupon import CouponCreate, CouponUpdate
from app.schemas.order import OrderCreate


@pytest.fixture
def customer(make_user):
    return AuthenticatedUser(id=make_user().id)


@pytest.fixture
def guest():
    return Guest(session_id=f"guest-{uuid.uuid4().hex}")


def now():
    return datetime.now(timezone.utc)


# ---- admin CRUD ----


def test_create_coupon_normalizes_code(session, coupon_service):
    coupon = coupon_service.create_coupon(
        session,
        CouponCreate(
            code="  summer10 ",
            name="Summer",
            discount_type=DiscountType.PERCENTAGE,
            value=Decimal("10"),
        ),
    )

    assert coupon.code == "SUMMER10"
    assert coupon.usage_count == 0
    assert coupon_service.get_coupon_by_code(session, "summer10").id == coupon.id


def test_create_coupon_rejects_duplicate_code(session, coupon_service, make_coupon):
    make_coupon("DUP")

    with pytest.raises(DuplicateCode):
        coupon_service.create_coupon(
            session,
            CouponCreate(
                code="dup",
                name="Again",
                discount_type=DiscountType.FIXED_AMOUNT,
                value=Decimal("5"),
            ),
        )


def test_create_coupon_validates_window_and_value(session, coupon_service):
    with pytest.raises(ValidationFailed):
        coupon_service.create_coupon(
            session,
            CouponCreate(
                code="BADWINDOW",
                name="Bad",
                discount_type=DiscountType.PERCENTAGE,
                value=Decimal("10"),
                start_date=now() + timedelta(days=2),
                end_date=now() + timedelta(days=1),
            ),
        )

    with pytest.raises(ValidationFailed):
        coupon_service.create_coupon(
            session,
            CouponCreate(
                code="TOOMUCH",
                name="Too much",
                discount_type=DiscountType.PERCENTAGE,
                value=Decimal("150"),
            ),
        )


def test_update_coupon_changes_only_sent_fields(session, coupon_service, make_coupon):
    coupon = make_coupon("EDIT", priority=3)

    updated = coupon_service.update_coupon(
        session, coupon.id, CouponUpdate(name="Edited", value=Decimal("20"))
    )

    assert updated.name == "Edited"
    assert updated.value == Decimal("20.00")
    assert updated.priority == 3


def test_update_coupon_code_collision(session, coupon_service, make_coupon):
    make_coupon("TAKEN")
    coupon = make_coupon("MINE")

    with pytest.raises(DuplicateCode):
        coupon_service.update_coupon(session, coupon.id, CouponUpdate(code="taken"))


def test_soft_delete_hides_coupon_and_detaches_from_carts(
    session, coupon_service, cart_service, guest, make_product, make_coupon
):
    coupon = make_coupon("GONE")
    cart_service.add_item(session, guest, make_product(price="20.00").id, None, 1)
    coupon_service.apply_coupon(session, guest, "GONE")

    coupon_service.delete_coupon(session, coupon.id)

    with pytest.raises(NotFound):
        coupon_service.get_coupon(session, coupon.id)
    assert coupon_service.list_coupons(session) == []
    assert cart_service.get_cart(session, guest).coupon_code is None


def test_hard_delete_refused_after_redemption(
    session, coupon_service, cart_service, order_service, customer, make_product, make_coupon
):
    coupon = make_coupon("USED")
    cart_service.add_item(session, customer, make_product(price="20.00").id, None, 1)
    coupon_service.apply_coupon(session, customer, "USED")
    order_service.create_order(session, customer.id, OrderCreate())

    with pytest.raises(InvalidState):
        coupon_service.delete_coupon(session, coupon.id, hard=True)


def test_hard_delete_without_usage(session, coupon_service, make_coupon):
    coupon = make_coupon("UNUSED")

    coupon_service.delete_coupon(session, coupon.id, hard=True)

    with pytest.raises(NotFound):
        coupon_service.get_coupon(session, coupon.id)


# ---- apply / remove ----


def test_apply_coupon_returns_discount_and_total(
    session, coupon_service, cart_service, customer, make_product, make_coupon
):
    make_coupon("TENOFF", maximum_discount_amount="4.00")
    a = make_product(price="10.00", name="A")
    b = make_product(price="30.00", name="B")
    cart_service.add_item(session, customer, a.id, None, 2)
    cart_service.add_item(session, customer, b.id, None, 1)

    result = coupon_service.apply_coupon(session, customer, "tenoff")

    assert result.code == "TENOFF"
    assert result.discount_amount == Decimal("4.00")
    assert result.cart_total == Decimal("46.00")

    summary = cart_service.get_cart(session, customer)
    assert summary.coupon_code == "TENOFF"
    assert summary.coupon_is_automatic is False
    assert summary.total == Decimal("46.00")


def test_apply_coupon_error_order(
    session, coupon_service, cart_service, guest, make_product, make_coupon
):
    with pytest.raises(NotFound):
        coupon_service.apply_coupon(session, guest, "NOPE")

    make_coupon("LATER", start_date=now() + timedelta(days=1))
    with pytest.raises(Expired):
        coupon_service.apply_coupon(session, guest, "LATER")

    make_coupon("OVER", end_date=now() - timedelta(minutes=1))
    with pytest.raises(Expired):
        coupon_service.apply_coupon(session, guest, "OVER")

    make_coupon("OFF", status=CouponStatus.INACTIVE)
    with pytest.raises(Expired):
        coupon_service.apply_coupon(session, guest, "OFF")

    make_coupon("FINE")
    with pytest.raises(NotFound):
        coupon_service.apply_coupon(session, guest, "FINE")

    product = make_product()
    cart_service.add_item(session, guest, product.id, None, 1)
    cart_service.remove_item(session, guest, product.id)
    with pytest.raises(EmptyCart):
        coupon_service.apply_coupon(session, guest, "FINE")


def test_apply_coupon_below_minimum(
    session, coupon_service, cart_service, guest, make_product, make_coupon
):
    make_coupon("BIGSPENDER", minimum_order_amount="100.00")
    cart_service.add_item(session, guest, make_product(price="20.00").id, None, 1)

    with pytest.raises(NotEligible):
        coupon_service.apply_coupon(session, guest, "BIGSPENDER")


def test_apply_scoped_coupon_without_matching_items(
    session, coupon_service, cart_service, guest, make_product, make_coupon
):
    make_coupon(
        "HATS",
        scope=CouponScope.SPECIFIC_CATEGORIES,
        applicable_category_ids=[str(uuid.uuid4())],
    )
    cart_service.add_item(session, guest, make_product().id, None, 1)

    with pytest.raises(NotEligible):
        coupon_service.apply_coupon(session, guest, "HATS")


def test_one_time_coupon_cannot_be_reused(
    session, coupon_service, cart_service, order_service, customer, make_product, make_coupon
):
    make_coupon("ONCE", is_one_time_use=True)
    product = make_product(price="20.00", stock=10)

    cart_service.add_item(session, customer, product.id, None, 1)
    coupon_service.apply_coupon(session, customer, "ONCE")
    order_service.create_order(session, customer.id, OrderCreate())

    cart_service.add_item(session, customer, product.id, None, 1)
    with pytest.raises(UsageLimitReached):
        coupon_service.apply_coupon(session, customer, "ONCE")


def test_customer_usage_limit(
    session, coupon_service, cart_service, order_service, customer, make_product, make_coupon
):
    coupon = make_coupon("TWICE", customer_usage_limit=2)
    product = make_product(price="20.00", stock=10)

    for _ in range(2):
        cart_service.add_item(session, customer, product.id, None, 1)
        coupon_service.apply_coupon(session, customer, "TWICE")
        order_service.create_order(session, customer.id, OrderCreate())

    cart_service.add_item(session, customer, product.id, None, 1)
    with pytest.raises(UsageLimitReached):
        coupon_service.apply_coupon(session, customer, "TWICE")

    session.refresh(coupon)
    assert coupon.usage_count == 2


def test_remove_coupon(session, coupon_service, cart_service, guest, make_product, make_coupon):
    make_coupon("BYE")
    cart_service.add_item(session, guest, make_product().id, None, 1)
    coupon_service.apply_coupon(session, guest, "BYE")

    with pytest.raises(NotFound):
        coupon_service.remove_coupon(session, guest, "OTHER")

    coupon_service.remove_coupon(session, guest, "bye")

    assert cart_service.get_cart(session, guest).coupon_code is None
    with pytest.raises(NotFound):
        coupon_service.remove_coupon(session, guest, "BYE")


# ---- live quote ----


def test_best_automatic_coupon_is_shown(
    session, cart_service, guest, make_product, make_coupon
):
    make_coupon("AUTO_LOW", is_automatically_applied=True, priority=1, value=Decimal("50"))
    make_coupon("AUTO_HIGH", is_automatically_applied=True, priority=2, value=Decimal("5"))
    make_coupon("MANUAL", value=Decimal("90"))

    summary = cart_service.add_item(session, guest, make_product(price="100.00").id, None, 1)

    assert summary.coupon_code == "AUTO_HIGH"
    assert summary.coupon_is_automatic is True
    assert summary.discount_total == Decimal("5.00")
    assert summary.total == Decimal("95.00")


def test_applied_coupon_that_stops_qualifying_shows_reason(
    session, coupon_service, cart_service, guest, make_product, make_coupon
):
    make_coupon("MIN50", minimum_order_amount="50.00")
    product = make_product(price="30.00", stock=10)
    cart_service.add_item(session, guest, product.id, None, 2)
    coupon_service.apply_coupon(session, guest, "MIN50")

    result = cart_service.update_item(session, guest, product.id, None, 1)

    assert result.cart.coupon_code is None
    assert result.cart.discount_total == Decimal("0.00")
    assert result.cart.coupon_error is not None
