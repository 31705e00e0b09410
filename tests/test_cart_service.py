import uuid
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from app.core.config import get_settings
from app.core.errors import LimitExceeded, NotFound, OutOfStock, ValidationFailed
from app.core.identity import AuthenticatedUser, Guest
from app.models.cart import CartItem


@pytest.fixture
def customer(make_user):
    return AuthenticatedUser(id=make_user().id)


@pytest.fixture
def guest():
    return Guest(session_id=f"guest-{uuid.uuid4().hex}")


def test_get_cart_without_cart_is_empty_projection(session, cart_service, guest):
    summary = cart_service.get_cart(session, guest)

    assert summary.id is None
    assert summary.session_id == guest.session_id
    assert summary.items == []
    assert summary.total == Decimal("0.00")


def test_add_item_creates_cart_and_line(session, cart_service, customer, make_product):
    product = make_product(price="12.50", stock=10, name="Mug")

    summary = cart_service.add_item(session, customer, product.id, None, 2)

    assert summary.id is not None
    assert summary.user_id == customer.id
    assert len(summary.items) == 1
    assert summary.items[0].name == "Mug"
    assert summary.items[0].line_total == Decimal("25.00")
    assert summary.subtotal == Decimal("25.00")
    assert summary.total_quantity == 2


def test_adding_same_product_merges_lines(session, cart_service, guest, make_product):
    product = make_product(stock=10)

    cart_service.add_item(session, guest, product.id, None, 1)
    summary = cart_service.add_item(session, guest, product.id, None, 2)

    assert summary.item_count == 1
    assert summary.items[0].quantity == 3
    rows = session.exec(select(CartItem)).all()
    assert len(rows) == 1


def test_variants_are_separate_lines(
    session, cart_service, guest, make_product, make_variant
):
    product = make_product(price="20.00", stock=10)
    variant = make_variant(product, stock=3, price="22.00")

    cart_service.add_item(session, guest, product.id, None, 1)
    summary = cart_service.add_item(session, guest, product.id, variant.id, 1)

    assert summary.item_count == 2
    assert [it.variant_id for it in summary.items] == [None, variant.id]
    assert summary.items[1].unit_price == Decimal("22.00")
    assert summary.subtotal == Decimal("42.00")


def test_variant_of_other_product_is_rejected(
    session, cart_service, guest, make_product, make_variant
):
    product = make_product()
    other = make_product(name="Other")
    variant = make_variant(other)

    with pytest.raises(NotFound):
        cart_service.add_item(session, guest, product.id, variant.id, 1)


def test_inactive_product_is_rejected(session, cart_service, guest, make_product):
    product = make_product(is_active=False)

    with pytest.raises(NotFound):
        cart_service.add_item(session, guest, product.id, None, 1)


def test_quantity_must_be_positive(session, cart_service, guest, make_product):
    product = make_product()

    with pytest.raises(ValidationFailed):
        cart_service.add_item(session, guest, product.id, None, 0)


def test_stock_checked_before_cap(session, cart_service, guest, make_product):
    product = make_product(stock=3)

    cart_service.add_item(session, guest, product.id, None, 2)
    with pytest.raises(OutOfStock):
        cart_service.add_item(session, guest, product.id, None, 2)

    summary = cart_service.get_cart(session, guest)
    assert summary.items[0].quantity == 2


def test_per_line_cap(session, cart_service, guest, make_product):
    product = make_product(stock=100)

    cart_service.add_item(session, guest, product.id, None, 5)
    with pytest.raises(LimitExceeded):
        cart_service.add_item(session, guest, product.id, None, 1)


def test_per_line_cap_can_be_disabled(
    session, cart_service, guest, make_product, monkeypatch
):
    monkeypatch.setattr(get_settings(), "CART_MAX_QUANTITY_PER_ITEM", None)
    product = make_product(stock=100)

    summary = cart_service.add_item(session, guest, product.id, None, 40)

    assert summary.total_quantity == 40


def test_update_item_absolute_and_relative(session, cart_service, customer, make_product):
    product = make_product(stock=10)
    cart_service.add_item(session, customer, product.id, None, 2)

    result = cart_service.update_item(session, customer, product.id, None, 4)
    assert result.removed is False
    assert result.cart.items[0].quantity == 4

    result = cart_service.update_item(
        session, customer, product.id, None, -1, is_absolute=False
    )
    assert result.cart.items[0].quantity == 3


def test_update_item_to_zero_removes_line(session, cart_service, customer, make_product):
    product = make_product(stock=10)
    cart_service.add_item(session, customer, product.id, None, 2)

    result = cart_service.update_item(
        session, customer, product.id, None, -5, is_absolute=False
    )

    assert result.removed is True
    assert result.cart.items == []


def test_update_item_not_in_cart(session, cart_service, customer, make_product):
    a = make_product(name="A")
    b = make_product(name="B")
    cart_service.add_item(session, customer, a.id, None, 1)

    with pytest.raises(NotFound):
        cart_service.update_item(session, customer, b.id, None, 1)


def test_update_item_above_stock(session, cart_service, customer, make_product):
    product = make_product(stock=3)
    cart_service.add_item(session, customer, product.id, None, 1)

    with pytest.raises(OutOfStock):
        cart_service.update_item(session, customer, product.id, None, 4)


def test_remove_item_is_noop_for_missing_line(session, cart_service, guest, make_product):
    a = make_product(name="A")
    b = make_product(name="B")
    cart_service.add_item(session, guest, a.id, None, 1)

    summary = cart_service.remove_item(session, guest, b.id)
    assert summary.item_count == 1

    summary = cart_service.remove_item(session, guest, a.id)
    assert summary.item_count == 0


def test_remove_item_without_cart(session, cart_service, guest, make_product):
    with pytest.raises(NotFound):
        cart_service.remove_item(session, guest, make_product().id)


def test_clear_cart_drops_lines_and_coupon(
    session, cart_service, coupon_service, guest, make_product, make_coupon
):
    product = make_product(price="30.00")
    make_coupon("SAVE10")
    cart_service.add_item(session, guest, product.id, None, 1)
    coupon_service.apply_coupon(session, guest, "save10")

    summary = cart_service.clear_cart(session, guest)

    assert summary.items == []
    assert summary.coupon_code is None
    assert summary.total == Decimal("0.00")


def test_lines_keep_insertion_order(session, cart_service, guest, make_product):
    products = [make_product(name=f"P{i}") for i in range(3)]
    for p in reversed(products):
        cart_service.add_item(session, guest, p.id, None, 1)

    summary = cart_service.get_cart(session, guest)

    assert [it.name for it in summary.items] == ["P2", "P1", "P0"]


# ---- merge ----


def test_merge_sums_and_moves_lines(session, cart_service, customer, guest, make_product):
    shared = make_product(name="Shared", stock=10)
    only_guest = make_product(name="Guest only", stock=10)

    cart_service.add_item(session, customer, shared.id, None, 1)
    cart_service.add_item(session, guest, shared.id, None, 2)
    cart_service.add_item(session, guest, only_guest.id, None, 1)

    summary = cart_service.merge_guest_cart(session, customer.id, guest.session_id)

    quantities = {it.name: it.quantity for it in summary.items}
    assert quantities == {"Shared": 3, "Guest only": 1}
    assert cart_service.get_cart(session, guest).id is None


def test_merge_clamps_to_stock_and_cap(
    session, cart_service, customer, guest, make_product
):
    scarce = make_product(name="Scarce", stock=3)
    plenty = make_product(name="Plenty", stock=100)

    cart_service.add_item(session, customer, scarce.id, None, 2)
    cart_service.add_item(session, guest, scarce.id, None, 2)
    cart_service.add_item(session, customer, plenty.id, None, 4)
    cart_service.add_item(session, guest, plenty.id, None, 4)

    summary = cart_service.merge_guest_cart(session, customer.id, guest.session_id)

    quantities = {it.name: it.quantity for it in summary.items}
    assert quantities == {"Scarce": 3, "Plenty": 5}


def test_merge_creates_user_cart_and_keeps_guest_coupon(
    session, cart_service, coupon_service, customer, guest, make_product, make_coupon
):
    product = make_product(price="40.00")
    make_coupon("WELCOME")
    cart_service.add_item(session, guest, product.id, None, 1)
    coupon_service.apply_coupon(session, guest, "WELCOME")

    summary = cart_service.merge_guest_cart(session, customer.id, guest.session_id)

    assert summary.user_id == customer.id
    assert summary.coupon_code == "WELCOME"
    assert summary.discount_total == Decimal("4.00")


def test_merge_is_idempotent(session, cart_service, customer, guest, make_product):
    product = make_product(stock=10)
    cart_service.add_item(session, guest, product.id, None, 2)

    first = cart_service.merge_guest_cart(session, customer.id, guest.session_id)
    second = cart_service.merge_guest_cart(session, customer.id, guest.session_id)

    assert first.items[0].quantity == 2
    assert second.items[0].quantity == 2
    assert second.id == first.id


def test_merge_without_guest_cart(session, cart_service, customer):
    summary = cart_service.merge_guest_cart(session, customer.id, "nobody")

    assert summary.id is None
    assert summary.items == []


def test_duplicate_variantless_line_is_rejected_by_database(
    session, cart_service, guest, make_product
):
    product = make_product(price="10.00")
    summary = cart_service.add_item(session, guest, product.id, None, 1)

    session.add(
        CartItem(
            cart_id=summary.id,
            product_id=product.id,
            variant_id=None,
            quantity=1,
            unit_price=Decimal("10.00"),
        )
    )
    with pytest.raises(IntegrityError):
        session.commit()
    session.rollback()

    rows = session.exec(select(CartItem).where(CartItem.cart_id == summary.id)).all()
    assert len(rows) == 1
