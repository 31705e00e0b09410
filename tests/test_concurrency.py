import threading
import uuid

import pytest
from sqlmodel import Session, SQLModel, create_engine, select

from app.core.errors import CommerceError
from app.core.identity import AuthenticatedUser, Guest
from app.models.cart import Cart
from app.models.coupon import Coupon, CouponUsage
from app.models.order import Order
from app.schemas.order import OrderCreate

THREADS = 8


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so every thread gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


def run_together(target, count: int = THREADS) -> list[str]:
    """Start `count` threads on a barrier and collect their outcomes."""
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()
    start = threading.Barrier(count)

    def worker(index: int):
        start.wait()
        try:
            target(index)
            outcome = "ok"
        except CommerceError as exc:
            outcome = exc.code
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return outcomes


def test_concurrent_merges_apply_once(
    engine, session, cart_service, make_user, make_product
):
    customer = AuthenticatedUser(id=make_user().id)
    guest = Guest(session_id=f"guest-{uuid.uuid4().hex}")
    shared = make_product(name="Shared", stock=10)
    only_guest = make_product(name="Guest only", stock=10)
    cart_service.add_item(session, customer, shared.id, None, 1)
    cart_service.add_item(session, guest, shared.id, None, 2)
    cart_service.add_item(session, guest, only_guest.id, None, 1)
    session.close()

    def merge(_):
        with Session(engine) as s:
            cart_service.merge_guest_cart(s, customer.id, guest.session_id)

    outcomes = run_together(merge)

    assert outcomes == ["ok"] * THREADS
    with Session(engine) as s:
        summary = cart_service.get_cart(s, customer)
        assert {it.name: it.quantity for it in summary.items} == {
            "Shared": 3,
            "Guest only": 1,
        }
        assert cart_service.get_cart(s, guest).id is None
        assert len(s.exec(select(Cart)).all()) == 1


def test_concurrent_checkouts_redeem_one_time_coupon_once(
    engine, session, cart_service, coupon_service, order_service,
    make_user, make_product, make_coupon,
):
    customer = AuthenticatedUser(id=make_user().id)
    coupon_id = make_coupon("JUSTONCE", customer_usage_limit=1).id
    products = [
        make_product(name=f"P{i}", price="20.00", stock=10) for i in range(THREADS)
    ]
    product_ids = [p.id for p in products]
    session.close()

    def shop_and_checkout(index: int):
        with Session(engine) as s:
            cart_service.add_item(s, customer, product_ids[index], None, 1)
            coupon_service.apply_coupon(s, customer, "JUSTONCE")
            order_service.create_order(s, customer.id, OrderCreate())

    outcomes = run_together(shop_and_checkout)

    assert set(outcomes) <= {"ok", "usage_limit_reached", "empty_cart"}
    with Session(engine) as s:
        usages = s.exec(
            select(CouponUsage).where(CouponUsage.coupon_id == coupon_id)
        ).all()
        assert len(usages) == 1
        assert s.get(Coupon, coupon_id).usage_count == 1
        discounted = [
            o for o in s.exec(select(Order)).all() if o.coupon_code == "JUSTONCE"
        ]
        assert len(discounted) == 1
