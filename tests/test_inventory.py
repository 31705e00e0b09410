import threading
import uuid
from decimal import Decimal

import pytest
from sqlmodel import Session, SQLModel, create_engine

from app.core.errors import NotFound, OutOfStock, ValidationFailed
from app.database import transaction
from app.models.product import Product
from app.repositories.inventory_repo import InventoryRepository
from app.services.inventory_service import InventoryService


def test_reserve_decrements_stock(session, inventory_service, make_product):
    product = make_product(stock=5)

    with transaction(session):
        inventory_service.reserve(session, product.id, None, 3)

    assert product.stock_on_hand == 2
    assert inventory_service.available(session, product.id) == 2


def test_reserve_more_than_stock_leaves_stock_untouched(
    session, inventory_service, make_product
):
    product = make_product(stock=2)

    with pytest.raises(OutOfStock):
        with transaction(session):
            inventory_service.reserve(session, product.id, None, 3)

    assert product.stock_on_hand == 2


def test_rollback_gives_reservations_back(session, inventory_service, make_product):
    a = make_product(stock=5, name="A")
    b = make_product(stock=1, name="B")

    with pytest.raises(OutOfStock):
        with transaction(session):
            inventory_service.reserve(session, a.id, None, 2)
            inventory_service.reserve(session, b.id, None, 2)

    assert a.stock_on_hand == 5
    assert b.stock_on_hand == 1


def test_variant_stock_is_separate(session, inventory_service, make_product, make_variant):
    product = make_product(stock=1)
    variant = make_variant(product, stock=4)

    with transaction(session):
        inventory_service.reserve(session, product.id, variant.id, 4)

    assert variant.stock_on_hand == 0
    assert product.stock_on_hand == 1


def test_release_increments_stock(session, inventory_service, make_product):
    product = make_product(stock=0)

    with transaction(session):
        inventory_service.release(session, product.id, None, 2)

    assert product.stock_on_hand == 2


def test_invalid_quantities_and_unknown_sku(session, inventory_service, make_product):
    product = make_product(stock=5)

    with pytest.raises(ValidationFailed):
        inventory_service.reserve(session, product.id, None, 0)
    with pytest.raises(ValidationFailed):
        inventory_service.release(session, product.id, None, -1)
    with pytest.raises(NotFound):
        inventory_service.available(session, uuid.uuid4())


def test_concurrent_reservations_never_oversell(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'inventory.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)

    with Session(engine) as s:
        product = Product(name="Hot item", price=Decimal("9.99"), stock_on_hand=5)
        s.add(product)
        s.commit()
        product_id = product.id

    service = InventoryService(InventoryRepository())
    results: list[str] = []
    results_lock = threading.Lock()
    start = threading.Barrier(10)

    def buyer():
        start.wait()
        with Session(engine) as s:
            try:
                with transaction(s):
                    service.reserve(s, product_id, None, 1)
                outcome = "ok"
            except OutOfStock:
                outcome = "out"
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=buyer) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 5
    assert results.count("out") == 5
    with Session(engine) as s:
        assert s.get(Product, product_id).stock_on_hand == 0

    engine.dispose()
