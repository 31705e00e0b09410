import uuid

from sqlalchemy import update
from sqlalchemy.orm.util import identity_key
from sqlmodel import Session

from app.models.product import Product, ProductVariant


class InventoryRepository:
    """
    Atomic stock counters.

    Every change is one conditional UPDATE executed on the session's
    connection, so it takes part in the caller's transaction and a rollback
    undoes it. Nothing here commits.
    """

    @staticmethod
    def _model(variant_id: uuid.UUID | None):
        return Product if variant_id is None else ProductVariant

    def decrement(
        self,
        session: Session,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None,
        quantity: int,
    ) -> bool:
        """
        stock -= quantity, only if stock >= quantity.

        Returns False when no row matched (insufficient stock or unknown SKU).
        """
        model = self._model(variant_id)
        key = product_id if variant_id is None else variant_id
        table = model.__table__
        session.flush()

        stmt = (
            update(table)
            .where(table.c.id == key, table.c.stock_on_hand >= quantity)
            .values(stock_on_hand=table.c.stock_on_hand - quantity)
        )
        result = session.connection().execute(stmt)
        self._expire_cached(session, model, key)
        return result.rowcount == 1

    def increment(
        self,
        session: Session,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None,
        quantity: int,
    ) -> bool:
        model = self._model(variant_id)
        key = product_id if variant_id is None else variant_id
        table = model.__table__
        session.flush()

        stmt = (
            update(table)
            .where(table.c.id == key)
            .values(stock_on_hand=table.c.stock_on_hand + quantity)
        )
        result = session.connection().execute(stmt)
        self._expire_cached(session, model, key)
        return result.rowcount == 1

    def get_stock(
        self,
        session: Session,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None,
    ) -> int | None:
        model = self._model(variant_id)
        row = session.get(model, product_id if variant_id is None else variant_id)
        if row is None:
            return None
        return row.stock_on_hand

    @staticmethod
    def _expire_cached(session: Session, model, key: uuid.UUID) -> None:
        # Objects already loaded in this session still hold the old counter.
        cached = session.identity_map.get(identity_key(model, key))
        if cached is not None:
            session.expire(cached, ["stock_on_hand"])
