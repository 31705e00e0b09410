import uuid

from sqlmodel import Session, func, select

from app.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
    Refund,
)


class OrderRepository:
    """
    Data access layer for orders, order_items, payments and refunds.

    NOTE:
      - No commits here; order creation and cancellation are multi-step
        transactions. The service is responsible for calling session.commit().
    """

    # ---- Orders ----

    def list_for_user(
        self,
        session: Session,
        user_id: uuid.UUID,
        skip: int = 0,
        limit: int = 50,
        status: OrderStatus | None = None,
    ) -> list[Order]:
        stmt = select(Order).where(Order.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        stmt = stmt.order_by(Order.created_at.desc()).offset(skip).limit(limit)
        return list(session.exec(stmt).all())

    def count_for_user(
        self,
        session: Session,
        user_id: uuid.UUID,
        status: OrderStatus | None = None,
    ) -> int:
        stmt = select(func.count()).select_from(Order).where(Order.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        return session.exec(stmt).one()

    def list_all(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]:
        stmt = select(Order).order_by(Order.created_at.desc()).offset(skip).limit(limit)
        return list(session.exec(stmt).all())

    def get_by_id(self, session: Session, order_id: uuid.UUID) -> Order | None:
        return session.get(Order, order_id)

    def get_for_update(self, session: Session, order_id: uuid.UUID) -> Order | None:
        """
        Load an order with a row lock (SELECT ... FOR UPDATE on Postgres;
        SQLite ignores the clause and serializes writers itself).
        """
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(stmt).first()

    def get_by_number(self, session: Session, order_number: str) -> Order | None:
        stmt = select(Order).where(Order.order_number == order_number)
        return session.exec(stmt).first()

    def create_order(self, session: Session, order: Order) -> Order:
        """
        Insert an Order without committing, but ensure id is populated.
        """
        session.add(order)
        session.flush()  # Assign PK
        session.refresh(order)
        return order

    def update_order(self, session: Session, order: Order) -> Order:
        session.add(order)
        session.flush()
        session.refresh(order)
        return order

    # ---- Order items ----

    def list_items_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> list[OrderItem]:
        stmt = (
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.position)
        )
        return list(session.exec(stmt).all())

    def get_item(self, session: Session, item_id: uuid.UUID) -> OrderItem | None:
        return session.get(OrderItem, item_id)

    def create_items(
        self,
        session: Session,
        items: list[OrderItem],
    ) -> list[OrderItem]:
        session.add_all(items)
        session.flush()
        for item in items:
            session.refresh(item)
        return items

    def update_items(
        self,
        session: Session,
        items: list[OrderItem],
    ) -> list[OrderItem]:
        session.add_all(items)
        session.flush()
        return items

    # ---- Payments ----

    def create_payment(self, session: Session, payment: Payment) -> Payment:
        session.add(payment)
        session.flush()
        return payment

    def list_payments(self, session: Session, order_id: uuid.UUID) -> list[Payment]:
        stmt = select(Payment).where(Payment.order_id == order_id)
        return list(session.exec(stmt).all())

    def get_paid_payment(self, session: Session, order_id: uuid.UUID) -> Payment | None:
        stmt = select(Payment).where(
            Payment.order_id == order_id,
            Payment.status == PaymentStatus.PAID,
        )
        return session.exec(stmt).first()

    def update_payment(self, session: Session, payment: Payment) -> Payment:
        session.add(payment)
        session.flush()
        return payment

    # ---- Refunds ----

    def create_refund(self, session: Session, refund: Refund) -> Refund:
        session.add(refund)
        session.flush()
        session.refresh(refund)
        return refund

    def list_refunds(self, session: Session, order_id: uuid.UUID) -> list[Refund]:
        stmt = (
            select(Refund)
            .where(Refund.order_id == order_id)
            .order_by(Refund.created_at)
        )
        return list(session.exec(stmt).all())
