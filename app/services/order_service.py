import logging
import secrets
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from sqlmodel import Session

from app.core.clock import as_utc, money, utcnow
from app.core.config import get_settings
from app.core.errors import (
    EmptyCart,
    Forbidden,
    InvalidItem,
    InvalidState,
    InvalidTransition,
    NotFound,
)
from app.core.identity import Actor, AuthenticatedUser, actor_key, is_admin
from app.core.locks import cart_locks, order_locks
from app.database import transaction
from app.models.order import (
    Order,
    OrderItem,
    OrderItemStatus,
    OrderStatus,
    Payment,
    PaymentStatus,
    Refund,
)
from app.repositories.cart_repo import CartRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.product_repo import ProductRepository
from app.schemas.order import (
    OrderCancelResult,
    OrderCreate,
    OrderItemRead,
    OrderPage,
    OrderRead,
    OrderWithItemsRead,
    PaymentRead,
    RefundRead,
    ReturnResult,
)
from app.services import pricing
from app.services.coupon_service import CouponService
from app.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# How many random order numbers to try before giving up
ORDER_NUMBER_ATTEMPTS = 5

CANCELABLE_STATUSES = {
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.ON_HOLD,
}

ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELED},
    OrderStatus.PROCESSING: {
        OrderStatus.ON_HOLD,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELED,
    },
    OrderStatus.ON_HOLD: {OrderStatus.PROCESSING, OrderStatus.CANCELED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELED: set(),
}


class OrderService:
    """
    Business logic for orders.

    Responsibilities:
      - Create order from cart (reserve stock, freeze discount, clear cart)
      - Enforce the status state machine (admin)
      - Cancel whole orders or single items, releasing stock and
        creating refunds when a payment was captured
      - Accept returns of delivered items within the return window
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        cart_repo: CartRepository,
        product_repo: ProductRepository,
        inventory_service: InventoryService,
        coupon_service: CouponService,
    ):
        self.order_repo = order_repo
        self.cart_repo = cart_repo
        self.product_repo = product_repo
        self.inventory_service = inventory_service
        self.coupon_service = coupon_service

    # -------- User-facing operations --------

    def create_order(
        self,
        session: Session,
        user_id: uuid.UUID,
        payload: OrderCreate,
    ) -> OrderWithItemsRead:
        """
        Convert the user's cart into an Order.

        Steps (one transaction, rolled back as a whole on any failure):
          1. Load cart lines; error if there are none.
          2. Reserve stock for every line (conditional UPDATE per SKU).
          3. Freeze the discount: applied coupon (re-validated) or the best
             automatic coupon.
          4. Create Order, OrderItems and a PENDING Payment.
          5. Record the coupon redemption.
          6. Clear the cart and its coupon.
        """
        user = AuthenticatedUser(id=user_id)

        with cart_locks.hold(actor_key(user)), transaction(session):
            # 1) Load cart
            cart = self.cart_repo.get_for_user(session, user_id)
            cart_items = self.cart_repo.list_items(session, cart.id) if cart else []
            if not cart_items:
                raise EmptyCart("Cart is empty")

            products = self.product_repo.get_many(
                session, [ci.product_id for ci in cart_items]
            )

            # 2) Reserve stock
            for ci in cart_items:
                product = products.get(ci.product_id)
                if product is None or not product.is_active:
                    raise NotFound(f"Product {ci.product_id} is no longer available")
                self.inventory_service.reserve(
                    session, ci.product_id, ci.variant_id, ci.quantity
                )

            # 3) Freeze the discount
            lines = pricing.lines_from_cart(cart_items, products)
            coupon_quote = self.coupon_service.checkout_quote(session, cart, lines, user_id)

            subtotal = pricing.subtotal(lines)
            discount = coupon_quote.amount if coupon_quote else ZERO

            # 4) Order, items, payment
            order = Order(
                order_number=self._next_order_number(session),
                user_id=user_id,
                status=OrderStatus.PENDING,
                subtotal=subtotal,
                discount_total=discount,
                total=money(subtotal - discount),
                coupon_id=coupon_quote.coupon.id if coupon_quote else None,
                coupon_code=coupon_quote.coupon.code if coupon_quote else None,
                notes=payload.notes,
                customer_notes=payload.customer_notes,
            )
            order = self.order_repo.create_order(session, order)

            order_items: list[OrderItem] = []
            for position, (ci, line) in enumerate(zip(cart_items, lines)):
                product = products[ci.product_id]
                name, sku = product.name, product.sku
                if ci.variant_id is not None:
                    variant = self.product_repo.get_variant(session, ci.variant_id)
                    if variant is not None:
                        name = f"{product.name} ({variant.name})"
                        sku = variant.sku or sku
                order_items.append(
                    OrderItem(
                        order_id=order.id,
                        product_id=ci.product_id,
                        variant_id=ci.variant_id,
                        name=name[:100],
                        sku=sku,
                        quantity=ci.quantity,
                        unit_price=line.unit_price,
                        line_total=line.line_total,
                        position=position,
                    )
                )
            order_items = self.order_repo.create_items(session, order_items)

            self.order_repo.create_payment(
                session,
                Payment(
                    order_id=order.id,
                    amount=order.total,
                    method=payload.payment_method,
                    status=PaymentStatus.PENDING,
                ),
            )

            # 5) Coupon redemption
            if coupon_quote is not None:
                self.coupon_service.redeem(session, coupon_quote, user_id, order.id)

            # 6) Clear cart
            self.cart_repo.clear_items(session, cart.id)
            cart.coupon_id = None
            cart.updated_at = utcnow()
            self.cart_repo.update_cart(session, cart)

        logger.info(
            "Order %s created for user %s: subtotal=%s discount=%s total=%s",
            order.order_number,
            user_id,
            order.subtotal,
            order.discount_total,
            order.total,
        )
        return self._load_order_dto(session, order)

    def list_user_orders(
        self,
        session: Session,
        user_id: uuid.UUID,
        skip: int = 0,
        limit: int = 50,
        status: OrderStatus | None = None,
    ) -> OrderPage:
        """
        List orders for the given user (without items), newest first,
        optionally only those in `status`.
        """
        orders = self.order_repo.list_for_user(session, user_id, skip, limit, status)
        return OrderPage(
            orders=[OrderRead.model_validate(o) for o in orders],
            total_count=self.order_repo.count_for_user(session, user_id, status),
            skip=skip,
            limit=limit,
        )

    def get_user_order(
        self,
        session: Session,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> OrderWithItemsRead:
        """
        Get a single order for the user, including items.

        Orders of other users are reported as not found.
        """
        order = self.order_repo.get_by_id(session, order_id)
        if not order or order.user_id != user_id:
            raise NotFound("Order not found")
        return self._load_order_dto(session, order)

    def cancel_order(
        self,
        session: Session,
        order_id: uuid.UUID,
        actor: Actor,
        reason: str | None = None,
    ) -> OrderCancelResult:
        """
        Cancel a whole order (owner or admin).

        Releases stock of every ACTIVE item, refunds what is left of the
        total when a payment was captured, and moves the order to CANCELED.
        """
        with order_locks.hold(str(order_id)), transaction(session):
            order = self._get_for_update(session, order_id)
            self._ensure_can_cancel(order, actor)
            refund, amount = self._cancel_whole_order(session, order, reason)

        logger.info(
            "Order %s canceled by %s, refund=%s", order.order_number, actor_key(actor), amount
        )
        return OrderCancelResult(
            order=self._load_order_dto(session, order),
            refund=RefundRead.model_validate(refund) if refund else None,
            total_refund_amount=amount,
        )

    def cancel_order_items(
        self,
        session: Session,
        order_id: uuid.UUID,
        actor: Actor,
        item_ids: list[uuid.UUID],
        reason: str | None = None,
    ) -> OrderCancelResult:
        """
        Cancel some items of an order.

        Every id must belong to the order and still be ACTIVE. When no
        ACTIVE item is left afterwards the order itself becomes CANCELED.
        """
        if not item_ids:
            raise InvalidItem("No items selected for cancellation")

        with order_locks.hold(str(order_id)), transaction(session):
            order = self._get_for_update(session, order_id)
            self._ensure_can_cancel(order, actor)

            items = self.order_repo.list_items_for_order(session, order.id)
            by_id = {it.id: it for it in items}
            selected: list[OrderItem] = []
            for item_id in dict.fromkeys(item_ids):
                item = by_id.get(item_id)
                if item is None:
                    raise InvalidItem(f"Item {item_id} does not belong to this order")
                if item.status != OrderItemStatus.ACTIVE:
                    raise InvalidItem(f"Item {item_id} is already {item.status.value}")
                selected.append(item)

            now = utcnow()
            amount = self._release_items(session, selected, reason, now)
            amount = self._capped(order, amount)
            refund = self._refund_if_paid(
                session, order, amount, reason or "Items canceled", "Refund for canceled items"
            )
            self._link_refund(session, selected, refund)
            order.refunded_amount = money(order.refunded_amount + amount)

            if all(it.status == OrderItemStatus.CANCELED for it in items):
                order.status = OrderStatus.CANCELED
                order.cancel_reason = reason or "All items canceled"
                order.canceled_at = now
            order.updated_at = now
            self.order_repo.update_order(session, order)

        logger.info(
            "Canceled %d item(s) of order %s, refund=%s, status=%s",
            len(selected),
            order.order_number,
            amount,
            order.status.value,
        )
        return OrderCancelResult(
            order=self._load_order_dto(session, order),
            refund=RefundRead.model_validate(refund) if refund else None,
            total_refund_amount=amount,
        )

    def process_return(
        self,
        session: Session,
        order_item_id: uuid.UUID,
        user_id: uuid.UUID,
        reason: str,
        refund_method: str,
    ) -> ReturnResult:
        """
        Return a delivered item.

        Only the order's owner can return, only while the order is DELIVERED
        and within RETURN_WINDOW_DAYS of delivery. A PENDING refund is
        created for the line total; stock is not put back (returned goods
        are inspected first).
        """
        item = self.order_repo.get_item(session, order_item_id)
        if not item:
            raise NotFound("Order item not found")

        with order_locks.hold(str(item.order_id)), transaction(session):
            order = self._get_for_update(session, item.order_id)
            session.refresh(item)

            if order.user_id != user_id:
                raise Forbidden("You are not authorized to return this item")
            if order.status != OrderStatus.DELIVERED:
                raise InvalidState("Only delivered items can be returned")

            now = utcnow()
            delivered_at = as_utc(order.completed_at or order.updated_at)
            window = timedelta(days=get_settings().RETURN_WINDOW_DAYS)
            if now - delivered_at > window:
                raise InvalidState("Return window has expired")

            if item.status != OrderItemStatus.ACTIVE:
                raise InvalidItem(f"Item is already {item.status.value}")

            amount = self._capped(order, money(item.line_total))
            refund = self.order_repo.create_refund(
                session,
                Refund(
                    order_id=order.id,
                    amount=amount,
                    reason=reason,
                    notes=f"Refund for returned item: {item.name}",
                    refund_method=refund_method,
                ),
            )

            item.status = OrderItemStatus.RETURNED
            item.returned_at = now
            item.return_reason = reason
            item.refund_id = refund.id
            self.order_repo.update_items(session, [item])

            order.refunded_amount = money(order.refunded_amount + amount)
            order.updated_at = now
            self.order_repo.update_order(session, order)

        logger.info(
            "Item %s of order %s returned, refund %s pending",
            order_item_id,
            order.order_number,
            amount,
        )
        return ReturnResult(
            order_item_id=order_item_id,
            refund_id=refund.id,
            refund_status=refund.status,
            refund_amount=refund.amount,
        )

    # -------- Admin operations --------

    def list_all_orders(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
    ) -> list[OrderRead]:
        """
        List all orders (admin only).
        """
        orders = self.order_repo.list_all(session, skip, limit)
        return [OrderRead.model_validate(o) for o in orders]

    def get_order_admin(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> OrderWithItemsRead:
        """
        Get any order with items (admin only).
        """
        order = self.order_repo.get_by_id(session, order_id)
        if not order:
            raise NotFound("Order not found")
        return self._load_order_dto(session, order)

    def update_order_status(
        self,
        session: Session,
        order_id: uuid.UUID,
        new_status: OrderStatus,
        actor: Actor,
        reason: str | None = None,
    ) -> OrderWithItemsRead:
        """
        Admin-only status update with the state machine in
        ALLOWED_TRANSITIONS. Re-setting the current status is rejected too.

        CANCELED goes through the regular cancellation (stock + refund);
        DELIVERED starts the return window.
        """
        if not is_admin(actor):
            raise Forbidden("Only admins can change order status")

        with order_locks.hold(str(order_id)), transaction(session):
            order = self._get_for_update(session, order_id)
            current = order.status

            if new_status not in ALLOWED_TRANSITIONS[current]:
                raise InvalidTransition(
                    f"Invalid status transition: {current.value} -> {new_status.value}"
                )

            if new_status == OrderStatus.CANCELED:
                self._cancel_whole_order(session, order, reason)
            else:
                now = utcnow()
                order.status = new_status
                if new_status == OrderStatus.DELIVERED:
                    order.completed_at = now
                order.updated_at = now
                self.order_repo.update_order(session, order)

        logger.info(
            "Order %s status %s -> %s", order.order_number, current.value, new_status.value
        )
        return self._load_order_dto(session, order)

    def confirm_payment(
        self,
        session: Session,
        order_id: uuid.UUID,
        actor: Actor,
        transaction_id: str | None = None,
    ) -> OrderWithItemsRead:
        """
        Mark the order's pending payment as PAID (admin only).
        """
        if not is_admin(actor):
            raise Forbidden("Only admins can confirm payments")

        with order_locks.hold(str(order_id)), transaction(session):
            order = self._get_for_update(session, order_id)
            if order.status == OrderStatus.CANCELED:
                raise InvalidState("Cannot confirm payment of a canceled order")

            pending = [
                p
                for p in self.order_repo.list_payments(session, order.id)
                if p.status == PaymentStatus.PENDING
            ]
            if not pending:
                raise InvalidState("Order has no pending payment")

            payment = pending[0]
            payment.status = PaymentStatus.PAID
            payment.transaction_id = transaction_id
            payment.updated_at = utcnow()
            self.order_repo.update_payment(session, payment)

        logger.info("Payment for order %s confirmed", order.order_number)
        return self._load_order_dto(session, order)

    # -------- Internal helpers --------

    def _next_order_number(self, session: Session) -> str:
        """
        PREFIX-YYYYMMDD-NNNNN, retried on the rare collision.
        """
        prefix = get_settings().ORDER_NUMBER_PREFIX
        today = utcnow().strftime("%Y%m%d")
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = f"{prefix}-{today}-{secrets.randbelow(100000):05d}"
            if self.order_repo.get_by_number(session, candidate) is None:
                return candidate
        raise InvalidState("Could not allocate an order number, please retry")

    def _get_for_update(self, session: Session, order_id: uuid.UUID) -> Order:
        order = self.order_repo.get_for_update(session, order_id)
        if not order:
            raise NotFound("Order not found")
        return order

    @staticmethod
    def _ensure_can_cancel(order: Order, actor: Actor) -> None:
        if not is_admin(actor):
            if not isinstance(actor, AuthenticatedUser) or order.user_id != actor.id:
                raise Forbidden("You are not authorized to cancel this order")
        if order.status not in CANCELABLE_STATUSES:
            raise InvalidState(f"Cannot cancel order in {order.status.value} status")

    @staticmethod
    def _capped(order: Order, amount: Decimal) -> Decimal:
        """
        Clamp a refund so refunded_amount never goes above total.

        With an order-level discount the line totals add up to more than
        the total; the last refunds absorb the difference.
        """
        remaining = money(order.total) - money(order.refunded_amount)
        return money(max(ZERO, min(amount, remaining)))

    def _release_items(
        self,
        session: Session,
        items: list[OrderItem],
        reason: str | None,
        now: datetime,
    ) -> Decimal:
        """
        Put stock back and mark items CANCELED. Returns the sum of their
        line totals.
        """
        amount = ZERO
        for item in items:
            self.inventory_service.release(
                session, item.product_id, item.variant_id, item.quantity
            )
            item.status = OrderItemStatus.CANCELED
            item.canceled_at = now
            item.cancel_reason = reason
            amount += money(item.line_total)
        self.order_repo.update_items(session, items)
        return money(amount)

    def _refund_if_paid(
        self,
        session: Session,
        order: Order,
        amount: Decimal,
        reason: str,
        notes: str,
    ) -> Refund | None:
        if amount <= ZERO:
            return None
        if self.order_repo.get_paid_payment(session, order.id) is None:
            return None
        return self.order_repo.create_refund(
            session,
            Refund(order_id=order.id, amount=amount, reason=reason, notes=notes),
        )

    def _link_refund(
        self,
        session: Session,
        items: list[OrderItem],
        refund: Refund | None,
    ) -> None:
        if refund is None or not items:
            return
        for item in items:
            item.refund_id = refund.id
        self.order_repo.update_items(session, items)

    def _cancel_whole_order(
        self,
        session: Session,
        order: Order,
        reason: str | None,
    ) -> tuple[Refund | None, Decimal]:
        now = utcnow()
        active = [
            it
            for it in self.order_repo.list_items_for_order(session, order.id)
            if it.status == OrderItemStatus.ACTIVE
        ]
        amount = self._capped(order, self._release_items(session, active, reason, now))
        refund = self._refund_if_paid(
            session,
            order,
            amount,
            reason or "Order canceled",
            "Refund initiated for canceled order",
        )
        self._link_refund(session, active, refund)
        order.refunded_amount = money(order.refunded_amount + amount)
        order.status = OrderStatus.CANCELED
        order.cancel_reason = reason or "Order canceled"
        order.canceled_at = now
        order.updated_at = now
        self.order_repo.update_order(session, order)
        return refund, amount

    def _load_order_dto(self, session: Session, order: Order) -> OrderWithItemsRead:
        items = self.order_repo.list_items_for_order(session, order.id)
        return self._build_order_with_items_dto(
            order,
            items,
            self.order_repo.list_payments(session, order.id),
            self.order_repo.list_refunds(session, order.id),
        )

    def _build_order_with_items_dto(
        self,
        order: Order,
        items: list[OrderItem],
        payments: list[Payment],
        refunds: list[Refund],
    ) -> OrderWithItemsRead:
        """
        Compose OrderWithItemsRead from ORM models.
        """
        return OrderWithItemsRead(
            **OrderRead.model_validate(order).model_dump(),
            items=[OrderItemRead.model_validate(it) for it in items],
            payments=[PaymentRead.model_validate(p) for p in payments],
            refunds=[RefundRead.model_validate(r) for r in refunds],
        )
