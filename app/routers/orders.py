import uuid

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import require_admin, require_customer, require_user
from app.core.identity import AuthenticatedUser
from app.database import get_session
from app.models.order import OrderStatus
from app.repositories.cart_repo import CartRepository
from app.repositories.coupon_repo import CouponRepository
from app.repositories.inventory_repo import InventoryRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.product_repo import ProductRepository
from app.schemas.order import (
    OrderCancelRequest,
    OrderCancelResult,
    OrderCreate,
    OrderItemsCancelRequest,
    OrderPage,
    OrderRead,
    OrderStatusUpdate,
    OrderWithItemsRead,
    PaymentConfirm,
    ReturnRequest,
    ReturnResult,
)
from app.services.coupon_service import CouponService
from app.services.inventory_service import InventoryService
from app.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["Orders"])

order_repo = OrderRepository()
cart_repo = CartRepository()
product_repo = ProductRepository()
service = OrderService(
    order_repo,
    cart_repo,
    product_repo,
    InventoryService(InventoryRepository()),
    CouponService(CouponRepository(), cart_repo, product_repo),
)


# -------- User-facing endpoints --------


@router.post(
    "/checkout",
    response_model=OrderWithItemsRead,
)
def checkout(
    payload: OrderCreate,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(require_customer),
):
    """
    Create an order from the current customer's cart.

    Auth:
      - Only customers can checkout.
    """
    return service.create_order(session, current_user.id, payload)


@router.get(
    "/me",
    response_model=OrderPage,
)
def list_my_orders(
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(require_customer),
    skip: int = 0,
    limit: int = 50,
    status: OrderStatus | None = None,
):
    """
    List the authenticated customer's orders (without items).

    Query:
      - status: only orders currently in this status
    """
    return service.list_user_orders(session, current_user.id, skip, limit, status)


@router.get(
    "/me/{order_id}",
    response_model=OrderWithItemsRead,
)
def get_my_order(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(require_customer),
):
    """
    Get a single order (with items) belonging to the current customer.
    """
    return service.get_user_order(session, current_user.id, order_id)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderCancelResult,
)
def cancel_order(
    order_id: uuid.UUID,
    payload: OrderCancelRequest,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(require_user),
):
    """
    Cancel a whole order (owner or admin) while it is PENDING,
    PROCESSING or ON_HOLD.
    """
    return service.cancel_order(session, order_id, current_user, payload.reason)


@router.post(
    "/{order_id}/cancel-items",
    response_model=OrderCancelResult,
)
def cancel_order_items(
    order_id: uuid.UUID,
    payload: OrderItemsCancelRequest,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(require_user),
):
    """
    Cancel selected items of an order (owner or admin).
    """
    return service.cancel_order_items(
        session, order_id, current_user, payload.item_ids, payload.reason
    )


@router.post(
    "/items/{order_item_id}/return",
    response_model=ReturnResult,
)
def return_order_item(
    order_item_id: uuid.UUID,
    payload: ReturnRequest,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(require_customer),
):
    """
    Return a delivered item within the return window.
    """
    return service.process_return(
        session,
        order_item_id,
        current_user.id,
        payload.reason,
        payload.refund_method,
    )


# -------- Admin endpoints --------


@router.get(
    "",
    response_model=list[OrderRead],
    dependencies=[Depends(require_admin)],
)
def list_all_orders(
    session: Session = Depends(get_session),
    skip: int = 0,
    limit: int = 50,
):
    """
    List all orders (admin only).
    """
    return service.list_all_orders(session, skip, limit)


@router.get(
    "/{order_id}",
    response_model=OrderWithItemsRead,
    dependencies=[Depends(require_admin)],
)
def get_order_admin(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    """
    Get any order with items (admin only).
    """
    return service.get_order_admin(session, order_id)


@router.patch(
    "/{order_id}/status",
    response_model=OrderWithItemsRead,
)
def update_order_status(
    order_id: uuid.UUID,
    payload: OrderStatusUpdate,
    session: Session = Depends(get_session),
    admin: AuthenticatedUser = Depends(require_admin),
):
    """
    Update order status (admin only).

      PENDING    -> PROCESSING, CANCELED

      PROCESSING -> ON_HOLD, SHIPPED, CANCELED

      ON_HOLD    -> PROCESSING, CANCELED

      SHIPPED    -> DELIVERED

      DELIVERED, CANCELED -> (terminal)

    """
    return service.update_order_status(
        session, order_id, payload.status, admin, payload.reason
    )


@router.post(
    "/{order_id}/confirm-payment",
    response_model=OrderWithItemsRead,
)
def confirm_payment(
    order_id: uuid.UUID,
    payload: PaymentConfirm,
    session: Session = Depends(get_session),
    admin: AuthenticatedUser = Depends(require_admin),
):
    """
    Mark the order's pending payment as PAID (admin only).
    """
    return service.confirm_payment(session, order_id, admin, payload.transaction_id)
