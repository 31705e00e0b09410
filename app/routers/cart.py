import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session

from app.core.auth import get_guest_id, require_customer, require_shopper
from app.core.identity import Actor, AuthenticatedUser
from app.database import get_session
from app.repositories.cart_repo import CartRepository
from app.repositories.coupon_repo import CouponRepository
from app.repositories.inventory_repo import InventoryRepository
from app.repositories.product_repo import ProductRepository
from app.schemas.cart import (
    CartItemCreate,
    CartItemUpdate,
    CartItemUpdateResult,
    CartSummary,
    CouponApplyRequest,
    CouponApplyResult,
)
from app.services.cart_service import CartService
from app.services.coupon_service import CouponService
from app.services.inventory_service import InventoryService

router = APIRouter(prefix="/cart", tags=["Cart"])

cart_repo = CartRepository()
product_repo = ProductRepository()
coupon_service = CouponService(CouponRepository(), cart_repo, product_repo)
service = CartService(
    cart_repo,
    product_repo,
    InventoryService(InventoryRepository()),
    coupon_service,
)


@router.get("", response_model=CartSummary)
def get_my_cart(
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_shopper),
):
    """
    Get the current customer's or guest's cart summary.

    Auth:
      - Bearer token (customer) or guestId cookie / X-Guest-Id header.
      - Admins are forbidden.
    """
    return service.get_cart(session, actor)


@router.post("", response_model=CartSummary)
def add_to_cart(
    payload: CartItemCreate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_shopper),
):
    """
    Add a product (optionally a variant) to the cart.

    Returns the updated cart summary.
    """
    return service.add_item(
        session, actor, payload.product_id, payload.variant_id, payload.quantity
    )


@router.patch("/{product_id}", response_model=CartItemUpdateResult)
def update_cart_item(
    product_id: uuid.UUID,
    payload: CartItemUpdate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_shopper),
):
    """
    Set or shift the quantity of a cart line.

    A resulting quantity of 0 or less removes the line.
    """
    return service.update_item(
        session=session,
        actor=actor,
        product_id=product_id,
        variant_id=payload.variant_id,
        quantity=payload.quantity,
        is_absolute=payload.is_absolute,
    )


@router.delete("/{product_id}", response_model=CartSummary)
def remove_cart_item(
    product_id: uuid.UUID,
    variant_id: uuid.UUID | None = None,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_shopper),
):
    """
    Remove a product (variant) from the cart.

    Returns the updated cart summary.
    """
    return service.remove_item(session, actor, product_id, variant_id)


@router.delete("", response_model=CartSummary)
def clear_cart(
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_shopper),
):
    """
    Clear the entire cart, including the applied coupon.
    """
    return service.clear_cart(session, actor)


@router.post("/merge", response_model=CartSummary)
def merge_guest_cart(
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(require_customer),
    guest_id: str | None = Depends(get_guest_id),
):
    """
    Merge the guest cart (guestId cookie / X-Guest-Id header) into the
    logged-in customer's cart. Safe to call again.
    """
    if guest_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Guest session id required",
        )
    return service.merge_guest_cart(session, current_user.id, guest_id)


# -------- Coupons on the cart --------


@router.post("/coupon", response_model=CouponApplyResult)
def apply_coupon(
    payload: CouponApplyRequest,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_shopper),
):
    """
    Apply a coupon code to the cart, replacing any previous one.
    """
    return coupon_service.apply_coupon(session, actor, payload.code)


@router.delete("/coupon/{code}", response_model=CartSummary)
def remove_coupon(
    code: str,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_shopper),
):
    """
    Remove the applied coupon. Returns the updated cart summary.
    """
    coupon_service.remove_coupon(session, actor, code)
    return service.get_cart(session, actor)
