import uuid

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from app.core.auth import require_admin
from app.database import get_session
from app.repositories.cart_repo import CartRepository
from app.repositories.coupon_repo import CouponRepository
from app.repositories.product_repo import ProductRepository
from app.schemas.coupon import CouponCreate, CouponRead, CouponUpdate
from app.services.coupon_service import CouponService

# Admin only
router = APIRouter(
    prefix="/coupons",
    tags=["Coupons"],
    dependencies=[Depends(require_admin)],
)

service = CouponService(CouponRepository(), CartRepository(), ProductRepository())


@router.get("", response_model=list[CouponRead])
def list_coupons(
    session: Session = Depends(get_session),
    skip: int = 0,
    limit: int = 50,
    include_inactive: bool = False,
):
    """
    List coupons (admin only). Soft-deleted coupons are never listed.
    """
    return service.list_coupons(session, skip, limit, include_inactive)


@router.post("", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
def create_coupon(
    payload: CouponCreate,
    session: Session = Depends(get_session),
):
    """
    Create a coupon. The code is stored trimmed and upper-cased.
    """
    return service.create_coupon(session, payload)


@router.get("/code/{code}", response_model=CouponRead)
def get_coupon_by_code(
    code: str,
    session: Session = Depends(get_session),
):
    return service.get_coupon_by_code(session, code)


@router.get("/{coupon_id}", response_model=CouponRead)
def get_coupon(
    coupon_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    return service.get_coupon(session, coupon_id)


@router.patch("/{coupon_id}", response_model=CouponRead)
def update_coupon(
    coupon_id: uuid.UUID,
    payload: CouponUpdate,
    session: Session = Depends(get_session),
):
    """
    Partial update; only the fields sent are changed.
    """
    return service.update_coupon(session, coupon_id, payload)


@router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_coupon(
    coupon_id: uuid.UUID,
    hard: bool = False,
    session: Session = Depends(get_session),
):
    """
    Soft delete by default. ``?hard=true`` removes the row, which is refused
    once the coupon has been redeemed.
    """
    service.delete_coupon(session, coupon_id, hard=hard)
