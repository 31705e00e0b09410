import uuid
from datetime import datetime

from sqlalchemy import func, update
from sqlmodel import Session, select

from app.models.coupon import Coupon, CouponStatus, CouponUsage


class CouponRepository:
    """
    Data access layer for coupons and coupon_usages.

    Soft-deleted coupons (deleted_at set) are invisible to every lookup
    except ``get_by_id(..., include_deleted=True)``.
    """

    # ---- Coupons ----

    def get_by_id(
        self,
        session: Session,
        coupon_id: uuid.UUID,
        include_deleted: bool = False,
    ) -> Coupon | None:
        coupon = session.get(Coupon, coupon_id)
        if coupon is None or (coupon.deleted_at is not None and not include_deleted):
            return None
        return coupon

    def get_by_code(self, session: Session, code: str) -> Coupon | None:
        stmt = select(Coupon).where(Coupon.code == code, Coupon.deleted_at.is_(None))
        return session.exec(stmt).first()

    def code_taken(self, session: Session, code: str) -> bool:
        # Soft-deleted rows still hold the unique code
        stmt = select(Coupon.id).where(Coupon.code == code)
        return session.exec(stmt).first() is not None

    def list_coupons(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
        include_inactive: bool = False,
    ) -> list[Coupon]:
        stmt = select(Coupon).where(Coupon.deleted_at.is_(None))
        if not include_inactive:
            stmt = stmt.where(Coupon.status == CouponStatus.ACTIVE)
        stmt = stmt.order_by(Coupon.created_at.desc()).offset(skip).limit(limit)
        return list(session.exec(stmt).all())

    def list_automatic(self, session: Session, now: datetime) -> list[Coupon]:
        """
        Active, automatically-applied coupons whose window has started.
        End date is checked by the caller (nullable column).
        """
        stmt = select(Coupon).where(
            Coupon.is_automatically_applied == True,  # noqa: E712
            Coupon.status == CouponStatus.ACTIVE,
            Coupon.deleted_at.is_(None),
            Coupon.start_date <= now,
        )
        return list(session.exec(stmt).all())

    def create(self, session: Session, coupon: Coupon) -> Coupon:
        session.add(coupon)
        session.flush()
        session.refresh(coupon)
        return coupon

    def update(self, session: Session, coupon: Coupon) -> Coupon:
        session.add(coupon)
        session.flush()
        session.refresh(coupon)
        return coupon

    def delete(self, session: Session, coupon: Coupon) -> None:
        session.delete(coupon)
        session.flush()

    def increment_usage_count(self, session: Session, coupon_id: uuid.UUID) -> None:
        table = Coupon.__table__
        session.flush()
        session.connection().execute(
            update(table)
            .where(table.c.id == coupon_id)
            .values(usage_count=table.c.usage_count + 1)
        )
        cached = session.get(Coupon, coupon_id)
        if cached is not None:
            session.expire(cached, ["usage_count"])

    # ---- Usage ----

    def count_usage(
        self,
        session: Session,
        coupon_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> int:
        stmt = select(func.count(CouponUsage.id)).where(
            CouponUsage.coupon_id == coupon_id,
            CouponUsage.user_id == user_id,
        )
        return session.exec(stmt).one()

    def has_any_usage(self, session: Session, coupon_id: uuid.UUID) -> bool:
        stmt = select(CouponUsage.id).where(CouponUsage.coupon_id == coupon_id)
        return session.exec(stmt).first() is not None

    def record_usage(self, session: Session, usage: CouponUsage) -> CouponUsage:
        session.add(usage)
        session.flush()
        return usage
