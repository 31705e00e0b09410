import logging
import uuid
from datetime import datetime
from decimal import Decimal

from sqlmodel import Session

from app.core.clock import as_utc, money, utcnow
from app.core.errors import (
    CommerceError,
    DuplicateCode,
    EmptyCart,
    Expired,
    InvalidState,
    NotFound,
    UsageLimitReached,
    ValidationFailed,
)
from app.core.identity import Actor, AuthenticatedUser, actor_key
from app.core.locks import cart_locks
from app.database import transaction
from app.models.cart import Cart
from app.models.coupon import Coupon, CouponStatus, CouponUsage, DiscountType
from app.repositories.cart_repo import CartRepository
from app.repositories.coupon_repo import CouponRepository
from app.repositories.product_repo import ProductRepository
from app.schemas.cart import CouponApplyResult
from app.schemas.coupon import CouponCreate, CouponUpdate
from app.services import pricing
from app.services.pricing import DiscountQuote, PricedLine

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


class CouponService:
    """
    Business logic for coupons.

    Responsibilities:
      - admin CRUD with unique normalized codes and sane validity windows
      - redeemability checks (status, window, per-customer usage)
      - applying / removing a coupon on a cart
      - quoting the discount a cart gets right now (applied or automatic)
      - recording a redemption when an order is placed
    """

    def __init__(
        self,
        coupon_repo: CouponRepository,
        cart_repo: CartRepository,
        product_repo: ProductRepository,
    ):
        self.coupon_repo = coupon_repo
        self.cart_repo = cart_repo
        self.product_repo = product_repo

    # ---- internal helpers ----

    @staticmethod
    def _validate_window(start: datetime | None, end: datetime | None) -> None:
        if start is not None and end is not None and as_utc(start) >= as_utc(end):
            raise ValidationFailed("start_date must be before end_date")

    @staticmethod
    def _validate_value(discount_type: DiscountType, value: Decimal) -> None:
        if value <= 0:
            raise ValidationFailed("Coupon value must be greater than 0")
        if discount_type == DiscountType.PERCENTAGE and value > 100:
            raise ValidationFailed("Percentage coupons cannot exceed 100")

    def _get_or_404(self, session: Session, coupon_id: uuid.UUID) -> Coupon:
        coupon = self.coupon_repo.get_by_id(session, coupon_id)
        if not coupon:
            raise NotFound("Coupon not found")
        return coupon

    def _cart_lines(self, session: Session, cart: Cart) -> list[PricedLine]:
        items = self.cart_repo.list_items(session, cart.id)
        products = self.product_repo.get_many(session, [it.product_id for it in items])
        return pricing.lines_from_cart(items, products)

    # ---- admin CRUD ----

    def create_coupon(self, session: Session, payload: CouponCreate) -> Coupon:
        code = normalize_code(payload.code)
        self._validate_window(payload.start_date, payload.end_date)
        self._validate_value(payload.discount_type, payload.value)

        with transaction(session):
            if self.coupon_repo.code_taken(session, code):
                raise DuplicateCode(f"Coupon code {code} already exists")

            data = payload.model_dump(exclude={"code", "start_date"})
            data["applicable_product_ids"] = [str(x) for x in payload.applicable_product_ids]
            data["applicable_category_ids"] = [str(x) for x in payload.applicable_category_ids]
            coupon = Coupon(code=code, **data)
            if payload.start_date is not None:
                coupon.start_date = payload.start_date
            coupon = self.coupon_repo.create(session, coupon)

        logger.info("Coupon %s created", code)
        return coupon

    def update_coupon(
        self,
        session: Session,
        coupon_id: uuid.UUID,
        payload: CouponUpdate,
    ) -> Coupon:
        changes = payload.model_dump(exclude_unset=True)

        with transaction(session):
            coupon = self._get_or_404(session, coupon_id)

            if changes.get("code") is not None:
                code = normalize_code(changes["code"])
                if code != coupon.code and self.coupon_repo.code_taken(session, code):
                    raise DuplicateCode(f"Coupon code {code} already exists")
                changes["code"] = code

            self._validate_window(
                changes.get("start_date", coupon.start_date),
                changes.get("end_date", coupon.end_date),
            )
            self._validate_value(
                changes.get("discount_type") or coupon.discount_type,
                changes.get("value") or Decimal(coupon.value),
            )

            for key in ("applicable_product_ids", "applicable_category_ids"):
                if key in changes:
                    changes[key] = [str(x) for x in changes[key] or []]

            for key, value in changes.items():
                setattr(coupon, key, value)
            coupon.updated_at = utcnow()
            coupon = self.coupon_repo.update(session, coupon)

        return coupon

    def get_coupon(self, session: Session, coupon_id: uuid.UUID) -> Coupon:
        return self._get_or_404(session, coupon_id)

    def get_coupon_by_code(self, session: Session, code: str) -> Coupon:
        coupon = self.coupon_repo.get_by_code(session, normalize_code(code))
        if not coupon:
            raise NotFound("Coupon not found")
        return coupon

    def list_coupons(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
        include_inactive: bool = False,
    ) -> list[Coupon]:
        return self.coupon_repo.list_coupons(session, skip, limit, include_inactive)

    def delete_coupon(
        self,
        session: Session,
        coupon_id: uuid.UUID,
        hard: bool = False,
    ) -> None:
        """
        Soft delete (default): hide the coupon, mark it INACTIVE and take it
        off every cart. Usage history stays intact.

        Hard delete: remove the row. Refused when any redemption exists.
        """
        with transaction(session):
            coupon = self._get_or_404(session, coupon_id)
            self.cart_repo.detach_coupon(session, coupon.id)

            if hard:
                if self.coupon_repo.has_any_usage(session, coupon.id):
                    raise InvalidState(
                        "Coupon has usage history and cannot be permanently deleted"
                    )
                self.coupon_repo.delete(session, coupon)
            else:
                coupon.deleted_at = utcnow()
                coupon.status = CouponStatus.INACTIVE
                self.coupon_repo.update(session, coupon)

        logger.info("Coupon %s deleted (hard=%s)", coupon_id, hard)

    # ---- redeemability ----

    @staticmethod
    def ensure_redeemable(coupon: Coupon, now: datetime | None = None) -> None:
        """
        Raises:
            Expired: inactive, not started yet, or past its end date.
        """
        now = now or utcnow()
        if coupon.status != CouponStatus.ACTIVE or coupon.deleted_at is not None:
            raise Expired(f"Coupon {coupon.code} is not active")
        if as_utc(coupon.start_date) > now:
            raise Expired(f"Coupon {coupon.code} is not yet active")
        if coupon.end_date is not None and as_utc(coupon.end_date) < now:
            raise Expired(f"Coupon {coupon.code} has expired")

    def ensure_usage_available(
        self,
        session: Session,
        coupon: Coupon,
        user_id: uuid.UUID | None,
    ) -> None:
        """
        Raises:
            UsageLimitReached: one-time coupon already used by this customer,
            or the customer hit customer_usage_limit.
        """
        if user_id is None:
            return
        if not coupon.is_one_time_use and not coupon.customer_usage_limit:
            return

        used = self.coupon_repo.count_usage(session, coupon.id, user_id)
        if coupon.is_one_time_use and used > 0:
            raise UsageLimitReached("This coupon can only be used once per customer")
        if coupon.customer_usage_limit and used >= coupon.customer_usage_limit:
            raise UsageLimitReached(
                f"You have reached the usage limit ({coupon.customer_usage_limit}) "
                "for this coupon"
            )

    def _full_quote(
        self,
        session: Session,
        coupon: Coupon,
        lines: list[PricedLine],
        user_id: uuid.UUID | None,
        now: datetime,
    ) -> DiscountQuote:
        self.ensure_redeemable(coupon, now)
        result = pricing.quote(coupon, lines)
        self.ensure_usage_available(session, coupon, user_id)
        return result

    def best_automatic(
        self,
        session: Session,
        lines: list[PricedLine],
        user_id: uuid.UUID | None,
        now: datetime | None = None,
    ) -> DiscountQuote | None:
        now = now or utcnow()
        candidates = []
        for coupon in self.coupon_repo.list_automatic(session, now):
            try:
                candidates.append(self._full_quote(session, coupon, lines, user_id, now))
            except CommerceError:
                continue
        return pricing.pick_best(candidates)

    def quote_cart(
        self,
        session: Session,
        cart: Cart,
        lines: list[PricedLine],
        user_id: uuid.UUID | None,
    ) -> tuple[DiscountQuote | None, bool, str | None]:
        """
        Live discount for a cart, for display.

        Returns (quote, is_automatic, error). An applied coupon that no
        longer qualifies yields (None, False, reason) instead of raising.
        """
        if not lines:
            return None, False, None

        now = utcnow()
        if cart.coupon_id is not None:
            coupon = self.coupon_repo.get_by_id(session, cart.coupon_id)
            if coupon is None:
                return None, False, "Coupon is no longer available"
            try:
                return self._full_quote(session, coupon, lines, user_id, now), False, None
            except CommerceError as exc:
                return None, False, exc.message

        best = self.best_automatic(session, lines, user_id, now)
        return best, best is not None, None

    def checkout_quote(
        self,
        session: Session,
        cart: Cart,
        lines: list[PricedLine],
        user_id: uuid.UUID,
    ) -> DiscountQuote | None:
        """
        Discount to freeze into a new order.

        An explicitly applied coupon must still be fully valid (its errors
        propagate). Without one, the best automatic coupon is used, if any.
        """
        now = utcnow()
        if cart.coupon_id is not None:
            coupon = self.coupon_repo.get_by_id(session, cart.coupon_id)
            if coupon is None:
                raise NotFound("Applied coupon is no longer available")
            return self._full_quote(session, coupon, lines, user_id, now)
        return self.best_automatic(session, lines, user_id, now)

    def redeem(
        self,
        session: Session,
        coupon_quote: DiscountQuote,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> CouponUsage:
        """
        Record a redemption inside the caller's (checkout) transaction.
        """
        usage = self.coupon_repo.record_usage(
            session,
            CouponUsage(
                coupon_id=coupon_quote.coupon.id,
                user_id=user_id,
                order_id=order_id,
                discount_amount=coupon_quote.amount,
            ),
        )
        self.coupon_repo.increment_usage_count(session, coupon_quote.coupon.id)
        return usage

    # ---- cart operations ----

    def apply_coupon(
        self,
        session: Session,
        actor: Actor,
        code: str,
    ) -> CouponApplyResult:
        """
        Validate a coupon against the actor's cart and attach it.

        Replaces any coupon applied before.
        """
        code = normalize_code(code)
        user_id = actor.id if isinstance(actor, AuthenticatedUser) else None

        with cart_locks.hold(actor_key(actor)), transaction(session):
            coupon = self.coupon_repo.get_by_code(session, code)
            if not coupon:
                raise NotFound("Coupon not found")
            self.ensure_redeemable(coupon)

            cart = self.cart_repo.get_for_actor(session, actor)
            if not cart:
                raise NotFound("Cart not found")

            lines = self._cart_lines(session, cart)
            if not lines:
                raise EmptyCart("Cannot apply coupon to empty cart")

            result = pricing.quote(coupon, lines)
            self.ensure_usage_available(session, coupon, user_id)

            cart.coupon_id = coupon.id
            cart.updated_at = utcnow()
            self.cart_repo.update_cart(session, cart)

            cart_total = money(pricing.subtotal(lines) - result.amount)

        return CouponApplyResult(
            code=code,
            discount_amount=result.amount,
            cart_total=cart_total,
        )

    def remove_coupon(self, session: Session, actor: Actor, code: str) -> None:
        code = normalize_code(code)

        with cart_locks.hold(actor_key(actor)), transaction(session):
            cart = self.cart_repo.get_for_actor(session, actor)
            if not cart:
                raise NotFound("Cart not found")
            if cart.coupon_id is None:
                raise NotFound("No coupon applied to this cart")

            applied = self.coupon_repo.get_by_id(session, cart.coupon_id, include_deleted=True)
            if applied is None or applied.code != code:
                raise NotFound("Coupon not applied to this cart")

            cart.coupon_id = None
            cart.updated_at = utcnow()
            self.cart_repo.update_cart(session, cart)
