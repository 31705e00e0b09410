import logging
import uuid
from decimal import Decimal

from sqlmodel import Session

from app.core.clock import money, utcnow
from app.core.config import get_settings
from app.core.errors import (
    LimitExceeded,
    NotFound,
    OutOfStock,
    ValidationFailed,
)
from app.core.identity import Actor, AuthenticatedUser, Guest, actor_key
from app.core.locks import cart_locks
from app.database import transaction
from app.models.cart import Cart, CartItem
from app.models.product import Product, ProductVariant
from app.repositories.cart_repo import CartRepository
from app.repositories.product_repo import ProductRepository
from app.schemas.cart import (
    CartItemRead,
    CartItemUpdateResult,
    CartSummary,
)
from app.services import pricing
from app.services.coupon_service import CouponService
from app.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)


class CartService:
    """
    Business logic for cart operations.

    Responsibilities:
      - resolve the cart of a user or a guest session
      - validate product / variant existence and active flag
      - enforce quantity <= stock and the per-line cap
      - keep one line per (product, variant), in insertion order
      - merge a guest cart into the user's cart after login
      - compute line totals, discount and cart totals
    """

    def __init__(
        self,
        cart_repo: CartRepository,
        product_repo: ProductRepository,
        inventory_service: InventoryService,
        coupon_service: CouponService,
    ):
        self.cart_repo = cart_repo
        self.product_repo = product_repo
        self.inventory_service = inventory_service
        self.coupon_service = coupon_service

    # ---- internal helpers ----

    def _get_valid_product(
        self,
        session: Session,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None,
    ) -> tuple[Product, ProductVariant | None]:
        product = self.product_repo.get_by_id(session, product_id)
        if not product or not product.is_active:
            raise NotFound("Product not found or inactive")

        variant = None
        if variant_id is not None:
            variant = self.product_repo.get_variant(session, variant_id)
            if not variant or variant.product_id != product.id:
                raise NotFound("Product variant not found")
        return product, variant

    def _check_quantity(
        self,
        session: Session,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None,
        quantity: int,
    ) -> None:
        available = self.inventory_service.available(session, product_id, variant_id)
        if quantity > available:
            raise OutOfStock(f"Only {available} units available in stock")

        cap = get_settings().CART_MAX_QUANTITY_PER_ITEM
        if cap is not None and quantity > cap:
            raise LimitExceeded(f"Maximum quantity limit of {cap} per item reached")

    def _clamp(
        self,
        session: Session,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None,
        quantity: int,
    ) -> int:
        limit = self.inventory_service.available(session, product_id, variant_id)
        cap = get_settings().CART_MAX_QUANTITY_PER_ITEM
        if cap is not None:
            limit = min(limit, cap)
        return max(0, min(quantity, limit))

    def _require_cart(self, session: Session, actor: Actor) -> Cart:
        cart = self.cart_repo.get_for_actor(session, actor)
        if not cart:
            raise NotFound("Cart not found")
        return cart

    def _touch(self, session: Session, cart: Cart) -> None:
        cart.updated_at = utcnow()
        self.cart_repo.update_cart(session, cart)

    def _summary(self, session: Session, cart: Cart | None, actor: Actor) -> CartSummary:
        if cart is None:
            return CartSummary(
                user_id=actor.id if isinstance(actor, AuthenticatedUser) else None,
                session_id=actor.session_id if isinstance(actor, Guest) else None,
            )

        items = self.cart_repo.list_items(session, cart.id)
        products = self.product_repo.get_many(session, [it.product_id for it in items])
        lines = pricing.lines_from_cart(items, products)

        item_reads: list[CartItemRead] = []
        total_qty = 0
        for it, line in zip(items, lines):
            product = products.get(it.product_id)
            total_qty += it.quantity
            item_reads.append(
                CartItemRead(
                    id=it.id,
                    product_id=it.product_id,
                    variant_id=it.variant_id,
                    name=product.name if product else None,
                    quantity=it.quantity,
                    unit_price=money(it.unit_price),
                    line_total=line.line_total,
                )
            )

        user_id = cart.user_id
        quote, is_automatic, coupon_error = self.coupon_service.quote_cart(
            session, cart, lines, user_id
        )
        subtotal = pricing.subtotal(lines)
        discount = quote.amount if quote else Decimal("0.00")

        return CartSummary(
            id=cart.id,
            user_id=cart.user_id,
            session_id=cart.session_id,
            items=item_reads,
            item_count=len(item_reads),
            total_quantity=total_qty,
            subtotal=subtotal,
            discount_total=discount,
            total=money(subtotal - discount),
            coupon_code=quote.coupon.code if quote else None,
            coupon_is_automatic=is_automatic,
            coupon_error=coupon_error,
        )

    # ---- public operations ----

    def get_cart(self, session: Session, actor: Actor) -> CartSummary:
        """
        Return the cart summary, or an empty projection if there is no cart.
        """
        cart = self.cart_repo.get_for_actor(session, actor)
        return self._summary(session, cart, actor)

    def add_item(
        self,
        session: Session,
        actor: Actor,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None,
        quantity: int,
    ) -> CartSummary:
        """
        Add a product (variant) to the actor's cart.

        Rules:
          - quantity must be a positive integer
          - product must exist and be active; variant must belong to it
          - existing_quantity + quantity <= stock and <= per-line cap
          - unit_price is snapshotted from variant.price or product.price
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationFailed("Quantity must be a positive integer")

        with cart_locks.hold(actor_key(actor)), transaction(session):
            product, variant = self._get_valid_product(session, product_id, variant_id)

            cart = self.cart_repo.get_for_actor(session, actor)
            if cart is None:
                cart = self.cart_repo.create_for_actor(session, actor)

            existing = self.cart_repo.get_item(session, cart.id, product_id, variant_id)
            new_qty = quantity + (existing.quantity if existing else 0)
            self._check_quantity(session, product_id, variant_id, new_qty)

            if existing:
                existing.quantity = new_qty
                self.cart_repo.update_item(session, existing)
            else:
                unit_price = variant.price if variant and variant.price is not None else product.price
                self.cart_repo.add_item(
                    session,
                    CartItem(
                        cart_id=cart.id,
                        product_id=product_id,
                        variant_id=variant_id,
                        quantity=quantity,
                        unit_price=unit_price,
                        position=self.cart_repo.next_position(session, cart.id),
                    ),
                )
            self._touch(session, cart)

        return self.get_cart(session, actor)

    def update_item(
        self,
        session: Session,
        actor: Actor,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None,
        quantity: int,
        is_absolute: bool = True,
    ) -> CartItemUpdateResult:
        """
        Set (is_absolute=True) or shift (False) the quantity of a line.

        A resulting quantity <= 0 removes the line and reports removed=True.
        """
        removed = False
        with cart_locks.hold(actor_key(actor)), transaction(session):
            cart = self._require_cart(session, actor)
            item = self.cart_repo.get_item(session, cart.id, product_id, variant_id)
            if not item:
                raise NotFound("Product not found in cart")

            new_qty = quantity if is_absolute else item.quantity + quantity

            if new_qty <= 0:
                self.cart_repo.delete_item(session, item)
                removed = True
            else:
                self._check_quantity(session, product_id, variant_id, new_qty)
                item.quantity = new_qty
                self.cart_repo.update_item(session, item)
            self._touch(session, cart)

        return CartItemUpdateResult(removed=removed, cart=self.get_cart(session, actor))

    def remove_item(
        self,
        session: Session,
        actor: Actor,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None = None,
    ) -> CartSummary:
        """
        Remove a line from the cart. Removing a line that is not there is a no-op.
        """
        with cart_locks.hold(actor_key(actor)), transaction(session):
            cart = self._require_cart(session, actor)
            item = self.cart_repo.get_item(session, cart.id, product_id, variant_id)
            if item:
                self.cart_repo.delete_item(session, item)
                self._touch(session, cart)

        return self.get_cart(session, actor)

    def clear_cart(self, session: Session, actor: Actor) -> CartSummary:
        """
        Remove every line and the applied coupon.
        """
        with cart_locks.hold(actor_key(actor)), transaction(session):
            cart = self._require_cart(session, actor)
            self.cart_repo.clear_items(session, cart.id)
            cart.coupon_id = None
            self._touch(session, cart)

        return self.get_cart(session, actor)

    def merge_guest_cart(
        self,
        session: Session,
        user_id: uuid.UUID,
        guest_session_id: str,
    ) -> CartSummary:
        """
        Fold a guest cart into the user's cart after login.

        - matching (product, variant) lines: quantities summed, then clamped
          to stock and the per-line cap
        - other lines are moved over (clamped the same way)
        - the guest's coupon is kept if the user cart has none
        - the guest cart is deleted

        Runs as one transaction while holding the guest's cart lock, so a
        retried request finds no guest cart and changes nothing.
        """
        user = AuthenticatedUser(id=user_id)
        guest = Guest(session_id=guest_session_id)

        with cart_locks.hold(actor_key(guest)), cart_locks.hold(actor_key(user)):
            with transaction(session):
                guest_cart = self.cart_repo.get_for_session(session, guest_session_id)
                if guest_cart is None:
                    return self.get_cart(session, user)

                user_cart = self.cart_repo.get_for_user(session, user_id)
                if user_cart is None:
                    user_cart = self.cart_repo.create_for_actor(session, user)

                moved = merged = dropped = 0
                for item in self.cart_repo.list_items(session, guest_cart.id):
                    existing = self.cart_repo.get_item(
                        session, user_cart.id, item.product_id, item.variant_id
                    )
                    if existing:
                        qty = self._clamp(
                            session,
                            item.product_id,
                            item.variant_id,
                            existing.quantity + item.quantity,
                        )
                        if qty == 0:
                            self.cart_repo.delete_item(session, existing)
                            dropped += 1
                        else:
                            existing.quantity = qty
                            self.cart_repo.update_item(session, existing)
                            merged += 1
                        continue

                    qty = self._clamp(session, item.product_id, item.variant_id, item.quantity)
                    if qty == 0:
                        dropped += 1
                        continue
                    item.cart_id = user_cart.id
                    item.quantity = qty
                    item.position = self.cart_repo.next_position(session, user_cart.id)
                    self.cart_repo.update_item(session, item)
                    moved += 1

                if user_cart.coupon_id is None and guest_cart.coupon_id is not None:
                    user_cart.coupon_id = guest_cart.coupon_id
                self._touch(session, user_cart)
                self.cart_repo.delete_cart(session, guest_cart)

        logger.info(
            "Merged guest cart %s into user %s (merged=%d moved=%d dropped=%d)",
            guest_session_id,
            user_id,
            merged,
            moved,
            dropped,
        )
        return self.get_cart(session, user)
