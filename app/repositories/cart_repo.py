import uuid

from sqlalchemy import func
from sqlmodel import Session, select

from app.core.identity import Actor, AuthenticatedUser, Guest
from app.models.cart import Cart, CartItem


class CartRepository:
    """
    Data access layer for carts and cart_items.

    NOTE:
      - No commits here; cart mutations and merges are multi-step.
        The service is responsible for calling session.commit().
    """

    # ---- Carts ----

    def get_for_user(self, session: Session, user_id: uuid.UUID) -> Cart | None:
        stmt = select(Cart).where(Cart.user_id == user_id)
        return session.exec(stmt).first()

    def get_for_session(self, session: Session, session_id: str) -> Cart | None:
        stmt = select(Cart).where(Cart.session_id == session_id)
        return session.exec(stmt).first()

    def get_for_actor(self, session: Session, actor: Actor) -> Cart | None:
        match actor:
            case AuthenticatedUser(id=user_id):
                return self.get_for_user(session, user_id)
            case Guest(session_id=session_id):
                return self.get_for_session(session, session_id)
        raise TypeError(f"Unknown actor: {actor!r}")

    def create_for_actor(self, session: Session, actor: Actor) -> Cart:
        match actor:
            case AuthenticatedUser(id=user_id):
                cart = Cart(user_id=user_id)
            case Guest(session_id=session_id):
                cart = Cart(session_id=session_id)
            case _:
                raise TypeError(f"Unknown actor: {actor!r}")
        session.add(cart)
        session.flush()
        return cart

    def update_cart(self, session: Session, cart: Cart) -> Cart:
        session.add(cart)
        session.flush()
        return cart

    def delete_cart(self, session: Session, cart: Cart) -> None:
        for row in self.list_items(session, cart.id):
            session.delete(row)
        session.flush()
        session.delete(cart)
        session.flush()

    def detach_coupon(self, session: Session, coupon_id: uuid.UUID) -> int:
        stmt = select(Cart).where(Cart.coupon_id == coupon_id)
        carts = session.exec(stmt).all()
        for cart in carts:
            cart.coupon_id = None
            session.add(cart)
        session.flush()
        return len(carts)

    # ---- Items ----

    def list_items(self, session: Session, cart_id: uuid.UUID) -> list[CartItem]:
        stmt = (
            select(CartItem)
            .where(CartItem.cart_id == cart_id)
            .order_by(CartItem.position, CartItem.created_at)
        )
        return list(session.exec(stmt).all())

    def get_item(
        self,
        session: Session,
        cart_id: uuid.UUID,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None,
    ) -> CartItem | None:
        stmt = select(CartItem).where(
            CartItem.cart_id == cart_id,
            CartItem.product_id == product_id,
        )
        if variant_id is None:
            stmt = stmt.where(CartItem.variant_id.is_(None))
        else:
            stmt = stmt.where(CartItem.variant_id == variant_id)
        return session.exec(stmt).first()

    def next_position(self, session: Session, cart_id: uuid.UUID) -> int:
        stmt = select(func.max(CartItem.position)).where(CartItem.cart_id == cart_id)
        current = session.exec(stmt).first()
        return 0 if current is None else current + 1

    def add_item(self, session: Session, item: CartItem) -> CartItem:
        session.add(item)
        session.flush()
        return item

    def update_item(self, session: Session, item: CartItem) -> CartItem:
        session.add(item)
        session.flush()
        return item

    def delete_item(self, session: Session, item: CartItem) -> None:
        session.delete(item)
        session.flush()

    def clear_items(self, session: Session, cart_id: uuid.UUID) -> None:
        for row in self.list_items(session, cart_id):
            session.delete(row)
        session.flush()
