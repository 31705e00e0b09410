import logging
import uuid

from sqlmodel import Session

from app.core.errors import NotFound, OutOfStock, ValidationFailed
from app.repositories.inventory_repo import InventoryRepository

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Stock reservation for carts and checkout.

    reserve() and release() join the caller's transaction and never commit;
    a rollback of that transaction gives the stock back.
    """

    def __init__(self, inventory_repo: InventoryRepository):
        self.inventory_repo = inventory_repo

    def available(
        self,
        session: Session,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None = None,
    ) -> int:
        stock = self.inventory_repo.get_stock(session, product_id, variant_id)
        if stock is None:
            raise NotFound("Product or variant not found")
        return stock

    def reserve(
        self,
        session: Session,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None,
        quantity: int,
    ) -> None:
        """
        Atomically check stock >= quantity and decrement it.

        Raises:
            OutOfStock: not enough units left (or the SKU does not exist).
        """
        if quantity <= 0:
            raise ValidationFailed("Quantity must be greater than 0")

        if not self.inventory_repo.decrement(session, product_id, variant_id, quantity):
            sku = variant_id or product_id
            logger.info("Reservation of %s x %s refused: insufficient stock", quantity, sku)
            raise OutOfStock(f"Insufficient stock for {sku} (requested {quantity})")

    def release(
        self,
        session: Session,
        product_id: uuid.UUID,
        variant_id: uuid.UUID | None,
        quantity: int,
    ) -> None:
        if quantity <= 0:
            raise ValidationFailed("Quantity must be greater than 0")

        if not self.inventory_repo.increment(session, product_id, variant_id, quantity):
            raise NotFound(f"Cannot release stock for unknown SKU {variant_id or product_id}")
