import uuid

from sqlmodel import Session, select

from app.models.product import Product, ProductVariant


class ProductRepository:
    """
    Data access layer for Product & ProductVariant.

    - Pure DB operations (CRUD + queries).
    - No FastAPI, no business logic.
    """

    # ----- Products -----

    def get_by_id(self, session: Session, product_id: uuid.UUID) -> Product | None:
        return session.get(Product, product_id)

    def get_many(
        self,
        session: Session,
        product_ids: list[uuid.UUID],
    ) -> dict[uuid.UUID, Product]:
        if not product_ids:
            return {}
        stmt = select(Product).where(Product.id.in_(product_ids))
        return {p.id: p for p in session.exec(stmt).all()}

    # ----- Variants -----

    def get_variant(
        self,
        session: Session,
        variant_id: uuid.UUID,
    ) -> ProductVariant | None:
        return session.get(ProductVariant, variant_id)
