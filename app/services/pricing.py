"""
Discount arithmetic for carts and checkout.

Everything in here is pure: no session, no clock. The coupon service and
the order service feed it priced lines and a coupon and decide what to do
with the result.

Rules:
  - basis = cart subtotal for ALL_PRODUCTS coupons, otherwise the subtotal
    of the lines inside the coupon's scope
  - PERCENTAGE   -> value% of basis, capped by maximum_discount_amount
  - FIXED_AMOUNT -> value
  - a discount never exceeds its basis (the charge floors at zero)
  - minimum_order_amount is compared to the whole cart subtotal
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from app.core.clock import money
from app.core.errors import NotEligible
from app.models.coupon import Coupon, CouponScope, DiscountType

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class PricedLine:
    product_id: uuid.UUID
    variant_id: uuid.UUID | None
    category_id: uuid.UUID | None
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return money(self.unit_price * self.quantity)


@dataclass(frozen=True)
class DiscountQuote:
    coupon: Coupon
    basis: Decimal
    amount: Decimal


def lines_from_cart(items: Iterable, products: dict) -> list[PricedLine]:
    """
    Price cart rows with their snapshot price and the product's category.
    ``products`` maps product_id -> Product.
    """
    lines = []
    for item in items:
        product = products.get(item.product_id)
        lines.append(
            PricedLine(
                product_id=item.product_id,
                variant_id=item.variant_id,
                category_id=product.category_id if product is not None else None,
                quantity=item.quantity,
                unit_price=Decimal(item.unit_price),
            )
        )
    return lines


def subtotal(lines: Iterable[PricedLine]) -> Decimal:
    return money(sum((line.line_total for line in lines), ZERO))


def eligible_lines(coupon: Coupon, lines: list[PricedLine]) -> list[PricedLine]:
    match coupon.scope:
        case CouponScope.ALL_PRODUCTS:
            return list(lines)
        case CouponScope.SPECIFIC_PRODUCTS:
            allowed = {str(pid) for pid in coupon.applicable_product_ids or []}
            return [line for line in lines if str(line.product_id) in allowed]
        case CouponScope.SPECIFIC_CATEGORIES:
            allowed = {str(cid) for cid in coupon.applicable_category_ids or []}
            return [
                line
                for line in lines
                if line.category_id is not None and str(line.category_id) in allowed
            ]
    raise ValueError(f"Unknown coupon scope: {coupon.scope}")


def discount_basis(coupon: Coupon, lines: list[PricedLine]) -> Decimal:
    return subtotal(eligible_lines(coupon, lines))


def compute_discount(coupon: Coupon, basis: Decimal) -> Decimal:
    """
    Discount for a given basis, ignoring eligibility.
    """
    if basis <= ZERO:
        return ZERO

    value = Decimal(coupon.value)
    match coupon.discount_type:
        case DiscountType.PERCENTAGE:
            amount = basis * value / Decimal(100)
            if coupon.maximum_discount_amount is not None:
                amount = min(amount, Decimal(coupon.maximum_discount_amount))
        case DiscountType.FIXED_AMOUNT:
            amount = value
        case _:
            raise ValueError(f"Unknown discount type: {coupon.discount_type}")

    return money(max(ZERO, min(amount, basis)))


def check_eligibility(coupon: Coupon, lines: list[PricedLine]) -> None:
    """
    Raises:
        NotEligible: scoped coupon matches no line, or the cart is below
        the coupon's minimum order amount.
    """
    if coupon.scope != CouponScope.ALL_PRODUCTS and not eligible_lines(coupon, lines):
        raise NotEligible(f"Coupon {coupon.code} does not apply to any item in the cart")

    if coupon.minimum_order_amount is not None:
        minimum = Decimal(coupon.minimum_order_amount)
        if subtotal(lines) < minimum:
            raise NotEligible(
                f"Coupon {coupon.code} requires a minimum order of {money(minimum)}"
            )


def quote(coupon: Coupon, lines: list[PricedLine]) -> DiscountQuote:
    check_eligibility(coupon, lines)
    basis = discount_basis(coupon, lines)
    return DiscountQuote(coupon=coupon, basis=basis, amount=compute_discount(coupon, basis))


def pick_best(quotes: Iterable[DiscountQuote]) -> DiscountQuote | None:
    """
    Highest priority wins; equal priority goes to the larger discount.
    """
    best: DiscountQuote | None = None
    for candidate in quotes:
        if best is None:
            best = candidate
            continue
        candidate_rank = (candidate.coupon.priority, candidate.amount)
        best_rank = (best.coupon.priority, best.amount)
        if candidate_rank > best_rank:
            best = candidate
    return best
