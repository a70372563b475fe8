# storefront/services/discounts.py
"""
Discount Evaluation
===================

`evaluate()` is the pure pricing rule used by every order entry point:

    total = max(0, subtotal - (sum(percentage) + sum(fixed)))
            + (0 if any free_shipping else shipping_cost)

Every contribution is computed against the ORIGINAL subtotal, never chained.
Combinability (stackable flag) is enforced by DiscountService.resolve()
before codes reach the evaluator.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import DiscountValidationError
from storefront.models import DiscountCode, DiscountKind, Order, OrderDiscountCode

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class AppliedDiscount:
    """A discount as seen by the evaluator: kind + value, nothing else."""
    kind: str
    value: Decimal = ZERO
    code: str | None = None

    @classmethod
    def from_code(cls, discount: DiscountCode) -> "AppliedDiscount":
        return cls(kind=discount.kind, value=Decimal(str(discount.value)), code=discount.code)


@dataclass(frozen=True)
class DiscountBreakdown:
    subtotal: Decimal
    shipping_cost: Decimal
    discount_total: Decimal
    free_shipping: bool
    total: Decimal


def evaluate(subtotal, shipping_cost, discounts: Sequence[AppliedDiscount]) -> DiscountBreakdown:
    """Compute the order total for a subtotal, a flat shipping cost and applied discounts."""
    subtotal = _money(subtotal)
    shipping_cost = _money(shipping_cost)

    percentage_total = ZERO
    fixed_total = ZERO
    free_shipping = False

    for discount in discounts:
        kind = discount.kind.value if isinstance(discount.kind, DiscountKind) else discount.kind
        if kind == DiscountKind.PERCENTAGE.value:
            percentage_total += subtotal * Decimal(str(discount.value)) / Decimal(100)
        elif kind == DiscountKind.FIXED.value:
            fixed_total += Decimal(str(discount.value))
        elif kind == DiscountKind.FREE_SHIPPING.value:
            free_shipping = True
        else:
            raise ValueError(f"Unknown discount kind: {discount.kind}")

    discount_total = _money(percentage_total + fixed_total)
    discounted = max(ZERO, subtotal - discount_total)
    shipping = ZERO if free_shipping else shipping_cost

    return DiscountBreakdown(
        subtotal=subtotal,
        shipping_cost=shipping,
        discount_total=discount_total,
        free_shipping=free_shipping,
        total=_money(discounted + shipping),
    )


class DiscountService:
    """Resolves customer-entered codes and records their usage on an order."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(self, codes: Iterable[str], now: datetime | None = None) -> List[DiscountCode]:
        """
        Load and validate codes. Raises DiscountValidationError for unknown,
        inactive, expired or exhausted codes, and for combinations that
        include a non-stackable code.
        """
        now = now or datetime.utcnow()
        unique_codes = list(dict.fromkeys(c.strip().upper() for c in codes if c and c.strip()))
        if not unique_codes:
            return []

        result = await self.db.execute(select(DiscountCode).where(DiscountCode.code.in_(unique_codes)))
        found = {d.code: d for d in result.scalars().all()}

        resolved = []
        for code in unique_codes:
            discount = found.get(code)
            if discount is None or not discount.is_active:
                raise DiscountValidationError(f"Discount code {code} is not valid")
            if discount.expires_at is not None and discount.expires_at < now:
                raise DiscountValidationError(f"Discount code {code} has expired")
            if discount.uses_left is not None and discount.uses_left <= 0:
                raise DiscountValidationError(f"Discount code {code} has no uses left")
            resolved.append(discount)

        if len(resolved) > 1 and any(not d.stackable for d in resolved):
            blocking = next(d.code for d in resolved if not d.stackable)
            raise DiscountValidationError(f"Discount code {blocking} cannot be combined with other codes")

        return resolved

    async def record_usage(self, order: Order, discounts: Sequence[DiscountCode], strict: bool = True) -> int:
        """
        Attach codes to the order and consume one use each. Runs inside the
        order transaction. A bounded code that ran out in the meantime fails
        the order when `strict`, otherwise it is left off. Returns the number
        of codes recorded.
        """
        recorded = 0
        for discount in discounts:
            values = {"total_uses": DiscountCode.total_uses + 1}
            stmt = update(DiscountCode).where(DiscountCode.id == discount.id)
            if discount.uses_left is not None:
                # Bounded codes are consumed with the same guarded decrement as stock
                values["uses_left"] = DiscountCode.uses_left - 1
                stmt = stmt.where(DiscountCode.uses_left > 0)

            result = await self.db.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                if strict:
                    raise DiscountValidationError(f"Discount code {discount.code} has no uses left")
                logger.warning(
                    f"Discount code {discount.code} ran out before order {order.order_number} was recorded; leaving it off"
                )
                continue

            self.db.add(OrderDiscountCode(order_id=order.id, discount_code_id=discount.id))
            recorded += 1

        if recorded:
            logger.info(f"Recorded {recorded} discount code(s) on order {order.order_number}")
        return recorded
