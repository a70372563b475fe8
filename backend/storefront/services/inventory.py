# storefront/services/inventory.py
"""
Inventory Ledger
================
Authoritative stock counts per (product, size) variant.

All mutations are single conditional UPDATE statements executed inside the
caller's transaction, so two orders contending for the same variant are
serialized by the database row lock and can never both take the last unit.

Usage:
    ledger = InventoryLedger(session)
    await ledger.reserve(variant_id, 2)   # raises InsufficientStockError
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import InsufficientStockError, OrderValidationError
from storefront.models import Product, SizeVariant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VariantSnapshot:
    """Catalog data captured for a line item at order time."""
    variant_id: str
    product_id: str
    product_name: str
    size: str
    price: object
    stock: int
    allow_out_of_stock: bool

    @property
    def label(self) -> str:
        return f"{self.product_name} ({self.size})"


class InventoryLedger:
    """Stock reservation primitives bound to one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lookup(self, product_id: str, size: str) -> VariantSnapshot:
        """Find the variant for a cart line. Raises OrderValidationError if it no longer exists."""
        result = await self.db.execute(
            select(SizeVariant, Product)
            .join(Product, SizeVariant.product_id == Product.id)
            .where(SizeVariant.product_id == product_id, SizeVariant.size == size)
        )
        row = result.first()
        if row is None:
            raise OrderValidationError(f"Size {size} is no longer available for product {product_id}")

        variant, product = row
        return VariantSnapshot(
            variant_id=variant.id,
            product_id=product.id,
            product_name=product.name,
            size=variant.size,
            price=variant.price,
            stock=variant.stock,
            allow_out_of_stock=product.allow_out_of_stock,
        )

    async def check_available(self, snapshot: VariantSnapshot, quantity: int) -> None:
        """Validate without mutating (pending cash-on-delivery orders)."""
        if quantity <= 0:
            raise OrderValidationError(f"Invalid quantity {quantity} for {snapshot.label}")
        if not snapshot.allow_out_of_stock and snapshot.stock < quantity:
            raise InsufficientStockError(snapshot.variant_id, quantity, snapshot.label)

    async def reserve(self, variant_id: str, quantity: int, label: Optional[str] = None) -> None:
        """
        Atomically decrement stock by `quantity`.

        The `stock >= quantity` guard is part of the UPDATE itself; it is
        dropped only when the product explicitly allows overselling.
        Zero affected rows means the reservation lost the race (or never had
        enough stock) and the enclosing transaction must abort.
        """
        if quantity <= 0:
            raise OrderValidationError(f"Invalid quantity {quantity} for variant {variant_id}")

        allow_oversell = await self._allows_oversell(variant_id)

        stmt = update(SizeVariant).where(SizeVariant.id == variant_id)
        if not allow_oversell:
            stmt = stmt.where(SizeVariant.stock >= quantity)

        result = await self.db.execute(
            stmt.values(stock=SizeVariant.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(f"⛔ Insufficient stock for {label or variant_id}: need {quantity}")
            raise InsufficientStockError(variant_id, quantity, label)

        logger.info(f"✅ Reserved {quantity} unit(s) of {label or variant_id}")

    async def release(self, variant_id: str, quantity: int) -> None:
        """Return units to stock (admin cancellation of a stock-committed order)."""
        await self.db.execute(
            update(SizeVariant)
            .where(SizeVariant.id == variant_id)
            .values(stock=SizeVariant.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Restocked {quantity} unit(s) of variant {variant_id}")

    async def _allows_oversell(self, variant_id: str) -> bool:
        result = await self.db.execute(
            select(Product.allow_out_of_stock)
            .join(SizeVariant, SizeVariant.product_id == Product.id)
            .where(SizeVariant.id == variant_id)
        )
        flag = result.scalar_one_or_none()
        if flag is None:
            raise OrderValidationError(f"Variant {variant_id} no longer exists")
        return bool(flag)
