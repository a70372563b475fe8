# storefront/services/order_store.py
"""
Order Store
===========
Owns the Order aggregate: the creating transaction (order row + line items +
discount applications + stock reservation) and every later mutation.

Creation always goes through the IdempotencyGuard so a trigger key maps to
at most one order. Post-commit writes use `update_order()`, an optimistic
`WHERE version = :expected` update, so an admin editing the same order at
the same time is detected instead of silently overwritten.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from storefront.config import get_settings
from storefront.database import async_session_maker
from storefront.exceptions import OrderNotFoundError, OrderValidationError, StaleOrderError
from storefront.models import (
    FulfillmentStatus,
    Order,
    OrderDiscountCode,
    OrderLineItem,
    PaymentMethod,
    PaymentStatus,
    ShippingDetails,
)
from storefront.services.discounts import AppliedDiscount, DiscountService, evaluate
from storefront.services.idempotency import GuardResult, IdempotencyGuard
from storefront.services.inventory import InventoryLedger, VariantSnapshot
from storefront.services.order_numbers import generate_order_number

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class CartLine:
    """One cart line as submitted by a trigger. `unit_price` is the charged price, when known."""
    product_id: str
    size: str
    quantity: int
    unit_price: Optional[Decimal] = None


@dataclass
class OrderDraft:
    """Everything needed to create an order in one transaction."""
    lines: Sequence[CartLine]
    shipping_details_id: str
    payment_method: str
    user_id: Optional[str] = None
    discount_codes: Sequence[str] = field(default_factory=list)
    checkout_session_id: Optional[str] = None
    # Card payments decrement stock at creation; COD waits for confirmation
    commit_stock: bool = True
    # Amount actually collected by the processor, when it is authoritative
    amount_paid: Optional[Decimal] = None
    # Confirmed payments must not fail on a code that expired after checkout
    strict_discounts: bool = True


def order_query():
    """Order select with everything the saga and the emails need."""
    return select(Order).options(
        selectinload(Order.items).selectinload(OrderLineItem.product),
        selectinload(Order.details),
        selectinload(Order.discount_codes).selectinload(OrderDiscountCode.discount_code),
    )


class OrderStore:
    """Transactional access to orders."""

    def __init__(self, session_factory: async_sessionmaker = async_session_maker):
        self.session_factory = session_factory
        self.guard = IdempotencyGuard(session_factory)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, order_id: str) -> Order:
        async with self.session_factory() as session:
            result = await session.execute(order_query().where(Order.id == order_id))
            order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    async def find_by_checkout_session(self, session_id: str) -> Optional[Order]:
        order_id = await self.guard.find_existing(session_id)
        if order_id is None:
            return None
        return await self.get(order_id)

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_order(self, draft: OrderDraft) -> GuardResult:
        """Validate and persist `draft` exactly once per checkout session id."""
        if not draft.lines:
            raise OrderValidationError("Cart is empty")
        if not draft.shipping_details_id:
            raise OrderValidationError("Shipping details are required")
        if draft.payment_method == PaymentMethod.CARD.value and not draft.checkout_session_id:
            raise OrderValidationError("Card orders require a checkout session id")

        async def build(session: AsyncSession) -> str:
            return await self._build_order(session, draft)

        result = await self.guard.insert_or_fetch(draft.checkout_session_id, build)
        if result.created:
            logger.info(f"🧾 Order {result.order_id} created ({draft.payment_method})")
        return result

    async def _build_order(self, session: AsyncSession, draft: OrderDraft) -> str:
        ledger = InventoryLedger(session)
        discount_service = DiscountService(session)

        # 1. Validate everything before the first write
        snapshots: List[VariantSnapshot] = []
        for line in draft.lines:
            snapshot = await ledger.lookup(line.product_id, line.size)
            await ledger.check_available(snapshot, line.quantity)
            snapshots.append(snapshot)

        await self._ensure_details_available(session, draft.shipping_details_id)

        discounts = await self._resolve_discounts(discount_service, draft)

        prices = [
            Decimal(str(line.unit_price)) if line.unit_price is not None else Decimal(str(snap.price))
            for line, snap in zip(draft.lines, snapshots)
        ]
        subtotal = sum((p * line.quantity for p, line in zip(prices, draft.lines)), Decimal("0"))
        breakdown = evaluate(
            subtotal,
            settings.SHIPPING_COST,
            [AppliedDiscount.from_code(d) for d in discounts],
        )

        total = breakdown.total
        if draft.amount_paid is not None and draft.amount_paid != breakdown.total:
            logger.warning(
                f"Amount paid {draft.amount_paid} differs from computed total {breakdown.total}; "
                f"recording the collected amount"
            )
            total = draft.amount_paid

        # 2. Insert the order row first so a duplicate trigger collides here
        order = Order(
            order_number=await generate_order_number(session),
            user_id=draft.user_id,
            subtotal=breakdown.subtotal,
            shipping_cost=breakdown.shipping_cost,
            discount_total=breakdown.discount_total,
            total=total,
            payment_method=draft.payment_method,
            payment_status=(
                PaymentStatus.COMPLETED.value
                if draft.payment_method == PaymentMethod.CARD.value
                else PaymentStatus.PENDING.value
            ),
            fulfillment_status=FulfillmentStatus.PENDING.value,
            checkout_session_id=draft.checkout_session_id,
            stock_committed=draft.commit_stock,
            shipping_details_id=draft.shipping_details_id,
        )
        session.add(order)
        await session.flush()

        # 3. Line items are price snapshots
        for line, snapshot, price in zip(draft.lines, snapshots, prices):
            session.add(OrderLineItem(
                order_id=order.id,
                product_id=snapshot.product_id,
                variant_id=snapshot.variant_id,
                product_name=snapshot.product_name,
                size=snapshot.size,
                quantity=line.quantity,
                unit_price=price,
            ))

        # 4. Stock and discount usage, same transaction
        if draft.commit_stock:
            for line, snapshot in zip(draft.lines, snapshots):
                await ledger.reserve(snapshot.variant_id, line.quantity, snapshot.label)

        await discount_service.record_usage(order, discounts, strict=draft.strict_discounts)
        await session.flush()
        return order.id

    async def _ensure_details_available(self, session: AsyncSession, details_id: str) -> None:
        details = await session.get(ShippingDetails, details_id)
        if details is None:
            raise OrderValidationError(f"Shipping details {details_id} not found")
        taken = await session.execute(select(Order.id).where(Order.shipping_details_id == details_id))
        if taken.scalar_one_or_none() is not None:
            raise OrderValidationError(f"Shipping details {details_id} already belong to an order")

    async def _resolve_discounts(self, service: DiscountService, draft: OrderDraft):
        if draft.strict_discounts:
            return await service.resolve(draft.discount_codes)

        resolved = []
        for code in draft.discount_codes:
            try:
                resolved.extend(await service.resolve([code]))
            except OrderValidationError as e:
                logger.warning(f"Ignoring discount code on confirmed payment: {e}")
        return resolved

    # =========================================================================
    # Cash-on-delivery confirmation
    # =========================================================================

    async def confirm_cash_on_delivery(self, order_id: str) -> GuardResult:
        """Decrement stock for a pending COD order the first time it is confirmed."""

        async def apply(session: AsyncSession, claimed_id: str) -> None:
            ledger = InventoryLedger(session)
            result = await session.execute(
                select(OrderLineItem).where(OrderLineItem.order_id == claimed_id)
            )
            for item in result.scalars().all():
                await ledger.reserve(item.variant_id, item.quantity, f"{item.product_name} ({item.size})")

        return await self.guard.claim_stock_commit(order_id, apply)

    # =========================================================================
    # Post-commit updates
    # =========================================================================

    async def update_order(self, order_id: str, expected_version: int, **fields) -> int:
        """
        Apply `fields` only if the order is still at `expected_version`.
        Returns the new version; raises StaleOrderError otherwise.
        """
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.version == expected_version)
                    .values(version=Order.version + 1, updated_at=datetime.utcnow(), **fields)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    exists = await session.execute(select(Order.id).where(Order.id == order_id))
                    if exists.scalar_one_or_none() is None:
                        raise OrderNotFoundError(f"Order {order_id} not found")
                    raise StaleOrderError(order_id, expected_version)
        return expected_version + 1

    async def update_and_restock(self, order_id: str, expected_version: int, **fields) -> int:
        """
        Version-checked update that also returns committed stock to the
        ledger and clears `stock_committed`, in one transaction.
        """
        async with self.session_factory() as session:
            async with session.begin():
                current = await session.execute(
                    select(Order.stock_committed).where(Order.id == order_id)
                )
                committed = current.scalar_one_or_none()
                if committed is None:
                    raise OrderNotFoundError(f"Order {order_id} not found")

                result = await session.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.version == expected_version)
                    .values(
                        version=Order.version + 1,
                        updated_at=datetime.utcnow(),
                        stock_committed=False,
                        **fields,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise StaleOrderError(order_id, expected_version)

                if committed:
                    ledger = InventoryLedger(session)
                    items = await session.execute(
                        select(OrderLineItem).where(OrderLineItem.order_id == order_id)
                    )
                    for item in items.scalars().all():
                        await ledger.release(item.variant_id, item.quantity)
                    logger.info(f"Restocked items of order {order_id}")
        return expected_version + 1

    async def delete(self, order_id: str) -> None:
        """Remove an order with its items, code applications, audit trail and shipping details."""
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(Order)
                    .options(
                        selectinload(Order.items),
                        selectinload(Order.discount_codes),
                        selectinload(Order.audit_logs),
                        selectinload(Order.details),
                    )
                    .where(Order.id == order_id)
                )
                order = result.scalar_one_or_none()
                if order is None:
                    raise OrderNotFoundError(f"Order {order_id} not found")
                details = order.details
                await session.delete(order)
                await session.flush()
                if details is not None:
                    await session.delete(details)
        logger.info(f"Deleted order {order_id}")
