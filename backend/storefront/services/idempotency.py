# storefront/services/idempotency.py
"""
Idempotency Guard for order-creating triggers.

The same logical payment can reach us through the signed processor callback
AND the customer's redirect to the success page, possibly at the same time.
An application-level "SELECT then INSERT" cannot close that race, so the
guard leans on the storage layer:

- Card orders: `orders.checkout_session_id` is UNIQUE. The creating
  transaction inserts the Order row first; a concurrent loser fails on the
  constraint, rolls back everything it did (stock included) and fetches the
  winner's row.
- Cash-on-delivery confirmation: the pending order already exists, so the
  guard claims the `stock_committed` marker with a compare-and-set UPDATE.
  Only the transaction that flips it applies the stock decrement. Cancelling
  clears the marker when it restocks, so the claim also requires the order
  to be open.

Usage:
    guard = IdempotencyGuard()
    result = await guard.insert_or_fetch(session_id, build_order)
    if result.created:
        ...run post-commit side effects exactly once...
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.config import get_settings
from storefront.database import async_session_maker
from storefront.exceptions import OrderNotFoundError, OrderValidationError
from storefront.models import TERMINAL_STATUSES, Order

logger = logging.getLogger(__name__)
settings = get_settings()

OrderBuilder = Callable[[AsyncSession], Awaitable[str]]
ClaimHandler = Callable[[AsyncSession, str], Awaitable[None]]


class IdempotencyConflictError(RuntimeError):
    """The creating transaction kept colliding without an owner for the key appearing."""


@dataclass(frozen=True)
class GuardResult:
    order_id: str
    created: bool


class IdempotencyGuard:
    """Maps a trigger key to at most one Order row."""

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session_maker,
        max_attempts: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.max_attempts = max_attempts or settings.ORDER_NUMBER_ATTEMPTS

    async def find_existing(self, key: str) -> Optional[str]:
        """Return the id of the order already created for `key`, if any."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Order.id).where(Order.checkout_session_id == key)
            )
            return result.scalar_one_or_none()

    async def insert_or_fetch(self, key: Optional[str], build: OrderBuilder) -> GuardResult:
        """
        Run `build` in a fresh transaction and commit it.

        `build` must insert the Order carrying `key` and flush it before it
        touches stock. On a unique violation the transaction is rolled back
        and, if another transaction now owns `key`, its order is returned with
        created=False. Other collisions (order number) are retried.
        """
        if key:
            existing = await self.find_existing(key)
            if existing:
                logger.info(f"Idempotency hit for key {key[:12]}... - order {existing} already exists")
                return GuardResult(order_id=existing, created=False)

        last_error: Optional[IntegrityError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        order_id = await build(session)
                return GuardResult(order_id=order_id, created=True)
            except OrderValidationError:
                # A concurrent winner may have consumed the stock or the
                # shipping details between our pre-check and our transaction
                if key:
                    existing = await self.find_existing(key)
                    if existing:
                        return GuardResult(order_id=existing, created=False)
                raise
            except IntegrityError as e:
                last_error = e
                if key:
                    existing = await self.find_existing(key)
                    if existing:
                        logger.info(
                            f"Idempotency race lost for key {key[:12]}... - returning order {existing}"
                        )
                        return GuardResult(order_id=existing, created=False)
                logger.warning(f"Order insert collided (attempt {attempt}/{self.max_attempts}): {e.orig}")

        raise IdempotencyConflictError(
            f"Could not create order after {self.max_attempts} attempts"
        ) from last_error

    async def claim_stock_commit(self, order_id: str, apply: ClaimHandler) -> GuardResult:
        """
        Flip `stock_committed` false -> true and run `apply` in the same
        transaction. Returns created=False when another request already
        claimed it or the order is closed; `apply` failing rolls the marker back.
        """
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Order)
                    .where(
                        Order.id == order_id,
                        Order.stock_committed.is_(False),
                        Order.fulfillment_status.notin_(sorted(TERMINAL_STATUSES)),
                    )
                    .values(stock_committed=True, version=Order.version + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    exists = await session.execute(select(Order.id).where(Order.id == order_id))
                    if exists.scalar_one_or_none() is None:
                        raise OrderNotFoundError(f"Order {order_id} not found")
                    logger.info(f"Order {order_id} already confirmed or closed - confirmation is a no-op")
                    return GuardResult(order_id=order_id, created=False)

                await apply(session, order_id)

        return GuardResult(order_id=order_id, created=True)
