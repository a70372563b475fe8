# backend/tests/test_idempotency.py
"""
Tests for the IdempotencyGuard: insert-or-fetch on the checkout session key
and the compare-and-set stock commit for cash-on-delivery orders.
"""

import asyncio

import pytest
from sqlalchemy.exc import IntegrityError

from storefront.exceptions import InsufficientStockError, OrderNotFoundError
from storefront.models import FulfillmentStatus
from storefront.services.idempotency import IdempotencyConflictError, IdempotencyGuard


@pytest.fixture
def guard(database):
    return IdempotencyGuard(database, max_attempts=3)


@pytest.mark.asyncio
async def test_existing_key_skips_the_builder(guard, place_order):
    order = await place_order()
    calls = []

    async def build(session):
        calls.append(session)
        return "never"

    result = await guard.insert_or_fetch(order.checkout_session_id, build)

    assert result.order_id == order.id
    assert result.created is False
    assert calls == []


@pytest.mark.asyncio
async def test_persistent_collision_without_owner_gives_up(guard):
    attempts = []

    async def build(session):
        attempts.append(1)
        raise IntegrityError("INSERT INTO orders", {}, Exception("UNIQUE constraint failed: orders.order_number"))

    with pytest.raises(IdempotencyConflictError):
        await guard.insert_or_fetch("cs_test_nobody", build)

    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_collision_is_retried_until_build_succeeds(guard):
    attempts = []

    async def build(session):
        attempts.append(1)
        if len(attempts) < 2:
            raise IntegrityError("INSERT INTO orders", {}, Exception("UNIQUE constraint failed: orders.order_number"))
        return "order-1"

    result = await guard.insert_or_fetch(None, build)

    assert result.order_id == "order-1"
    assert result.created is True
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_concurrent_stock_claims_apply_once(guard, place_order, read_stock):
    order = await place_order(payment_method="cash_on_delivery", quantity=2)
    variant_id = order.items[0].variant_id
    applied = []

    async def apply(session, order_id):
        applied.append(order_id)

    results = await asyncio.gather(*[guard.claim_stock_commit(order.id, apply) for _ in range(5)])

    assert sum(1 for r in results if r.created) == 1
    assert applied == [order.id]
    assert await read_stock(variant_id) == 10


@pytest.mark.asyncio
async def test_failed_claim_releases_the_marker(guard, order_store, place_order):
    order = await place_order(payment_method="cash_on_delivery")

    async def short(session, order_id):
        raise InsufficientStockError("variant", 1)

    async def ok(session, order_id):
        return None

    with pytest.raises(InsufficientStockError):
        await guard.claim_stock_commit(order.id, short)
    assert (await order_store.get(order.id)).stock_committed is False

    result = await guard.claim_stock_commit(order.id, ok)
    assert result.created is True
    assert (await order_store.get(order.id)).stock_committed is True


@pytest.mark.asyncio
async def test_claim_for_unknown_order_raises(guard):
    async def apply(session, order_id):
        return None

    with pytest.raises(OrderNotFoundError):
        await guard.claim_stock_commit("missing", apply)


@pytest.mark.asyncio
async def test_cancelled_order_cannot_be_claimed_again(guard, order_store, place_order, read_stock):
    order = await place_order(payment_method="cash_on_delivery")
    variant_id = order.items[0].variant_id
    applied = []

    async def apply(session, order_id):
        applied.append(order_id)

    await order_store.confirm_cash_on_delivery(order.id)
    assert await read_stock(variant_id) == 9
    confirmed = await order_store.get(order.id)
    # Cancelling restocks and clears the marker
    await order_store.update_and_restock(
        order.id, confirmed.version, fulfillment_status=FulfillmentStatus.CANCELLED.value
    )

    result = await guard.claim_stock_commit(order.id, apply)

    assert result.created is False
    assert applied == []
    stored = await order_store.get(order.id)
    assert stored.stock_committed is False
    assert stored.fulfillment_status == FulfillmentStatus.CANCELLED.value
    assert await read_stock(variant_id) == 10
