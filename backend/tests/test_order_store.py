# backend/tests/test_order_store.py
"""
Tests for OrderStore: idempotent creation, stock guarding, price snapshots
and version-checked updates.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from storefront.exceptions import (
    InsufficientStockError,
    OrderNotFoundError,
    OrderValidationError,
    StaleOrderError,
)
from storefront.models import FulfillmentStatus, Order, SizeVariant
from storefront.services.order_store import CartLine, OrderDraft


def card_draft(variant, details_id, session_id, quantity=1, **overrides):
    values = dict(
        lines=[CartLine(variant.product_id, variant.size, quantity)],
        shipping_details_id=details_id,
        payment_method="card",
        checkout_session_id=session_id,
    )
    values.update(overrides)
    return OrderDraft(**values)


async def count_orders(database) -> int:
    async with database() as session:
        return (await session.execute(select(func.count()).select_from(Order))).scalar_one()


# =============================================================================
# Idempotent creation
# =============================================================================

@pytest.mark.asyncio
async def test_concurrent_triggers_with_same_key_create_one_order(order_store, database, make_variant, make_details, read_stock):
    """Webhook + landing page (and retries) racing on one checkout session."""
    variant = await make_variant(stock=5)
    details_id = await make_details()

    results = await asyncio.gather(*[
        order_store.create_order(card_draft(variant, details_id, "cs_test_race", quantity=2))
        for _ in range(6)
    ])

    assert len({r.order_id for r in results}) == 1
    assert sum(1 for r in results if r.created) == 1
    assert await count_orders(database) == 1
    assert await read_stock(variant.id) == 3


@pytest.mark.asyncio
async def test_repeated_trigger_returns_existing_order(order_store, make_variant, make_details, read_stock):
    variant = await make_variant(stock=5)
    details_id = await make_details()

    first = await order_store.create_order(card_draft(variant, details_id, "cs_test_repeat"))
    second = await order_store.create_order(card_draft(variant, details_id, "cs_test_repeat"))

    assert first.created is True
    assert second.created is False
    assert second.order_id == first.order_id
    assert await read_stock(variant.id) == 4


@pytest.mark.asyncio
async def test_contending_orders_never_drive_stock_negative(order_store, database, make_variant, make_details, read_stock):
    variant = await make_variant(stock=2)
    drafts = [
        card_draft(variant, await make_details(email=f"buyer{i}@example.com"), f"cs_test_{i}")
        for i in range(4)
    ]

    results = await asyncio.gather(
        *[order_store.create_order(d) for d in drafts],
        return_exceptions=True,
    )

    created = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(created) == 2
    assert all(isinstance(e, InsufficientStockError) for e in failed)
    assert await read_stock(variant.id) == 0
    assert await count_orders(database) == 2


@pytest.mark.asyncio
async def test_insufficient_stock_creates_nothing(order_store, database, make_variant, make_details, read_stock):
    variant = await make_variant(stock=1)

    with pytest.raises(InsufficientStockError):
        await order_store.create_order(card_draft(variant, await make_details(), "cs_test_short", quantity=2))

    assert await count_orders(database) == 0
    assert await read_stock(variant.id) == 1


@pytest.mark.asyncio
async def test_validation_rejects_incomplete_drafts(order_store, make_variant, make_details):
    variant = await make_variant()
    details_id = await make_details()

    with pytest.raises(OrderValidationError, match="empty"):
        await order_store.create_order(card_draft(variant, details_id, "cs_x", lines=[]))
    with pytest.raises(OrderValidationError, match="session"):
        await order_store.create_order(card_draft(variant, details_id, None))
    with pytest.raises(OrderValidationError, match="not found"):
        await order_store.create_order(card_draft(variant, "missing-details", "cs_y"))


@pytest.mark.asyncio
async def test_shipping_details_attach_to_one_order_only(order_store, make_variant, make_details):
    variant = await make_variant(stock=5)
    details_id = await make_details()

    await order_store.create_order(card_draft(variant, details_id, "cs_first"))
    with pytest.raises(OrderValidationError, match="already belong"):
        await order_store.create_order(card_draft(variant, details_id, "cs_second"))


@pytest.mark.asyncio
async def test_card_order_totals_and_status(order_store, make_variant, make_details, make_discount):
    variant = await make_variant(price="100.00", stock=5)
    await make_discount("TEN", "percentage", "10")
    await make_discount("FIVE", "fixed", "5")

    result = await order_store.create_order(card_draft(
        variant, await make_details(), "cs_totals", discount_codes=["TEN", "FIVE"],
    ))
    order = await order_store.get(result.order_id)

    assert order.subtotal == Decimal("100.00")
    assert order.shipping_cost == Decimal("15.00")
    assert order.discount_total == Decimal("15.00")
    assert order.total == Decimal("100.00")
    assert order.payment_status == "COMPLETED"
    assert order.fulfillment_status == FulfillmentStatus.PENDING.value
    assert order.stock_committed is True
    assert order.order_number == "SSA0001"
    assert {d.discount_code.code for d in order.discount_codes} == {"TEN", "FIVE"}


@pytest.mark.asyncio
async def test_collected_amount_wins_over_recomputed_total(order_store, make_variant, make_details):
    variant = await make_variant(price="100.00")

    result = await order_store.create_order(card_draft(
        variant, await make_details(), "cs_paid", amount_paid=Decimal("99.00"),
    ))

    assert (await order_store.get(result.order_id)).total == Decimal("99.00")


@pytest.mark.asyncio
async def test_expired_code_is_ignored_for_confirmed_payments(order_store, make_variant, make_details):
    variant = await make_variant(price="100.00")

    result = await order_store.create_order(card_draft(
        variant, await make_details(), "cs_lenient", discount_codes=["GONE"], strict_discounts=False,
    ))

    order = await order_store.get(result.order_id)
    assert order.discount_total == Decimal("0.00")


# =============================================================================
# Snapshots and updates
# =============================================================================

@pytest.mark.asyncio
async def test_line_item_prices_survive_catalog_changes(order_store, database, make_variant, make_details):
    variant = await make_variant(price="100.00")
    result = await order_store.create_order(card_draft(variant, await make_details(), "cs_snapshot", quantity=2))

    async with database() as session:
        async with session.begin():
            await session.execute(
                update(SizeVariant).where(SizeVariant.id == variant.id).values(price=Decimal("250.00"))
            )

    order = await order_store.get(result.order_id)
    assert [item.unit_price for item in order.items] == [Decimal("100.00")]
    assert order.items[0].line_total == Decimal("200.00")
    assert order.subtotal == Decimal("200.00")


@pytest.mark.asyncio
async def test_update_order_is_version_checked(order_store, make_variant, make_details):
    variant = await make_variant()
    result = await order_store.create_order(card_draft(variant, await make_details(), "cs_version"))

    new_version = await order_store.update_order(result.order_id, 1, tracking_id="AWB-1")
    assert new_version == 2

    with pytest.raises(StaleOrderError):
        await order_store.update_order(result.order_id, 1, tracking_id="AWB-2")

    order = await order_store.get(result.order_id)
    assert order.tracking_id == "AWB-1"
    assert order.version == 2


@pytest.mark.asyncio
async def test_update_unknown_order_raises_not_found(order_store):
    with pytest.raises(OrderNotFoundError):
        await order_store.update_order("nope", 1, tracking_id="AWB")


@pytest.mark.asyncio
async def test_update_and_restock_returns_committed_units_once(order_store, make_variant, make_details, read_stock):
    variant = await make_variant(stock=5)
    result = await order_store.create_order(card_draft(variant, await make_details(), "cs_restock", quantity=3))
    assert await read_stock(variant.id) == 2

    version = await order_store.update_and_restock(
        result.order_id, 1, fulfillment_status=FulfillmentStatus.CANCELLED.value,
    )
    assert await read_stock(variant.id) == 5

    # stock_committed is now cleared, a second pass returns nothing
    await order_store.update_and_restock(result.order_id, version)
    assert await read_stock(variant.id) == 5

    order = await order_store.get(result.order_id)
    assert order.fulfillment_status == FulfillmentStatus.CANCELLED.value
    assert order.stock_committed is False


@pytest.mark.asyncio
async def test_delete_removes_order_and_details(order_store, database, make_variant, make_details):
    variant = await make_variant()
    result = await order_store.create_order(card_draft(variant, await make_details(), "cs_delete"))

    await order_store.delete(result.order_id)

    assert await count_orders(database) == 0
    with pytest.raises(OrderNotFoundError):
        await order_store.get(result.order_id)
    with pytest.raises(OrderNotFoundError):
        await order_store.delete(result.order_id)
