# backend/tests/test_discounts.py
"""
Tests for discount evaluation and code resolution.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from storefront.exceptions import DiscountValidationError
from storefront.models import DiscountCode, OrderDiscountCode
from storefront.services.discounts import AppliedDiscount, DiscountService, evaluate


def test_percentage_and_fixed_are_additive_against_original_subtotal():
    """10% + 5 fixed on 100 with 15 shipping: discount 15, total 100."""
    result = evaluate(
        Decimal("100"),
        Decimal("15"),
        [AppliedDiscount("percentage", Decimal("10")), AppliedDiscount("fixed", Decimal("5"))],
    )

    assert result.discount_total == Decimal("15.00")
    assert result.total == Decimal("100.00")


def test_order_of_discounts_does_not_matter():
    first = evaluate(100, 15, [AppliedDiscount("fixed", Decimal("5")), AppliedDiscount("percentage", Decimal("10"))])
    second = evaluate(100, 15, [AppliedDiscount("percentage", Decimal("10")), AppliedDiscount("fixed", Decimal("5"))])

    assert first.total == second.total == Decimal("100.00")


def test_goods_total_is_floored_at_zero():
    """A discount larger than the subtotal never produces a negative total."""
    result = evaluate(Decimal("40"), Decimal("15"), [AppliedDiscount("fixed", Decimal("100"))])

    assert result.total == Decimal("15.00")


def test_floored_total_with_free_shipping_is_zero():
    result = evaluate(
        Decimal("40"),
        Decimal("15"),
        [AppliedDiscount("fixed", Decimal("100")), AppliedDiscount("free_shipping")],
    )

    assert result.total == Decimal("0.00")
    assert result.total >= 0


def test_free_shipping_zeroes_shipping_only():
    result = evaluate(Decimal("200"), Decimal("15"), [AppliedDiscount("free_shipping")])

    assert result.free_shipping is True
    assert result.shipping_cost == Decimal("0.00")
    assert result.discount_total == Decimal("0.00")
    assert result.total == Decimal("200.00")


def test_no_discounts_adds_shipping():
    result = evaluate(Decimal("59.99"), Decimal("15"), [])

    assert result.total == Decimal("74.99")


def test_percentage_rounds_to_cents():
    result = evaluate(Decimal("33.33"), Decimal("0"), [AppliedDiscount("percentage", Decimal("15"))])

    # 15% of 33.33 = 4.9995 -> 5.00
    assert result.discount_total == Decimal("5.00")
    assert result.total == Decimal("28.33")


def test_unknown_discount_kind_is_rejected():
    with pytest.raises(ValueError):
        evaluate(Decimal("10"), Decimal("0"), [AppliedDiscount("bogo", Decimal("1"))])


# =============================================================================
# Code resolution
# =============================================================================

@pytest.mark.asyncio
async def test_resolve_normalizes_and_dedupes_codes(database, make_discount):
    await make_discount("SUMMER10", "percentage", "10")

    async with database() as session:
        resolved = await DiscountService(session).resolve([" summer10 ", "SUMMER10"])

    assert [d.code for d in resolved] == ["SUMMER10"]


@pytest.mark.asyncio
async def test_resolve_rejects_unknown_code(database):
    async with database() as session:
        with pytest.raises(DiscountValidationError):
            await DiscountService(session).resolve(["NOPE"])


@pytest.mark.asyncio
async def test_resolve_rejects_expired_and_exhausted_codes(database, make_discount):
    await make_discount("OLD", "fixed", "5", expires_at=datetime.utcnow() - timedelta(days=1))
    await make_discount("USEDUP", "fixed", "5", uses_left=0)
    await make_discount("OFF", "fixed", "5", is_active=False)

    async with database() as session:
        service = DiscountService(session)
        for code in ("OLD", "USEDUP", "OFF"):
            with pytest.raises(DiscountValidationError):
                await service.resolve([code])


@pytest.mark.asyncio
async def test_non_stackable_code_cannot_be_combined(database, make_discount):
    await make_discount("SOLO", "percentage", "20", stackable=False)
    await make_discount("SHIPFREE", "free_shipping")

    async with database() as session:
        service = DiscountService(session)
        assert len(await service.resolve(["SOLO"])) == 1
        with pytest.raises(DiscountValidationError, match="SOLO"):
            await service.resolve(["SOLO", "SHIPFREE"])


@pytest.mark.asyncio
async def test_record_usage_consumes_bounded_uses(database, make_discount, make_variant, make_details, order_store):
    from storefront.services.order_store import CartLine, OrderDraft

    variant = await make_variant(stock=5)
    await make_discount("ONCE", "fixed", "10", uses_left=1)

    first = await order_store.create_order(OrderDraft(
        lines=[CartLine(variant.product_id, "M", 1)],
        shipping_details_id=await make_details(),
        payment_method="cash_on_delivery",
        discount_codes=["ONCE"],
        commit_stock=False,
    ))
    order = await order_store.get(first.order_id)
    assert order.discount_total == Decimal("10.00")

    async with database() as session:
        code = (await session.execute(
            DiscountCode.__table__.select().where(DiscountCode.code == "ONCE")
        )).first()
    assert code.uses_left == 0
    assert code.total_uses == 1

    with pytest.raises(DiscountValidationError):
        await order_store.create_order(OrderDraft(
            lines=[CartLine(variant.product_id, "M", 1)],
            shipping_details_id=await make_details(),
            payment_method="cash_on_delivery",
            discount_codes=["ONCE"],
            commit_stock=False,
        ))


@pytest.mark.asyncio
async def test_code_taken_concurrently_is_left_off_a_paid_order(database, make_discount, place_order):
    order = await place_order()
    await make_discount("LAST", "fixed", "10", uses_left=1)

    async with database() as session:
        async with session.begin():
            service = DiscountService(session)
            discounts = await service.resolve(["LAST"])
            # Another order consumes the last use after validation
            await session.execute(
                update(DiscountCode)
                .where(DiscountCode.code == "LAST")
                .values(uses_left=0)
                .execution_options(synchronize_session=False)
            )

            assert await service.record_usage(order, discounts, strict=False) == 0
            links = await session.execute(
                select(OrderDiscountCode).where(OrderDiscountCode.order_id == order.id)
            )
            assert links.scalars().all() == []

    async with database() as session:
        with pytest.raises(DiscountValidationError, match="no uses left"):
            await DiscountService(session).record_usage(order, discounts)
