"""
Checkout Router.

POST /api/checkout/orders   - create a cash-on-delivery order (pending)
GET  /api/checkout/success  - landing page confirmation for card and COD orders
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from storefront.routers.schemas import (
    CashOnDeliveryOrderRequest,
    CheckoutConfirmationResponse,
    OrderResponse,
    StepResultResponse,
)
from storefront.routers.dependencies import get_checkout_service
from storefront.services.checkout import CheckoutOutcome, CheckoutService
from storefront.services.order_store import CartLine

router = APIRouter()
logger = logging.getLogger(__name__)


def _confirmation(outcome: CheckoutOutcome) -> CheckoutConfirmationResponse:
    steps = []
    if outcome.saga is not None:
        steps = [
            StepResultResponse(name=s.name, ok=s.ok, detail=s.detail, error=s.error)
            for s in outcome.saga.steps
        ]
    return CheckoutConfirmationResponse(
        created=outcome.created,
        order=OrderResponse.model_validate(outcome.order),
        steps=steps,
    )


@router.post("/orders", response_model=OrderResponse, status_code=201)
async def create_cash_on_delivery_order(
    payload: CashOnDeliveryOrderRequest,
    checkout: CheckoutService = Depends(get_checkout_service),
):
    order = await checkout.create_cash_on_delivery_order(
        lines=[CartLine(product_id=i.product_id, size=i.size, quantity=i.quantity) for i in payload.items],
        shipping_details_id=payload.shipping_details_id,
        user_id=payload.user_id,
        discount_codes=payload.discount_codes,
    )
    return OrderResponse.model_validate(order)


@router.get("/success", response_model=CheckoutConfirmationResponse)
async def checkout_success(
    session_id: Optional[str] = Query(None),
    order_id: Optional[str] = Query(None),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """
    Customer lands here after checkout.

    Card payments pass the processor's `session_id`; cash-on-delivery orders
    pass `order_id`. Reloading the page is always safe.
    """
    if session_id:
        outcome = await checkout.confirm_checkout_session(session_id)
    elif order_id:
        outcome = await checkout.confirm_cash_on_delivery(order_id)
    else:
        raise HTTPException(status_code=400, detail="session_id or order_id is required")

    return _confirmation(outcome)
