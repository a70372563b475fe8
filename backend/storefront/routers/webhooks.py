"""
Payment Webhook Router.

POST /api/webhooks/payments

SECURITY: Every callback is verified against the shared secret before the
body is parsed. The event is then handed to the checkout flow, which creates
the order at most once per checkout session and runs the fulfillment saga.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from storefront.exceptions import OrderValidationError
from storefront.integrations.payments import SIGNATURE_HEADER, verify_webhook_signature
from storefront.routers.dependencies import get_checkout_service
from storefront.services.checkout import CheckoutService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/payments")
async def handle_payment_webhook(
    request: Request,
    payment_signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Signed payment processor callback."""
    body = await request.body()
    verify_webhook_signature(body, payment_signature)

    try:
        event = json.loads(body)
    except ValueError:
        raise OrderValidationError("Webhook body is not valid JSON")

    outcome = await checkout.handle_payment_event(event)
    if outcome is None:
        return {"received": True, "handled": False}

    logger.info(
        f"💳 Payment event {event.get('id')} -> order {outcome.order.order_number} "
        f"({'created' if outcome.created else 'existing'})"
    )
    return {
        "received": True,
        "handled": True,
        "order_id": outcome.order.id,
        "created": outcome.created,
    }
