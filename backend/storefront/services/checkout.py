# storefront/services/checkout.py
"""
Checkout entry flows
====================
The three ways an order comes into being, and the one place that decides
whether the fulfillment saga runs:

- Signed payment callback (card): create the order from the session metadata.
- Success landing page (card): same session, possibly concurrently with the
  callback. Whichever request creates the order runs the saga; the other
  returns the existing order.
- Cash-on-delivery: the order is created pending without touching stock and
  confirmed on the landing page, where stock is committed exactly once.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from storefront.exceptions import OrderValidationError, PaymentNotConfirmedError
from storefront.integrations.payments import PaymentProcessorClient
from storefront.models import Order, PaymentMethod
from storefront.orchestration import FulfillmentSaga, SagaReport
from storefront.services.audit_logger import AuditAction, log_order_event
from storefront.services.order_store import CartLine, OrderDraft, OrderStore

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAID_STATUSES = {"paid", "no_payment_required"}


@dataclass
class CheckoutOutcome:
    order: Order
    created: bool
    saga: Optional[SagaReport] = None


def _parse_json_list(raw: Any, field_name: str) -> list:
    if raw in (None, ""):
        return []
    if isinstance(raw, list):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        raise OrderValidationError(f"Session metadata '{field_name}' is not valid JSON")
    if not isinstance(value, list):
        raise OrderValidationError(f"Session metadata '{field_name}' must be a list")
    return value


def draft_from_session(session: Dict[str, Any]) -> OrderDraft:
    """Build a card order draft from a completed checkout session."""
    session_id = session.get("id")
    metadata = session.get("metadata") or {}
    if not session_id:
        raise OrderValidationError("Checkout session has no id")

    lines: List[CartLine] = []
    for raw in _parse_json_list(metadata.get("items"), "items"):
        try:
            price = raw.get("price")
            lines.append(CartLine(
                product_id=str(raw["product_id"]),
                size=str(raw["size"]),
                quantity=int(raw["quantity"]),
                unit_price=Decimal(str(price)) if price is not None else None,
            ))
        except (KeyError, TypeError, ValueError, InvalidOperation):
            raise OrderValidationError(f"Invalid cart line in session {session_id}: {raw}")

    codes: List[str] = []
    for raw in _parse_json_list(metadata.get("applied_discounts"), "applied_discounts"):
        code = raw.get("code") if isinstance(raw, dict) else raw
        if code:
            codes.append(str(code))

    amount_paid = None
    if session.get("amount_total") is not None:
        # Processor amounts are in minor units
        amount_paid = (Decimal(str(session["amount_total"])) / 100).quantize(Decimal("0.01"))

    return OrderDraft(
        lines=lines,
        shipping_details_id=metadata.get("shipping_details_id") or "",
        payment_method=PaymentMethod.CARD.value,
        user_id=metadata.get("user_id"),
        discount_codes=codes,
        checkout_session_id=session_id,
        commit_stock=True,
        amount_paid=amount_paid,
        # The customer already paid; a code expiring since checkout must not lose the order
        strict_discounts=False,
    )


class CheckoutService:

    def __init__(
        self,
        store: OrderStore,
        saga: FulfillmentSaga,
        payments: Optional[PaymentProcessorClient] = None,
    ):
        self.store = store
        self.saga = saga
        self.payments = payments or PaymentProcessorClient()

    # =========================================================================
    # Card
    # =========================================================================

    async def handle_payment_event(self, event: Dict[str, Any]) -> Optional[CheckoutOutcome]:
        """Process a verified callback event. Returns None for events we do not act on."""
        event_type = event.get("type")
        if event_type != CHECKOUT_COMPLETED:
            logger.info(f"Ignoring payment event {event_type}")
            return None

        session = (event.get("data") or {}).get("object") or {}
        if session.get("payment_status") not in PAID_STATUSES:
            logger.info(f"Session {session.get('id')} completed without payment; waiting")
            return None

        return await self._complete_card_session(session)

    async def confirm_checkout_session(self, session_id: str) -> CheckoutOutcome:
        """Landing page for card payments."""
        existing = await self.store.find_by_checkout_session(session_id)
        if existing is not None:
            return CheckoutOutcome(order=existing, created=False)

        session = await self.payments.retrieve_checkout_session(session_id)
        if session.get("payment_status") not in PAID_STATUSES:
            raise PaymentNotConfirmedError(f"Checkout session {session_id} is not paid")

        return await self._complete_card_session(session)

    async def _complete_card_session(self, session: Dict[str, Any]) -> CheckoutOutcome:
        result = await self.store.create_order(draft_from_session(session))

        report = None
        if result.created:
            await log_order_event(
                result.order_id,
                AuditAction.ORDER_CREATED,
                {"checkout_session_id": session.get("id"), "payment_method": "card"},
            )
            report = await self.saga.run(result.order_id)

        order = await self.store.get(result.order_id)
        return CheckoutOutcome(order=order, created=result.created, saga=report)

    # =========================================================================
    # Cash on delivery
    # =========================================================================

    async def create_cash_on_delivery_order(
        self,
        lines: Sequence[CartLine],
        shipping_details_id: str,
        user_id: Optional[str] = None,
        discount_codes: Sequence[str] = (),
    ) -> Order:
        """Create a pending order; validation and pricing only, stock is untouched."""
        result = await self.store.create_order(OrderDraft(
            lines=lines,
            shipping_details_id=shipping_details_id,
            payment_method=PaymentMethod.CASH_ON_DELIVERY.value,
            user_id=user_id,
            discount_codes=list(discount_codes),
            commit_stock=False,
        ))
        await log_order_event(
            result.order_id,
            AuditAction.ORDER_CREATED,
            {"payment_method": PaymentMethod.CASH_ON_DELIVERY.value},
        )
        return await self.store.get(result.order_id)

    async def confirm_cash_on_delivery(self, order_id: str) -> CheckoutOutcome:
        """Landing page for cash-on-delivery: commit stock and run the saga, once."""
        order = await self.store.get(order_id)
        if order.payment_method != PaymentMethod.CASH_ON_DELIVERY.value:
            raise OrderValidationError(f"Order {order_id} is not a cash-on-delivery order")
        if order.is_terminal:
            logger.info(f"Order {order.order_number} is {order.fulfillment_status}; nothing to confirm")
            return CheckoutOutcome(order=order, created=False)

        result = await self.store.confirm_cash_on_delivery(order_id)
        report = None
        if result.created:
            await log_order_event(order_id, AuditAction.STOCK_COMMITTED)
            report = await self.saga.run(order_id)

        order = await self.store.get(order_id)
        return CheckoutOutcome(order=order, created=result.created, saga=report)
