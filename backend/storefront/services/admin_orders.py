# storefront/services/admin_orders.py
"""
Admin order operations.

Terminal transitions (fulfilled, cancelled, refunded) happen only here.
Every mutation is version-checked: pass the version the admin was looking at
and a concurrent change surfaces as StaleOrderError instead of being
overwritten.
"""

import logging
from typing import Optional, Tuple

from storefront.config import get_settings
from storefront.exceptions import InvalidTransitionError, OrderNotFoundError
from storefront.integrations.base import InvoicingConnector, TrackingStatus
from storefront.models import FulfillmentStatus, Order
from storefront.orchestration import FulfillmentSaga, StepResult
from storefront.services.audit_logger import AuditAction, AuditLogger
from storefront.services.order_store import OrderStore
from storefront.services.shipment import ShipmentProvisioner

logger = logging.getLogger(__name__)
settings = get_settings()

# Statuses each admin action may start from
_OPEN = frozenset({
    FulfillmentStatus.PENDING.value,
    FulfillmentStatus.SHIPMENT_PROVISIONED.value,
    FulfillmentStatus.SHIPMENT_FAILED.value,
})
ALLOWED_FROM = {
    FulfillmentStatus.FULFILLED.value: _OPEN,
    FulfillmentStatus.CANCELLED.value: _OPEN,
    FulfillmentStatus.REFUNDED.value: _OPEN | {FulfillmentStatus.FULFILLED.value},
}


class AdminOrderService:

    def __init__(
        self,
        store: OrderStore,
        saga: FulfillmentSaga,
        shipments: ShipmentProvisioner,
        invoicing: InvoicingConnector,
    ):
        self.store = store
        self.saga = saga
        self.shipments = shipments
        self.invoicing = invoicing

    async def _load(self, order_id: str, expected_version: Optional[int]) -> Order:
        order = await self.store.get(order_id)
        if expected_version is not None:
            # Compare against what the admin saw, not what we just read
            order.version = expected_version
        return order

    def _check_transition(self, order: Order, target: str) -> None:
        if order.fulfillment_status not in ALLOWED_FROM[target]:
            raise InvalidTransitionError(
                f"Order {order.order_number} cannot go from {order.fulfillment_status} to {target}"
            )

    async def fulfill(self, order_id: str, expected_version: Optional[int] = None) -> Order:
        order = await self._load(order_id, expected_version)
        self._check_transition(order, FulfillmentStatus.FULFILLED.value)
        await self.store.update_order(
            order.id, order.version, fulfillment_status=FulfillmentStatus.FULFILLED.value
        )
        await AuditLogger.log(order_id=order.id, action=AuditAction.FULFILL, actor_type="admin")
        logger.info(f"Order {order.order_number} marked fulfilled")
        return await self.store.get(order.id)

    async def cancel(self, order_id: str, expected_version: Optional[int] = None) -> Order:
        """Cancel the carrier shipment (best effort), restock committed items, mark cancelled."""
        order = await self._load(order_id, expected_version)
        self._check_transition(order, FulfillmentStatus.CANCELLED.value)

        shipment_cancelled = None
        if order.carrier_shipment_id:
            try:
                order.version = await self.shipments.cancel(order, comment=f"Comanda {order.order_number} anulata")
                shipment_cancelled = True
            except Exception as e:
                shipment_cancelled = False
                logger.error(f"Could not cancel carrier shipment for order {order.order_number}: {e}")

        await self.store.update_and_restock(
            order.id, order.version, fulfillment_status=FulfillmentStatus.CANCELLED.value
        )
        await AuditLogger.log(
            order_id=order.id,
            action=AuditAction.CANCEL,
            actor_type="admin",
            metadata={"restocked": order.stock_committed, "shipment_cancelled": shipment_cancelled},
        )
        logger.info(f"Order {order.order_number} cancelled")
        return await self.store.get(order.id)

    async def refund(self, order_id: str, expected_version: Optional[int] = None) -> Order:
        order = await self._load(order_id, expected_version)
        self._check_transition(order, FulfillmentStatus.REFUNDED.value)
        await self.store.update_order(
            order.id, order.version, fulfillment_status=FulfillmentStatus.REFUNDED.value
        )
        await AuditLogger.log(order_id=order.id, action=AuditAction.REFUND, actor_type="admin")
        logger.info(f"Order {order.order_number} refunded")
        return await self.store.get(order.id)

    async def delete(self, order_id: str) -> None:
        await self.store.delete(order_id)

    # =========================================================================
    # Re-triggers
    # =========================================================================

    async def retrigger_shipment(self, order_id: str) -> StepResult:
        order = await self.store.get(order_id)
        if order.is_terminal:
            raise InvalidTransitionError(f"Order {order.order_number} is {order.fulfillment_status}")
        if order.tracking_id:
            raise InvalidTransitionError(
                f"Order {order.order_number} already has AWB {order.tracking_id}; cancel it first"
            )
        return await self.saga.provision_shipment(order_id)

    async def retrigger_invoice(self, order_id: str) -> StepResult:
        await self.store.get(order_id)
        return await self.saga.issue_invoice(order_id)

    async def cancel_shipment(self, order_id: str, expected_version: Optional[int] = None) -> Order:
        order = await self._load(order_id, expected_version)
        await self.shipments.cancel(order)
        await AuditLogger.log(
            order_id=order.id,
            action=AuditAction.SHIPMENT_CANCELLED,
            actor_type="admin",
            metadata={"shipment_id": order.carrier_shipment_id, "tracking_id": order.tracking_id},
        )
        return await self.store.get(order.id)

    async def refresh_tracking(self, order_id: str) -> Tuple[Order, Optional[TrackingStatus]]:
        order = await self.store.get(order_id)
        status = await self.shipments.refresh_tracking(order)
        await AuditLogger.log(
            order_id=order.id,
            action=AuditAction.TRACKING_REFRESHED,
            actor_type="admin",
            metadata={"status": status.status if status else None},
        )
        return await self.store.get(order.id), status

    async def download_invoice(self, order_id: str) -> Tuple[str, bytes]:
        order = await self.store.get(order_id)
        if not order.invoice_number:
            raise OrderNotFoundError(f"Order {order.order_number} has no invoice")

        url = order.invoice_url
        if not url:
            document = await self.invoicing.get_invoice(settings.OBLIO_SERIES_NAME, order.invoice_number)
            url = document.url
        if not url:
            raise OrderNotFoundError(f"Invoice {order.invoice_number} has no document link")

        content = await self.invoicing.download_pdf(url)
        return f"factura-{order.invoice_number}.pdf", content
