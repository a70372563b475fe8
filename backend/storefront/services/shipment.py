# storefront/services/shipment.py
"""
Shipment Provisioner
====================
Books the carrier shipment for a committed order.

Walks the address resolution ladder and tries to create the shipment with
each rung until the carrier accepts one. The order ends up either
`shipment_provisioned` (carrier refs stored) or `shipment_failed`; this
module never raises on carrier failure, the status is the signal.
"""

import logging
import re
from contextlib import aclosing
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from storefront.config import get_settings
from storefront.exceptions import InvalidTransitionError, StaleOrderError
from storefront.integrations.base import CarrierConnector, TrackingStatus
from storefront.models import FulfillmentStatus, Order, OrderLineItem, PaymentMethod
from storefront.services.address_resolution import AddressQuery, AddressResolutionChain, Resolution
from storefront.services.audit_logger import AuditAction, log_order_event
from storefront.services.order_store import OrderStore

logger = logging.getLogger(__name__)
settings = get_settings()

MIN_WEIGHT_KG = Decimal("1")


def compute_weight(items: Iterable[OrderLineItem]) -> Decimal:
    """Sum of product weight x quantity; unknown weights count as 0; never below 1 kg."""
    total = Decimal("0")
    for item in items:
        weight = item.product.weight if item.product is not None else None
        total += Decimal(str(weight or 0)) * item.quantity
    return max(MIN_WEIGHT_KG, total)


def build_shipment_request(order: Order, resolution: Resolution, weight: Decimal) -> Dict[str, Any]:
    details = order.details
    contents = ", ".join(item.product_name for item in order.items)
    if resolution.notes:
        contents = f"{contents} | {resolution.notes}"

    recipient: Dict[str, Any] = {
        "phone1": {"number": re.sub(r"\s+", "", details.phone_number)},
        "clientName": details.full_name,
        "email": details.email,
        "privatePerson": True,
        "address": resolution.recipient_address(),
    }
    if details.is_company and details.company_name:
        recipient["clientName"] = details.company_name
        recipient["contactName"] = details.full_name
        recipient["privatePerson"] = False

    service: Dict[str, Any] = {
        "serviceId": settings.DPD_SERVICE_ID,
        "autoAdjustPickupDate": True,
    }
    if order.payment_method == PaymentMethod.CASH_ON_DELIVERY.value:
        service["additionalServices"] = {
            "cod": {"amount": float(order.total), "processingType": "CASH"},
        }

    return {
        "sender": {
            "phone1": {"number": settings.COMPANY_PHONE},
            "contactName": settings.COMPANY_NAME,
            "email": settings.COMPANY_EMAIL,
        },
        "recipient": recipient,
        "service": service,
        "content": {
            "parcelsCount": 1,
            "totalWeight": float(weight),
            "contents": contents,
            "package": "BOX",
        },
        "payment": {"courierServicePayer": "SENDER"},
        "ref1": order.order_number,
    }


@dataclass
class ShipmentOutcome:
    ok: bool
    tier: Optional[str] = None
    tracking_id: Optional[str] = None
    shipment_id: Optional[str] = None
    needs_manual_handling: bool = False
    error: Optional[str] = None


class ShipmentProvisioner:
    courier_name = "DPD"

    def __init__(
        self,
        store: OrderStore,
        carrier: CarrierConnector,
        chain: Optional[AddressResolutionChain] = None,
    ):
        self.store = store
        self.carrier = carrier
        self.chain = chain or AddressResolutionChain(carrier)

    async def provision(self, order: Order) -> ShipmentOutcome:
        if order.is_terminal:
            logger.warning(
                f"Order {order.order_number} is {order.fulfillment_status}; not booking a shipment"
            )
            return ShipmentOutcome(ok=False, error=f"order is {order.fulfillment_status}")

        if order.tracking_id:
            logger.info(f"Order {order.order_number} already has AWB {order.tracking_id}, skipping")
            return ShipmentOutcome(
                ok=True, tracking_id=order.tracking_id, shipment_id=order.carrier_shipment_id
            )

        weight = compute_weight(order.items)
        query = AddressQuery.from_details(order.details)
        last_error: Optional[Exception] = None

        async with aclosing(self.chain.resolutions(query)) as ladder:
            async for resolution in ladder:
                request = build_shipment_request(order, resolution, weight)
                try:
                    confirmation = await self.carrier.create_shipment(request)
                except Exception as e:
                    last_error = e
                    logger.warning(
                        f"Carrier rejected {resolution.tier} address for order {order.order_number}: {e}"
                    )
                    continue

                version = await self._record(
                    order,
                    courier=self.courier_name,
                    tracking_id=confirmation.tracking_id,
                    carrier_shipment_id=confirmation.shipment_id,
                    fulfillment_status=FulfillmentStatus.SHIPMENT_PROVISIONED.value,
                )
                outcome = ShipmentOutcome(
                    ok=True,
                    tier=resolution.tier,
                    tracking_id=confirmation.tracking_id,
                    shipment_id=confirmation.shipment_id,
                    needs_manual_handling=resolution.needs_manual_handling,
                )
                if version is None:
                    outcome.ok = False
                    outcome.error = "order changed while the shipment was being booked"
                    return outcome

                logger.info(
                    f"🚚 Shipment booked for order {order.order_number} "
                    f"({resolution.tier}), AWB {confirmation.tracking_id}"
                )
                await self._seed_tracking(order.id, version, confirmation.tracking_id)
                return outcome

        logger.error(f"❌ Shipment could not be created for order {order.order_number}: {last_error}")
        await self._record(order, fulfillment_status=FulfillmentStatus.SHIPMENT_FAILED.value)
        return ShipmentOutcome(ok=False, error=str(last_error) if last_error else "no address resolution")

    async def _record(self, order: Order, **fields) -> Optional[int]:
        """
        Version-checked write. On a concurrent change, re-read once: a
        terminal (or already provisioned) order keeps its state and the
        booked shipment is audited as orphaned.
        """
        try:
            version = await self.store.update_order(order.id, order.version, **fields)
        except StaleOrderError:
            fresh = await self.store.get(order.id)
            if fresh.is_terminal or fresh.tracking_id:
                logger.error(
                    f"Order {order.order_number} changed to {fresh.fulfillment_status} "
                    f"during shipment booking; keeping its current state"
                )
                if fields.get("carrier_shipment_id"):
                    await log_order_event(
                        order.id,
                        AuditAction.SHIPMENT_ORPHANED,
                        {
                            "shipment_id": fields.get("carrier_shipment_id"),
                            "tracking_id": fields.get("tracking_id"),
                        },
                    )
                return None
            version = await self.store.update_order(order.id, fresh.version, **fields)
        order.version = version
        return version

    async def _seed_tracking(self, order_id: str, version: int, tracking_id: str) -> None:
        try:
            status = await self.carrier.track(tracking_id)
            if status is not None:
                await self.store.update_order(
                    order_id,
                    version,
                    carrier_status=status.status,
                    carrier_operation_code=status.operation_code,
                )
        except Exception as e:
            logger.warning(f"Initial tracking poll failed for AWB {tracking_id}: {e}")

    # =========================================================================
    # Admin operations
    # =========================================================================

    async def cancel(self, order: Order, comment: str = "Anulare comanda") -> int:
        """Cancel the carrier shipment and clear the carrier refs. Returns the new version."""
        if not order.carrier_shipment_id:
            raise InvalidTransitionError(f"Order {order.order_number} has no carrier shipment")

        await self.carrier.cancel_shipment(order.carrier_shipment_id, comment)
        fields: Dict[str, Any] = {
            "courier": None,
            "tracking_id": None,
            "carrier_shipment_id": None,
            "carrier_status": None,
            "carrier_operation_code": None,
        }
        if not order.is_terminal:
            fields["fulfillment_status"] = FulfillmentStatus.PENDING.value
        return await self.store.update_order(order.id, order.version, **fields)

    async def refresh_tracking(self, order: Order) -> Optional[TrackingStatus]:
        if not order.tracking_id:
            raise InvalidTransitionError(f"Order {order.order_number} has no AWB")

        status = await self.carrier.track(order.tracking_id)
        if status is not None:
            await self.store.update_order(
                order.id,
                order.version,
                carrier_status=status.status,
                carrier_operation_code=status.operation_code,
            )
        return status
