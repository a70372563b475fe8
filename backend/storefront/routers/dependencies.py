"""
Router Dependencies
====================

Shared FastAPI dependencies: admin authentication and the service graph.
Tests replace the connector factories through `app.dependency_overrides`.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException

from storefront.config import get_settings
from storefront.integrations.base import CarrierConnector, EmailConnector, InvoicingConnector
from storefront.integrations.dpd import DPDConnector
from storefront.integrations.oblio import OblioConnector
from storefront.integrations.payments import PaymentProcessorClient
from storefront.integrations.resend import ResendConnector
from storefront.orchestration import FulfillmentSaga
from storefront.services.admin_orders import AdminOrderService
from storefront.services.checkout import CheckoutService
from storefront.services.invoicing import InvoiceIssuer
from storefront.services.notifier import Notifier
from storefront.services.order_store import OrderStore
from storefront.services.shipment import ShipmentProvisioner

settings = get_settings()


async def require_admin(x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key")) -> None:
    """
    Dependency guarding the admin order routes.

    Raises:
        HTTPException(401): If the key is missing or wrong.
    """
    if not x_admin_key or not hmac.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid admin key")


# =============================================================================
# Connectors
# =============================================================================

def get_carrier() -> CarrierConnector:
    return DPDConnector()


def get_invoicing() -> InvoicingConnector:
    return OblioConnector()


def get_email() -> EmailConnector:
    return ResendConnector()


def get_payments() -> PaymentProcessorClient:
    return PaymentProcessorClient()


# =============================================================================
# Services
# =============================================================================

def get_order_store() -> OrderStore:
    return OrderStore()


def get_shipment_provisioner(
    store: OrderStore = Depends(get_order_store),
    carrier: CarrierConnector = Depends(get_carrier),
) -> ShipmentProvisioner:
    return ShipmentProvisioner(store, carrier)


def get_saga(
    store: OrderStore = Depends(get_order_store),
    shipments: ShipmentProvisioner = Depends(get_shipment_provisioner),
    invoicing: InvoicingConnector = Depends(get_invoicing),
    email: EmailConnector = Depends(get_email),
) -> FulfillmentSaga:
    return FulfillmentSaga(
        store=store,
        shipments=shipments,
        invoices=InvoiceIssuer(store, invoicing),
        notifier=Notifier(email, invoicing),
    )


def get_checkout_service(
    store: OrderStore = Depends(get_order_store),
    saga: FulfillmentSaga = Depends(get_saga),
    payments: PaymentProcessorClient = Depends(get_payments),
) -> CheckoutService:
    return CheckoutService(store, saga, payments)


def get_admin_service(
    store: OrderStore = Depends(get_order_store),
    saga: FulfillmentSaga = Depends(get_saga),
    shipments: ShipmentProvisioner = Depends(get_shipment_provisioner),
    invoicing: InvoicingConnector = Depends(get_invoicing),
) -> AdminOrderService:
    return AdminOrderService(store, saga, shipments, invoicing)
