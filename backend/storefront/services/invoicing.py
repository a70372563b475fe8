# storefront/services/invoicing.py
"""
Invoice Issuer
==============
Issues the fiscal invoice for an order and stores its reference.

Invoice lines add up to the order total: one line per order item at its
snapshot price, a shipping line when shipping was charged, and a negative
discount line when codes were applied. Prices are VAT inclusive.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from storefront.config import get_settings
from storefront.exceptions import StaleOrderError
from storefront.integrations.base import InvoicingConnector
from storefront.models import Order
from storefront.services.order_store import OrderStore

logger = logging.getLogger(__name__)
settings = get_settings()

# Checkout form default for "no fiscal code"
PLACEHOLDER_CIF = "RO00000000"


@dataclass
class InvoiceResult:
    invoice_id: Optional[str]
    number: Optional[str]
    url: Optional[str]
    skipped: bool = False


def client_fiscal_identity(order: Order) -> Dict[str, Any]:
    details = order.details
    if details.is_company:
        cif = details.cui if details.cui and details.cui != PLACEHOLDER_CIF else ""
        return {
            "cif": cif,
            "name": details.company_name or details.full_name,
            "rc": details.reg_com or "",
            "address": details.company_street or details.street,
            "city": details.company_city or details.city,
            "state": details.company_county or details.county,
            "country": details.country,
            "email": details.email,
            "phone": details.phone_number,
        }
    return {
        "cif": "",
        "name": details.full_name,
        "address": details.one_line_address,
        "city": details.city,
        "state": details.county,
        "country": details.country,
        "email": details.email,
        "phone": details.phone_number,
    }


def _line(name: str, price: Decimal, quantity: int = 1) -> Dict[str, Any]:
    return {
        "name": name,
        "price": float(price),
        "measuringUnit": "buc",
        "currency": settings.CURRENCY,
        "vatName": "Normala",
        "vatPercentage": settings.OBLIO_VAT_PERCENTAGE,
        "vatIncluded": True,
        "quantity": quantity,
        "productType": "Marfa",
    }


def invoice_lines(order: Order) -> List[Dict[str, Any]]:
    lines = [
        _line(f"{item.product_name} ({item.size})", item.unit_price, item.quantity)
        for item in order.items
    ]
    if order.shipping_cost and order.shipping_cost > 0:
        lines.append(_line("Transport", order.shipping_cost))
    # The discount never takes the goods below zero
    discount = min(order.discount_total or 0, order.subtotal)
    if discount > 0:
        lines.append(_line("Discount", -discount))
    return lines


def build_invoice_payload(order: Order) -> Dict[str, Any]:
    return {
        "client": client_fiscal_identity(order),
        "issueDate": (order.created_at or order.updated_at).date().isoformat(),
        "seriesName": settings.OBLIO_SERIES_NAME,
        "language": "RO",
        "precision": 2,
        "currency": settings.CURRENCY,
        "products": invoice_lines(order),
        "mentions": f"Comanda {order.order_number}",
        "useStock": 0,
    }


class InvoiceIssuer:

    def __init__(self, store: OrderStore, invoicing: InvoicingConnector):
        self.store = store
        self.invoicing = invoicing

    async def issue(self, order: Order) -> InvoiceResult:
        """Issue and store the invoice. Raises on failure; the saga step boundary catches it."""
        if order.invoice_number:
            logger.info(f"Order {order.order_number} already invoiced ({order.invoice_number}), skipping")
            return InvoiceResult(order.invoice_id, order.invoice_number, order.invoice_url, skipped=True)

        document = await self.invoicing.create_invoice(build_invoice_payload(order))
        fields = {
            "invoice_id": document.invoice_id,
            "invoice_number": document.number,
            "invoice_url": document.url,
        }
        try:
            order.version = await self.store.update_order(order.id, order.version, **fields)
        except StaleOrderError:
            # Invoice refs never conflict with a status change; the document exists either way
            fresh = await self.store.get(order.id)
            order.version = await self.store.update_order(order.id, fresh.version, **fields)
        order.invoice_id = document.invoice_id
        order.invoice_number = document.number
        order.invoice_url = document.url

        logger.info(f"🧾 Invoice {document.number} stored on order {order.order_number}")
        return InvoiceResult(document.invoice_id, document.number, document.url)
