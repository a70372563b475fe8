# storefront/services/notifier.py
"""
Notifier
========
Order confirmation to the customer (invoice PDF attached when available)
and an alert to the shop admins. The two sends are independent: either may
fail without affecting the other, and neither affects order state.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from html import escape
from typing import List, Optional

from storefront.config import get_settings
from storefront.integrations.base import EmailAttachment, EmailConnector, InvoicingConnector
from storefront.models import Order, PaymentMethod

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class NotificationReport:
    customer_sent: bool = False
    admin_sent: bool = False
    attachment_included: bool = False
    errors: List[str] = field(default_factory=list)


def _money(value: Decimal) -> str:
    return f"{Decimal(value):.2f} {settings.CURRENCY}"


def _payment_label(order: Order) -> str:
    if order.payment_method == PaymentMethod.CASH_ON_DELIVERY.value:
        return "Ramburs (plata la livrare)"
    return "Card"


def _items_rows(order: Order) -> str:
    return "".join(
        f"<tr><td>{escape(item.product_name)}</td><td>{escape(item.size)}</td>"
        f"<td>{item.quantity}</td><td>{_money(item.unit_price)}</td></tr>"
        for item in order.items
    )


def _totals_html(order: Order) -> str:
    rows = [f"<p>Subtotal: {_money(order.subtotal)}</p>"]
    if order.discount_total and order.discount_total > 0:
        rows.append(f"<p>Discount: -{_money(order.discount_total)}</p>")
    rows.append(
        f"<p>Transport: {'Gratuit' if not order.shipping_cost else _money(order.shipping_cost)}</p>"
    )
    rows.append(f"<p><strong>Total: {_money(order.total)}</strong></p>")
    return "".join(rows)


def customer_confirmation_html(order: Order) -> str:
    details = order.details
    tracking = (
        f"<p>Numar AWB ({escape(order.courier or 'curier')}): <strong>{escape(order.tracking_id)}</strong></p>"
        if order.tracking_id
        else ""
    )
    return (
        f"<h1>Multumim pentru comanda, {escape(details.full_name)}!</h1>"
        f"<p>Comanda <strong>#{escape(order.order_number)}</strong> a fost confirmata.</p>"
        f"<table><tr><th>Produs</th><th>Marime</th><th>Cantitate</th><th>Pret</th></tr>"
        f"{_items_rows(order)}</table>"
        f"{_totals_html(order)}"
        f"<p>Metoda de plata: {_payment_label(order)}</p>"
        f"<h2>Adresa de livrare</h2><p>{escape(details.one_line_address)}</p>"
        f"{tracking}"
        f"<p>{escape(settings.COMPANY_NAME)}</p>"
    )


def customer_confirmation_text(order: Order) -> str:
    details = order.details
    lines = [
        f"Multumim pentru comanda, {details.full_name}!",
        f"Comanda #{order.order_number} a fost confirmata.",
        "",
    ]
    lines += [
        f"- {item.product_name} ({item.size}) x{item.quantity}: {_money(item.unit_price)}"
        for item in order.items
    ]
    lines += [
        "",
        f"Subtotal: {_money(order.subtotal)}",
    ]
    if order.discount_total and order.discount_total > 0:
        lines.append(f"Discount: -{_money(order.discount_total)}")
    lines += [
        f"Transport: {'Gratuit' if not order.shipping_cost else _money(order.shipping_cost)}",
        f"Total: {_money(order.total)}",
        f"Metoda de plata: {_payment_label(order)}",
        f"Adresa de livrare: {details.one_line_address}",
    ]
    if order.tracking_id:
        lines.append(f"Numar AWB: {order.tracking_id}")
    return "\n".join(lines)


def admin_alert_html(order: Order) -> str:
    details = order.details
    company = ""
    if details.is_company:
        company = (
            f"<h2>Date firma</h2>"
            f"<p>{escape(details.company_name or '')}<br>CUI: {escape(details.cui or '')}<br>"
            f"Reg. Com.: {escape(details.reg_com or '')}<br>"
            f"{escape(', '.join(p for p in [details.company_street, details.company_city, details.company_county] if p))}</p>"
        )
    if order.tracking_id:
        shipment = f"AWB {escape(order.tracking_id)} ({escape(order.fulfillment_status)})"
    else:
        shipment = f"fara AWB ({escape(order.fulfillment_status)})"
    return (
        f"<h1>Comanda noua #{escape(order.order_number)}</h1>"
        f"<table><tr><th>Produs</th><th>Marime</th><th>Cantitate</th><th>Pret</th></tr>"
        f"{_items_rows(order)}</table>"
        f"{_totals_html(order)}"
        f"<p>Plata: {_payment_label(order)} ({escape(order.payment_status)})</p>"
        f"<h2>Client</h2>"
        f"<p>{escape(details.full_name)}<br>{escape(details.email)}<br>{escape(details.phone_number)}<br>"
        f"{escape(details.one_line_address)}</p>"
        f"{'<p>Note: ' + escape(details.notes) + '</p>' if details.notes else ''}"
        f"{company}"
        f"<p>Expediere: {shipment}</p>"
        f"<p>Factura: {escape(order.invoice_number or 'neemisa')}</p>"
    )


class Notifier:

    def __init__(
        self,
        email: EmailConnector,
        invoicing: Optional[InvoicingConnector] = None,
        admin_recipients: Optional[List[str]] = None,
    ):
        self.email = email
        self.invoicing = invoicing
        self.admin_recipients = (
            admin_recipients if admin_recipients is not None else list(settings.ADMIN_NOTIFICATION_EMAILS)
        )

    async def notify(self, order: Order) -> NotificationReport:
        report = NotificationReport()

        attachments = await self._invoice_attachment(order)
        report.attachment_included = bool(attachments)

        try:
            await self.email.send(
                to=[order.details.email],
                subject=f"Confirmare comanda #{order.order_number}",
                html=customer_confirmation_html(order),
                text=customer_confirmation_text(order),
                attachments=attachments,
                idempotency_key=f"order-confirmation/{order.id}",
            )
            report.customer_sent = True
        except Exception as e:
            logger.error(f"❌ Customer confirmation for order {order.order_number} failed: {e}")
            report.errors.append(f"customer: {e}")

        if not self.admin_recipients:
            logger.info("No admin notification recipients configured")
            return report

        try:
            await self.email.send(
                to=self.admin_recipients,
                subject=f"Comanda noua #{order.order_number} - {_money(order.total)}",
                html=admin_alert_html(order),
                idempotency_key=f"order-admin-alert/{order.id}",
            )
            report.admin_sent = True
        except Exception as e:
            logger.error(f"❌ Admin alert for order {order.order_number} failed: {e}")
            report.errors.append(f"admin: {e}")

        return report

    async def _invoice_attachment(self, order: Order) -> Optional[List[EmailAttachment]]:
        if not order.invoice_url or self.invoicing is None:
            return None
        try:
            content = await self.invoicing.download_pdf(order.invoice_url)
        except Exception as e:
            logger.warning(f"Invoice PDF download failed for order {order.order_number}, sending without it: {e}")
            return None
        return [EmailAttachment(filename=f"factura-{order.invoice_number or order.order_number}.pdf", content=content)]
