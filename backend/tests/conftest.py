# backend/tests/conftest.py
"""
Shared fixtures: a throwaway SQLite database, catalog seeding helpers and
in-memory fakes for the carrier, invoicing and email connectors.
"""

import os
import tempfile

# Settings are read at import time; configure before importing storefront
_TMP_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP_DIR}/test.db")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("ADMIN_NOTIFICATION_EMAILS", '["admin@shop.test"]')
os.environ.setdefault("DEBUG", "false")
# Concurrent creators may collide on order numbers several times in a row
os.environ.setdefault("ORDER_NUMBER_ATTEMPTS", "10")

from decimal import Decimal
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import pytest_asyncio

from storefront.database import Base, async_session_maker, engine
from storefront.exceptions import CarrierError, EmailDeliveryError, InvoicingError
from storefront.integrations.base import (
    CarrierConnector,
    EmailConnector,
    InvoiceDocument,
    InvoicingConnector,
    ShipmentConfirmation,
    SiteMatch,
    TrackingStatus,
)
from storefront.models import DiscountCode, Product, ShippingDetails, SizeVariant
from storefront.orchestration import FulfillmentSaga
from storefront.services.invoicing import InvoiceIssuer
from storefront.services.notifier import Notifier
from storefront.services.order_store import CartLine, OrderDraft, OrderStore
from storefront.services.shipment import ShipmentProvisioner


# =============================================================================
# Infrastructure
# =============================================================================

@pytest.fixture(autouse=True)
def breaker_redis():
    """Circuit breakers never talk to a real Redis in tests."""
    redis = MagicMock()
    redis.get.return_value = None
    redis.incr.return_value = 1
    with patch("storefront.integrations.circuit_breaker.get_redis_client", return_value=redis):
        yield redis


@pytest_asyncio.fixture
async def database():
    """Fresh schema per test; yields the session factory."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield async_session_maker
    await engine.dispose()


@pytest.fixture
def order_store(database) -> OrderStore:
    return OrderStore(database)


# =============================================================================
# Seeding
# =============================================================================

@pytest.fixture
def make_variant(database):
    async def _make(
        name: str = "Folie protectie ecran",
        size: str = "M",
        price: str = "100.00",
        stock: int = 5,
        weight: Optional[str] = "0.200",
        allow_out_of_stock: bool = False,
    ) -> SizeVariant:
        async with database() as session:
            async with session.begin():
                product = Product(
                    name=name,
                    price=Decimal(price),
                    weight=Decimal(weight) if weight is not None else None,
                    allow_out_of_stock=allow_out_of_stock,
                )
                session.add(product)
                await session.flush()
                variant = SizeVariant(product_id=product.id, size=size, price=Decimal(price), stock=stock)
                session.add(variant)
        return variant

    return _make


@pytest.fixture
def make_details(database):
    async def _make(**overrides) -> str:
        values = dict(
            full_name="Ana Popescu",
            email="ana@example.com",
            phone_number="0722 123 456",
            street="Strada Lalelelor 5",
            city="Bucuresti",
            county="Sector 1",
            postal_code="010011",
        )
        values.update(overrides)
        async with database() as session:
            async with session.begin():
                details = ShippingDetails(**values)
                session.add(details)
        return details.id

    return _make


@pytest.fixture
def make_discount(database):
    async def _make(code: str, kind: str, value: str = "0", **overrides) -> DiscountCode:
        async with database() as session:
            async with session.begin():
                discount = DiscountCode(code=code, kind=kind, value=Decimal(value), **overrides)
                session.add(discount)
        return discount

    return _make


@pytest.fixture
def place_order(order_store, make_variant, make_details):
    """Create a committed order for one variant and return it fully loaded."""
    counter = {"n": 0}

    async def _place(
        payment_method: str = "card",
        quantity: int = 1,
        price: str = "100.00",
        discount_codes=(),
        **details_overrides,
    ):
        counter["n"] += 1
        variant = await make_variant(price=price, stock=10)
        details_id = await make_details(**details_overrides)
        result = await order_store.create_order(OrderDraft(
            lines=[CartLine(variant.product_id, variant.size, quantity)],
            shipping_details_id=details_id,
            payment_method=payment_method,
            discount_codes=list(discount_codes),
            checkout_session_id=f"cs_test_{counter['n']}" if payment_method == "card" else None,
            commit_stock=payment_method == "card",
        ))
        return await order_store.get(result.order_id)

    return _place


@pytest.fixture
def read_stock(database):
    async def _read(variant_id: str) -> int:
        async with database() as session:
            variant = await session.get(SizeVariant, variant_id)
            return variant.stock

    return _read


# =============================================================================
# Connector fakes
# =============================================================================

class FakeCarrier(CarrierConnector):
    """Knows one locality (BUCURESTI) with one real street and one placeholder street."""

    name = "DPD"

    def __init__(self):
        self.country_id: Optional[int] = 642
        self.sites: Dict[str, List[SiteMatch]] = {
            "BUCURESTI": [SiteMatch(site_id=1, name="BUCURESTI", post_code="010011")],
        }
        self.streets: Dict[tuple, int] = {(1, "LALELELOR"): 100, (1, "PRINCIPALA"): 200}
        self.create_failures = 0
        self.created: List[dict] = []
        self.cancelled: List[str] = []
        self.lookups: List[tuple] = []
        self.tracking: Optional[TrackingStatus] = TrackingStatus("Expediere creata", "-14")

    async def find_country(self, name):
        self.lookups.append(("country", name))
        return self.country_id

    async def find_sites(self, country_id, name):
        self.lookups.append(("site", name))
        return list(self.sites.get(name, []))

    async def find_street(self, site_id, name):
        self.lookups.append(("street", name))
        return self.streets.get((site_id, name))

    async def create_shipment(self, request):
        self.created.append(request)
        if self.create_failures:
            self.create_failures -= 1
            raise CarrierError("Adresa invalida")
        n = len(self.created)
        return ShipmentConfirmation(shipment_id=f"SHP-{n}", parcel_ids=[f"AWB-{n}"])

    async def cancel_shipment(self, shipment_id, comment):
        self.cancelled.append(shipment_id)
        return True

    async def track(self, parcel_id):
        return self.tracking


class FakeInvoicing(InvoicingConnector):

    def __init__(self):
        self.issued: List[dict] = []
        self.fail = False
        self.download_fails = False

    async def create_invoice(self, payload):
        if self.fail:
            raise InvoicingError("Oblio unavailable", status_code=503)
        self.issued.append(payload)
        n = len(self.issued)
        return InvoiceDocument(
            invoice_id=str(1000 + n),
            number=f"{n:04d}",
            url=f"https://oblio.test/doc?id={1000 + n}",
            series="SS",
        )

    async def get_invoice(self, series, number):
        return InvoiceDocument(invoice_id="1", number=number, url=f"https://oblio.test/{series}/{number}", series=series)

    async def download_pdf(self, url):
        if self.download_fails:
            raise InvoicingError("download failed", status_code=500)
        return b"%PDF-1.4 test"


class FakeEmail(EmailConnector):

    def __init__(self):
        self.sent: List[dict] = []
        self.failing_recipients: set = set()

    async def send(self, to, subject, html, text=None, attachments=None, idempotency_key=None):
        if self.failing_recipients & set(to):
            raise EmailDeliveryError(f"Rejected {to}", status_code=422)
        self.sent.append({
            "to": list(to),
            "subject": subject,
            "html": html,
            "text": text,
            "attachments": attachments or [],
            "idempotency_key": idempotency_key,
        })
        return f"msg-{len(self.sent)}"


@pytest.fixture
def carrier() -> FakeCarrier:
    return FakeCarrier()


@pytest.fixture
def invoicing() -> FakeInvoicing:
    return FakeInvoicing()


@pytest.fixture
def email() -> FakeEmail:
    return FakeEmail()


@pytest.fixture
def shipments(order_store, carrier) -> ShipmentProvisioner:
    return ShipmentProvisioner(order_store, carrier)


@pytest.fixture
def saga(order_store, shipments, invoicing, email) -> FulfillmentSaga:
    return FulfillmentSaga(
        store=order_store,
        shipments=shipments,
        invoices=InvoiceIssuer(order_store, invoicing),
        notifier=Notifier(email, invoicing, admin_recipients=["admin@shop.test"]),
    )


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
def payments():
    client = MagicMock()
    client.retrieve_checkout_session = AsyncMock()
    return client


@pytest_asyncio.fixture
async def client(database, carrier, invoicing, email, payments):
    """API client with every outbound connector replaced by a fake."""
    from storefront.main import app
    from storefront.routers import dependencies

    app.dependency_overrides[dependencies.get_carrier] = lambda: carrier
    app.dependency_overrides[dependencies.get_invoicing] = lambda: invoicing
    app.dependency_overrides[dependencies.get_email] = lambda: email
    app.dependency_overrides[dependencies.get_payments] = lambda: payments

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
