"""
Connector contracts for the external services the fulfillment saga calls.

Domain code programs against these interfaces; concrete connectors (DPD,
Oblio, Resend) are wired in storefront.routers.dependencies and swapped for fakes in
tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx


def is_retryable_httpx_error(exception) -> bool:
    """Return True if exception is a retryable HTTP error (429, 5xx) or a transport timeout."""

    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status == 429 or status >= 500

    if isinstance(exception, (httpx.ConnectError, httpx.TimeoutException)):
        return True

    # Connector errors carry the upstream status when there was one
    status = getattr(exception, "status_code", None)
    if isinstance(status, int):
        return status == 429 or status >= 500

    return False


# =============================================================================
# Carrier
# =============================================================================

@dataclass
class ShipmentConfirmation:
    shipment_id: str
    parcel_ids: List[str]
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def tracking_id(self) -> str:
        return self.parcel_ids[0]


@dataclass
class TrackingStatus:
    status: Optional[str]
    operation_code: Optional[str] = None
    occurred_at: Optional[str] = None


@dataclass
class SiteMatch:
    site_id: int
    name: str
    post_code: Optional[str] = None


class CarrierConnector(ABC):
    """Location lookups, shipment lifecycle and tracking."""

    name: str = "carrier"

    @abstractmethod
    async def find_country(self, name: str) -> Optional[int]:
        ...

    @abstractmethod
    async def find_sites(self, country_id: int, name: str) -> List[SiteMatch]:
        ...

    @abstractmethod
    async def find_street(self, site_id: int, name: str) -> Optional[int]:
        ...

    @abstractmethod
    async def create_shipment(self, request: Dict[str, Any]) -> ShipmentConfirmation:
        ...

    @abstractmethod
    async def cancel_shipment(self, shipment_id: str, comment: str) -> bool:
        ...

    @abstractmethod
    async def track(self, parcel_id: str) -> Optional[TrackingStatus]:
        ...


# =============================================================================
# Invoicing
# =============================================================================

@dataclass
class InvoiceDocument:
    invoice_id: str
    number: str
    url: Optional[str]
    series: Optional[str] = None


class InvoicingConnector(ABC):

    @abstractmethod
    async def create_invoice(self, payload: Dict[str, Any]) -> InvoiceDocument:
        ...

    @abstractmethod
    async def get_invoice(self, series: str, number: str) -> InvoiceDocument:
        ...

    @abstractmethod
    async def download_pdf(self, url: str) -> bytes:
        ...


# =============================================================================
# Email
# =============================================================================

@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


class EmailConnector(ABC):

    @abstractmethod
    async def send(
        self,
        to: List[str],
        subject: str,
        html: str,
        text: Optional[str] = None,
        attachments: Optional[List[EmailAttachment]] = None,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Send one message and return the provider's message id."""
