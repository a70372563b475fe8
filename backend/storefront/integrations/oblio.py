import logging
import re
import time
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception, before_sleep_log

from storefront.config import get_settings
from storefront.exceptions import InvoicingError
from storefront.integrations.base import InvoiceDocument, InvoicingConnector, is_retryable_httpx_error
from storefront.integrations.circuit_breaker import get_invoicing_circuit_breaker

logger = logging.getLogger(__name__)
settings = get_settings()

_LINK_ID = re.compile(r"id=(\d+)")


class OblioConnector(InvoicingConnector):
    """
    Oblio invoicing adapter.

    Authenticates with client credentials (account email + API secret) and
    caches the bearer token until shortly before it expires.
    """

    def __init__(
        self,
        email: Optional[str] = None,
        api_secret: Optional[str] = None,
        cif: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.email = email or settings.OBLIO_EMAIL
        self.api_secret = api_secret or settings.OBLIO_API_SECRET
        self.cif = cif or settings.COMPANY_CIF
        self.base_url = (base_url or settings.OBLIO_API_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0

    async def _get_token(self) -> str:
        if self._token and time.time() < self._token_expires_at:
            return self._token

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/authorize/token",
                data={"client_id": self.email, "client_secret": self.api_secret},
            )
            response.raise_for_status()
            payload = response.json()

        token = payload.get("access_token")
        if not token:
            raise InvoicingError("Oblio did not return an access token", status_code=response.status_code)

        self._token = token
        # Refresh a minute early
        self._token_expires_at = time.time() + int(payload.get("expires_in", 3600)) - 60
        return token

    async def _request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        async def _execute():
            token = await self._get_token()
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs
                )
            payload = response.json() if response.content else {}
            if response.status_code >= 400:
                message = payload.get("statusMessage") if isinstance(payload, dict) else None
                raise InvoicingError(
                    f"Oblio {method} {endpoint} failed: {message or response.status_code}",
                    status_code=response.status_code,
                )
            return payload

        breaker = get_invoicing_circuit_breaker()
        return await breaker.call(_execute)

    # =========================================================================
    # Documents
    # =========================================================================

    async def create_invoice(self, payload: Dict[str, Any]) -> InvoiceDocument:
        """Issue an invoice. Not retried: a retry could issue a second fiscal document."""
        body = {"cif": self.cif, **payload}
        response = await self._request("POST", "docs/invoice", json=body)
        data = response.get("data") or {}
        number = data.get("number")
        if not number:
            raise InvoicingError("Oblio accepted the invoice but returned no number")

        link = data.get("link")
        match = _LINK_ID.search(link or "")
        series = data.get("seriesName") or payload.get("seriesName")
        document = InvoiceDocument(
            invoice_id=match.group(1) if match else f"{series}-{number}",
            number=str(number),
            url=link,
            series=series,
        )
        logger.info(f"🧾 Oblio invoice {series} {document.number} issued")
        return document

    @retry(
        retry=retry_if_exception(is_retryable_httpx_error),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def get_invoice(self, series: str, number: str) -> InvoiceDocument:
        response = await self._request(
            "GET", "docs/invoice", params={"cif": self.cif, "seriesName": series, "number": number}
        )
        data = response.get("data") or {}
        link = data.get("link")
        match = _LINK_ID.search(link or "")
        return InvoiceDocument(
            invoice_id=match.group(1) if match else f"{series}-{number}",
            number=str(number),
            url=link,
            series=series,
        )

    @retry(
        retry=retry_if_exception(is_retryable_httpx_error),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def download_pdf(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content
