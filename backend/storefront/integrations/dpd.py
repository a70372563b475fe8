import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception, before_sleep_log

from storefront.config import get_settings
from storefront.exceptions import CarrierError
from storefront.integrations.base import (
    CarrierConnector,
    ShipmentConfirmation,
    SiteMatch,
    TrackingStatus,
    is_retryable_httpx_error,
)
from storefront.integrations.circuit_breaker import get_carrier_circuit_breaker

logger = logging.getLogger(__name__)
settings = get_settings()


class DPDConnector(CarrierConnector):
    """
    DPD Romania adapter (JSON over HTTPS, credentials in every body).

    Location lookups and tracking are reads and are retried on 429/5xx.
    Shipment creation and cancellation are not: a retried create could
    book a second parcel.
    """
    name = "DPD"

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.username = username or settings.DPD_USERNAME
        self.password = password or settings.DPD_PASSWORD
        self.base_url = (base_url or settings.DPD_API_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    def _body(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "userName": self.username,
            "password": self.password,
            "language": "RO",
            **data,
        }

    async def _post(self, endpoint: str, data: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        async def _execute():
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=self._body(data))
                response.raise_for_status()
                payload = response.json()

            # DPD reports business errors with HTTP 200 and an error object
            error = payload.get("error") if isinstance(payload, dict) else None
            if error:
                message = error.get("message") if isinstance(error, dict) else str(error)
                raise CarrierError(f"DPD error on {endpoint}: {message}")
            return payload

        breaker = get_carrier_circuit_breaker()
        return await breaker.call(_execute)

    # =========================================================================
    # Location lookups (retried)
    # =========================================================================

    @retry(
        retry=retry_if_exception(is_retryable_httpx_error),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def find_country(self, name: str) -> Optional[int]:
        payload = await self._post("location/country", {"name": name})
        countries = payload.get("countries") or []
        if not countries:
            return None
        return countries[0]["id"]

    @retry(
        retry=retry_if_exception(is_retryable_httpx_error),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def find_sites(self, country_id: int, name: str) -> List[SiteMatch]:
        payload = await self._post("location/site", {"countryId": country_id, "name": name})
        return [
            SiteMatch(site_id=site["id"], name=site.get("name", ""), post_code=site.get("postCode"))
            for site in payload.get("sites") or []
        ]

    @retry(
        retry=retry_if_exception(is_retryable_httpx_error),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def find_street(self, site_id: int, name: str) -> Optional[int]:
        payload = await self._post("location/street", {"siteId": site_id, "name": name})
        streets = payload.get("streets") or []
        if not streets:
            return None
        return streets[0]["id"]

    # =========================================================================
    # Shipment lifecycle (never retried automatically)
    # =========================================================================

    async def create_shipment(self, request: Dict[str, Any]) -> ShipmentConfirmation:
        payload = await self._post("shipment/", request)
        parcels = payload.get("parcels") or []
        if not payload.get("id") or not parcels:
            raise CarrierError("DPD accepted the shipment but returned no parcel id")

        confirmation = ShipmentConfirmation(
            shipment_id=str(payload["id"]),
            parcel_ids=[str(p["id"]) for p in parcels],
            raw=payload,
        )
        logger.info(f"📦 DPD shipment {confirmation.shipment_id} created, AWB {confirmation.tracking_id}")
        return confirmation

    async def cancel_shipment(self, shipment_id: str, comment: str) -> bool:
        await self._post("shipment/cancel", {"shipmentId": shipment_id, "comment": comment})
        logger.info(f"DPD shipment {shipment_id} cancelled")
        return True

    # =========================================================================
    # Tracking (retried)
    # =========================================================================

    @retry(
        retry=retry_if_exception(is_retryable_httpx_error),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def track(self, parcel_id: str) -> Optional[TrackingStatus]:
        payload = await self._post(
            "track/",
            {"parcels": [{"id": parcel_id}], "lastOperationOnly": True},
        )
        parcels = payload.get("parcels") or []
        if not parcels:
            return None

        operations = parcels[0].get("operations") or []
        if not operations:
            return None

        last = operations[-1]
        code = last.get("operationCode")
        return TrackingStatus(
            status=last.get("description") or last.get("status"),
            operation_code=str(code) if code is not None else None,
            occurred_at=last.get("dateTime"),
        )
