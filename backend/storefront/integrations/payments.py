"""
Payment processor integration (card flow).

SECURITY: Callbacks are verified with an HMAC-SHA256 signature over
"<timestamp>.<raw body>" and rejected outside the replay tolerance window.
"""

import hashlib
import hmac
import logging
import time
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception, before_sleep_log

from storefront.config import get_settings
from storefront.exceptions import PaymentProcessorError, WebhookSignatureError
from storefront.integrations.base import is_retryable_httpx_error

logger = logging.getLogger(__name__)
settings = get_settings()

SIGNATURE_HEADER = "Payment-Signature"


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    payload: bytes,
    header: Optional[str],
    secret: Optional[str] = None,
    tolerance: Optional[int] = None,
    now: Optional[float] = None,
) -> None:
    """
    Verify a `t=<unix>,v1=<hex>` signature header.

    Raises:
        WebhookSignatureError: missing/malformed header, bad signature, or stale timestamp
    """
    secret = secret or settings.PAYMENT_WEBHOOK_SECRET
    tolerance = tolerance if tolerance is not None else settings.PAYMENT_WEBHOOK_TOLERANCE_SECONDS
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")
    if not header:
        raise WebhookSignatureError(f"Missing {SIGNATURE_HEADER} header")

    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not timestamp.isdigit() or not signatures:
        raise WebhookSignatureError("Malformed signature header")

    current = now if now is not None else time.time()
    if abs(current - int(timestamp)) > tolerance:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    expected = compute_signature(payload, int(timestamp), secret)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("Signature mismatch")


class PaymentProcessorClient:
    """Read-only access to checkout sessions, used by the success landing page."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key or settings.PAYMENT_API_KEY
        self.base_url = (base_url or settings.PAYMENT_API_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    @retry(
        retry=retry_if_exception(is_retryable_httpx_error),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                f"{self.base_url}/checkout/sessions/{session_id}",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        if response.status_code == 404:
            raise PaymentProcessorError(f"Checkout session {session_id} not found", status_code=404)
        response.raise_for_status()
        return response.json()
