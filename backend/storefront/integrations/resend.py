import base64
import logging
from typing import List, Optional

import httpx

from storefront.config import get_settings
from storefront.exceptions import EmailDeliveryError
from storefront.integrations.base import EmailAttachment, EmailConnector
from storefront.integrations.circuit_breaker import get_email_circuit_breaker

logger = logging.getLogger(__name__)
settings = get_settings()


class ResendConnector(EmailConnector):
    """
    Resend transactional email adapter.

    Sends are not retried here; the idempotency key lets an operator
    re-trigger a notification without the customer getting it twice.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or settings.RESEND_API_KEY
        self.from_email = from_email or settings.RESEND_FROM_EMAIL
        self.from_name = from_name or settings.RESEND_FROM_NAME
        self.base_url = (base_url or settings.RESEND_API_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    def _headers(self, idempotency_key: Optional[str] = None):
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def send(
        self,
        to: List[str],
        subject: str,
        html: str,
        text: Optional[str] = None,
        attachments: Optional[List[EmailAttachment]] = None,
        idempotency_key: Optional[str] = None,
    ) -> str:
        if not to:
            raise EmailDeliveryError("No recipients")

        payload = {
            "from": f"{self.from_name} <{self.from_email}>",
            "to": to,
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        if attachments:
            payload["attachments"] = [
                {
                    "filename": a.filename,
                    "content": base64.b64encode(a.content).decode("ascii"),
                    "content_type": a.content_type,
                }
                for a in attachments
            ]

        async def _execute():
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/emails",
                    json=payload,
                    headers=self._headers(idempotency_key),
                )
            if response.status_code >= 400:
                raise EmailDeliveryError(
                    f"Resend rejected email '{subject}': {response.text}",
                    status_code=response.status_code,
                )
            message_id = response.json().get("id", "")
            logger.info(f"✉️ Email '{subject}' sent to {len(to)} recipient(s). ID: {message_id}")
            return message_id

        breaker = get_email_circuit_breaker()
        return await breaker.call(_execute)
