from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.observability import mask_contact

from ..exceptions import DeliveryError
from .base import BaseSMSProvider, DeliveryResult

logger = logging.getLogger(__name__)


class TermiiSMSProvider(BaseSMSProvider):
    """Termii implementation of the SMS provider interface."""

    name = "termii"

    def __init__(
        self,
        *,
        api_key: str,
        sender_id: str,
        api_url: str,
        channel: str = "dnd",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self._api_key = api_key
        self._sender_id = sender_id
        self._api_url = api_url
        self._channel = channel
        self._client = client or httpx.Client(timeout=timeout)

    def send_text(self, *, phone: str, message: str) -> DeliveryResult:
        logger.debug("Sending Termii SMS | phone=%s", mask_contact(phone))
        payload = {
            "to": phone.lstrip("+"),
            "from": self._sender_id,
            "sms": message,
            "type": "plain",
            "channel": self._channel,
            "api_key": self._api_key,
        }
        try:
            response = self._client.post(self._api_url, json=payload)
            response.raise_for_status()
            data: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Termii rejected SMS | phone=%s | status=%s",
                mask_contact(phone),
                exc.response.status_code,
            )
            raise DeliveryError("SMS provider rejected the request") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("Termii SMS sending failed | phone=%s", mask_contact(phone))
            raise DeliveryError("SMS provider is unreachable") from exc

        message_id = data.get("message_id")
        if not message_id:
            raise DeliveryError(f"SMS provider returned no message id: {data.get('message')}")

        meta = {key: data[key] for key in ("balance", "user") if key in data}
        return DeliveryResult(
            recipient=phone,
            provider=self.name,
            provider_message_id=str(message_id),
            provider_status=data.get("message"),
            meta=meta or None,
        )
