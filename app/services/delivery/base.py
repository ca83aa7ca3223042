from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(slots=True)
class DeliveryResult:
    """Normalized response returned by delivery providers."""

    recipient: str
    provider: str
    provider_message_id: Optional[str] = None
    provider_status: Optional[str] = None
    meta: Optional[dict[str, Any]] = None


class BaseSMSProvider(ABC):
    """Interface all SMS providers must implement."""

    name: str

    @abstractmethod
    def send_text(self, *, phone: str, message: str) -> DeliveryResult:
        """Send the given text to the phone number."""
        raise NotImplementedError


class BaseEmailProvider(ABC):
    """Interface all email providers must implement."""

    name: str

    @abstractmethod
    def send_email(self, *, email: str, subject: str, body: str) -> DeliveryResult:
        """Send a plain-text message to the address."""
        raise NotImplementedError
