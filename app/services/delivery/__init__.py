from .base import BaseEmailProvider, BaseSMSProvider, DeliveryResult
from .smtp_provider import SMTPEmailProvider
from .termii_provider import TermiiSMSProvider

__all__ = [
    "BaseEmailProvider",
    "BaseSMSProvider",
    "DeliveryResult",
    "SMTPEmailProvider",
    "TermiiSMSProvider",
]
