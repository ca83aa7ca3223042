import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar


_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


@contextmanager
def correlation_context(correlation_id: str | None = None):
    """Context manager to temporarily set a correlation id."""

    token = _correlation_id.set(correlation_id or f"req-{uuid.uuid4().hex[:12]}")
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Attach the active correlation id to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id.get() or "-"
        return True


def mask_contact(contact: str | None) -> str:
    """Mask a phone number or email so logs never carry the full value."""

    if not contact:
        return "-"
    if "@" in contact:
        local, _, domain = contact.partition("@")
        return f"{local[:2]}***@{domain}"
    if len(contact) <= 7:
        return "***"
    return f"{contact[:6]}****{contact[-3:]}"
