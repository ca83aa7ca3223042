import logging
from functools import wraps
from typing import Any, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from app.services.exceptions import BackendError

logger = logging.getLogger("app.storage")

F = TypeVar("F", bound=Callable[..., Any])


def translate_storage_errors(func: F) -> F:
    """Roll back and re-raise driver/ORM failures as an opaque BackendError."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("storage_error operation=%s error=%s", func.__qualname__, type(exc).__name__)
            raise BackendError() from exc

    return wrapper  # type: ignore[return-value]
