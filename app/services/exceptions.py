from datetime import datetime


class ServiceError(Exception):
    """Base exception for service-level errors."""

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(self, message: str = "", **detail) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(ServiceError):
    pass


class RateLimitExceeded(ServiceError):
    status_code = 429
    error_code = "rate_limited"

    def __init__(self, message: str, *, retry_at: datetime | None = None) -> None:
        super().__init__(message, retry_at=retry_at.isoformat() if retry_at else None)
        self.retry_at = retry_at


class ConflictError(ServiceError):
    status_code = 409
    error_code = "conflict"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"


class OTPInvalid(ServiceError):
    error_code = "invalid_code"

    def __init__(self, message: str, *, attempts_remaining: int) -> None:
        super().__init__(message, attempts_remaining=attempts_remaining)
        self.attempts_remaining = attempts_remaining


class OTPExhausted(ServiceError):
    error_code = "attempts_exhausted"


class OTPExpired(ServiceError):
    error_code = "expired"


class AuthenticationError(ServiceError):
    status_code = 401
    error_code = "unauthorized"


class InvalidToken(AuthenticationError):
    pass


class ExpiredToken(AuthenticationError):
    error_code = "token_expired"


class SessionExpired(AuthenticationError):
    error_code = "session_expired"


class AuthorizationError(ServiceError):
    status_code = 403
    error_code = "forbidden"


class DeliveryError(ServiceError):
    status_code = 502
    error_code = "delivery_failed"


class OTPDeliveryFailed(DeliveryError):
    pass


class BackendError(ServiceError):
    """Storage, cache or lock failure. The message never names the backend."""

    status_code = 503
    error_code = "service_unavailable"

    def __init__(self, message: str = "Service temporarily unavailable") -> None:
        super().__init__(message)
