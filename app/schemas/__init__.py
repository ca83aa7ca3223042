from .auth import (
    AuthResponse,
    LoginRequest,
    LogoutAllResponse,
    OTPRequest,
    OTPRequestResponse,
    OTPStatusResponse,
    OTPVerifyRequest,
    OTPVerifyResponse,
    RefreshRequest,
    SignupRequest,
)
from .common import HealthRead, TokenResponse
from .session import SessionLimitRead, SessionRead, SessionStatsRead
from .user import UserRead

__all__ = [
    "AuthResponse",
    "HealthRead",
    "LoginRequest",
    "LogoutAllResponse",
    "OTPRequest",
    "OTPRequestResponse",
    "OTPStatusResponse",
    "OTPVerifyRequest",
    "OTPVerifyResponse",
    "RefreshRequest",
    "SessionLimitRead",
    "SessionRead",
    "SessionStatsRead",
    "SignupRequest",
    "TokenResponse",
    "UserRead",
]
