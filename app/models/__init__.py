from .base import Base
from .enums import DeviceType, OTPPurpose, TokenKind, UserRole
from .otp_code import OTPCode
from .session import AuthSession
from .user import User

__all__ = [
    "AuthSession",
    "Base",
    "OTPCode",
    "User",
    "DeviceType",
    "OTPPurpose",
    "TokenKind",
    "UserRole",
]
