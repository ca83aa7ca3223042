from enum import Enum


class OTPPurpose(str, Enum):
    LOGIN = "login"
    SIGNUP = "signup"
    PASSWORD_RESET = "password_reset"
    PHONE_VERIFICATION = "phone_verification"


class UserRole(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class DeviceType(str, Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    UNKNOWN = "unknown"


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
