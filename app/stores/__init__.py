from .identity_store import IdentityProfile, IdentityStore, SqlIdentityStore
from .otp_store import OTPStore, SqlOTPStore
from .session_store import SessionStats, SessionStore, SqlSessionStore

__all__ = [
    "IdentityProfile",
    "IdentityStore",
    "SqlIdentityStore",
    "OTPStore",
    "SqlOTPStore",
    "SessionStats",
    "SessionStore",
    "SqlSessionStore",
]
