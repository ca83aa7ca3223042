from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.models import OTPPurpose

from .common import TokenResponse
from .user import UserRead

CODE_PATTERN = r"^\d{4,8}$"


class ContactPayload(BaseModel):
    contact: str = Field(..., min_length=3, max_length=320, description="Phone number (+234...) or email")

    @field_validator("contact")
    @classmethod
    def strip_contact(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("contact cannot be blank")
        return normalized


class OTPRequest(ContactPayload):
    purpose: OTPPurpose = OTPPurpose.LOGIN


class OTPRequestResponse(BaseModel):
    contact: str
    purpose: OTPPurpose
    expires_in: int
    retry_at: datetime


class OTPVerifyRequest(ContactPayload):
    code: str = Field(..., pattern=CODE_PATTERN)
    purpose: OTPPurpose = OTPPurpose.LOGIN


class OTPVerifyResponse(BaseModel):
    valid: bool


class OTPStatusResponse(BaseModel):
    exists: bool
    expires_in: int
    attempts_left: int


class SignupRequest(ContactPayload):
    code: str = Field(..., pattern=CODE_PATTERN)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=320)

    @field_validator("email", mode="before")
    @classmethod
    def blank_email(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class LoginRequest(ContactPayload):
    code: str = Field(..., pattern=CODE_PATTERN)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    user: UserRead
    tokens: TokenResponse
    session_id: str
    session_expires_at: datetime


class LogoutAllResponse(BaseModel):
    count: int
