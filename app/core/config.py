from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BASE_DIR / ".env"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    PROJECT_NAME: str = "Bareloft Auth Service"
    API_V1_PREFIX: str = "/api/v1"
    ENVIRONMENT: str = Field(default="development")

    DATABASE_URL: str
    DB_TIMEOUT_SECONDS: int = Field(default=5, ge=1)
    AUTO_CREATE_SCHEMA: bool = Field(default=False)

    REDIS_URL: Optional[str] = Field(default=None)
    REDIS_TIMEOUT_SECONDS: float = Field(default=2.0, gt=0)
    LOCK_TTL_SECONDS: int = Field(default=10, ge=1)
    LOCK_WAIT_SECONDS: float = Field(default=5.0, gt=0)

    JWT_SECRET_KEY: str
    JWT_REFRESH_SECRET_KEY: str
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_ISSUER: str = Field(default="bareloft-api")
    JWT_AUDIENCE: str = Field(default="bareloft-client")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=15, ge=1)
    REFRESH_TOKEN_EXPIRE_DAYS: int = Field(default=7, ge=1)

    OTP_LENGTH: int = Field(default=6, ge=4, le=8)
    OTP_EXPIRATION_MINUTES: int = Field(default=10, ge=1)
    OTP_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    OTP_RATE_LIMIT_MAX_REQUESTS: int = Field(default=10, ge=1)
    OTP_RATE_LIMIT_WINDOW_MINUTES: int = Field(default=15, ge=1)
    OTP_RATE_LIMIT_SCOPE: Literal["contact", "contact_purpose"] = Field(default="contact")
    OTP_RESEND_INTERVAL_SECONDS: int = Field(default=60, ge=0)
    OTP_RETENTION_DAYS: int = Field(default=7, ge=1)
    OTP_STATIC_CODE: Optional[str] = Field(default=None)
    OTP_DELIVERY_FAILURE_FATAL: bool = Field(default=False)
    OTP_SMS_TEMPLATE: str = Field(
        default="Your Bareloft {purpose} code is: {code}. Valid for {minutes} minutes."
    )

    MAX_SESSIONS_PER_USER: int = Field(default=5, ge=1)
    SESSION_RETENTION_DAYS: int = Field(default=30, ge=1)
    MAINTENANCE_INTERVAL_SECONDS: int = Field(default=300, ge=1)

    SMS_DRY_RUN: bool = Field(default=True)
    TERMII_API_URL: str = Field(default="https://api.ng.termii.com/api/sms/send")
    TERMII_API_KEY: Optional[str] = Field(default=None)
    TERMII_SENDER_ID: str = Field(default="Bareloft")
    TERMII_CHANNEL: str = Field(default="dnd")

    EMAIL_DRY_RUN: bool = Field(default=True)
    SMTP_HOST: Optional[str] = Field(default=None)
    SMTP_PORT: int = Field(default=587)
    SMTP_USER: Optional[str] = Field(default=None)
    SMTP_PASSWORD: Optional[str] = Field(default=None)
    SMTP_USE_TLS: bool = Field(default=True)
    EMAIL_FROM: Optional[str] = Field(default=None)

    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE_PATH: Optional[str] = Field(default=None)

    @field_validator("OTP_STATIC_CODE", mode="before")
    @classmethod
    def blank_static_code(cls, value: Optional[str]) -> Optional[str]:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def check_secrets_and_codes(self) -> "Settings":
        if self.JWT_SECRET_KEY == self.JWT_REFRESH_SECRET_KEY:
            raise ValueError("JWT_REFRESH_SECRET_KEY must differ from JWT_SECRET_KEY")
        static_code = self.OTP_STATIC_CODE
        if static_code is not None and (len(static_code) != self.OTP_LENGTH or not static_code.isdigit()):
            raise ValueError(f"OTP_STATIC_CODE must be exactly {self.OTP_LENGTH} digits")
        return self

    @property
    def otp_ttl_seconds(self) -> int:
        return self.OTP_EXPIRATION_MINUTES * 60

    @property
    def otp_rate_limit_window_seconds(self) -> int:
        return self.OTP_RATE_LIMIT_WINDOW_MINUTES * 60


load_dotenv(ENV_FILE)


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()
