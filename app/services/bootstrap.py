from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings
from app.core.db import build_engine, build_session_factory
from app.core.locking import LockFactory
from app.core.redis_client import RedisManager
from app.models import Base
from app.stores import SqlIdentityStore, SqlOTPStore, SqlSessionStore

from .auth_service import AuthService
from .delivery import BaseEmailProvider, BaseSMSProvider, SMTPEmailProvider, TermiiSMSProvider
from .otp_service import DeliveryScheduler, OTPService
from .rate_limiter import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from .session_service import SessionService
from .token_service import TokenService

logger = logging.getLogger(__name__)


@dataclass
class AuthComponents:
    """Long-lived collaborators shared by every request and worker run."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    redis: RedisManager
    token_service: TokenService
    rate_limiter: RateLimiter
    lock_factory: LockFactory
    sms_provider: Optional[BaseSMSProvider] = None
    email_provider: Optional[BaseEmailProvider] = None

    def otp_service(self, db: Session, *, schedule_delivery: DeliveryScheduler | None = None) -> OTPService:
        return OTPService(
            settings=self.settings,
            otp_store=SqlOTPStore(db),
            identity_store=SqlIdentityStore(db),
            rate_limiter=self.rate_limiter,
            lock_factory=self.lock_factory,
            sms_provider=self.sms_provider,
            email_provider=self.email_provider,
            schedule_delivery=schedule_delivery,
        )

    def session_service(self, db: Session) -> SessionService:
        return SessionService(
            settings=self.settings,
            session_store=SqlSessionStore(db),
            token_service=self.token_service,
            lock_factory=self.lock_factory,
        )

    def auth_service(self, db: Session, *, schedule_delivery: DeliveryScheduler | None = None) -> AuthService:
        return AuthService(
            otp_service=self.otp_service(db, schedule_delivery=schedule_delivery),
            session_service=self.session_service(db),
            identity_store=SqlIdentityStore(db),
        )

    def ensure_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def build_sms_provider(settings: Settings) -> Optional[BaseSMSProvider]:
    if settings.SMS_DRY_RUN:
        return None
    if not settings.TERMII_API_KEY:
        logger.warning("SMS_DRY_RUN is off but TERMII_API_KEY is not set; SMS delivery will fail.")
        return None
    return TermiiSMSProvider(
        api_key=settings.TERMII_API_KEY,
        sender_id=settings.TERMII_SENDER_ID,
        api_url=settings.TERMII_API_URL,
        channel=settings.TERMII_CHANNEL,
    )


def build_email_provider(settings: Settings) -> Optional[BaseEmailProvider]:
    if settings.EMAIL_DRY_RUN:
        return None
    if not settings.SMTP_HOST:
        logger.warning("EMAIL_DRY_RUN is off but SMTP_HOST is not set; email delivery will fail.")
        return None
    return SMTPEmailProvider(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        user=settings.SMTP_USER,
        password=settings.SMTP_PASSWORD,
        use_tls=settings.SMTP_USE_TLS,
        from_email=settings.EMAIL_FROM,
    )


def build_components(
    settings: Settings,
    *,
    engine: Engine | None = None,
    rate_limiter: RateLimiter | None = None,
) -> AuthComponents:
    engine = engine or build_engine(settings)
    redis = RedisManager(settings)
    client = redis.get_client()

    if rate_limiter is None:
        rate_limiter = RedisRateLimiter(client) if client is not None else InMemoryRateLimiter()

    return AuthComponents(
        settings=settings,
        engine=engine,
        session_factory=build_session_factory(engine),
        redis=redis,
        token_service=TokenService(settings),
        rate_limiter=rate_limiter,
        lock_factory=LockFactory(
            redis_client=client,
            ttl_seconds=settings.LOCK_TTL_SECONDS,
            wait_timeout=settings.LOCK_WAIT_SECONDS,
        ),
        sms_provider=build_sms_provider(settings),
        email_provider=build_email_provider(settings),
    )
