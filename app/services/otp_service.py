from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import math
from typing import Any, Callable, Optional

from app.core.config import Settings
from app.core.locking import LockFactory
from app.core.observability import mask_contact
from app.core.phone import is_email, normalize_contact
from app.core.security import constant_time_equals, generate_numeric_code
from app.models import OTPPurpose
from app.models.base import as_utc
from app.stores import IdentityStore, OTPStore

from . import exceptions
from .delivery import BaseEmailProvider, BaseSMSProvider
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DeliveryScheduler = Callable[..., Any]


def run_inline(func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    func(*args, **kwargs)


@dataclass(slots=True)
class CodeRequestResult:
    contact: str
    purpose: OTPPurpose
    expires_in: int
    retry_at: datetime


@dataclass(slots=True)
class CodeVerification:
    valid: bool
    identity_id: Optional[int] = None


@dataclass(slots=True)
class CodeStatus:
    exists: bool
    expires_in: int = 0
    attempts_left: int = 0


def coerce_purpose(purpose: OTPPurpose | str) -> OTPPurpose:
    if isinstance(purpose, OTPPurpose):
        return purpose
    try:
        return OTPPurpose(str(purpose or "").strip().lower())
    except ValueError as exc:
        raise exceptions.ValidationError(f"Unsupported code purpose: {purpose}") from exc


def canonical_contact(contact: str) -> str:
    try:
        return normalize_contact(contact)
    except ValueError as exc:
        raise exceptions.ValidationError(str(exc)) from exc


class OTPService:
    """Issues, verifies and expires one-time codes."""

    def __init__(
        self,
        *,
        settings: Settings,
        otp_store: OTPStore,
        identity_store: IdentityStore,
        rate_limiter: RateLimiter,
        lock_factory: LockFactory,
        sms_provider: BaseSMSProvider | None = None,
        email_provider: BaseEmailProvider | None = None,
        schedule_delivery: DeliveryScheduler | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.otp_store = otp_store
        self.identity_store = identity_store
        self.rate_limiter = rate_limiter
        self.lock_factory = lock_factory
        self.sms_provider = sms_provider
        self.email_provider = email_provider
        self.schedule_delivery = schedule_delivery or run_inline
        self.sms_logger = logging.getLogger("app.sms")
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def generate_code(self) -> str:
        if self.settings.OTP_STATIC_CODE:
            return self.settings.OTP_STATIC_CODE
        return generate_numeric_code(self.settings.OTP_LENGTH)

    def request_code(
        self,
        *,
        contact: str,
        purpose: OTPPurpose | str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> CodeRequestResult:
        contact = canonical_contact(contact)
        purpose = coerce_purpose(purpose)

        limit = self.rate_limiter.check_and_increment(
            self._rate_limit_key(contact, purpose),
            self.settings.OTP_RATE_LIMIT_MAX_REQUESTS,
            self.settings.otp_rate_limit_window_seconds,
        )
        if not limit.allowed:
            logger.info("otp_rate_limited contact=%s purpose=%s", mask_contact(contact), purpose.value)
            raise exceptions.RateLimitExceeded(
                f"Too many code requests. Try again after {limit.reset_at:%H:%M:%S} UTC.",
                retry_at=limit.reset_at,
            )

        identity = self.identity_store.find_by_contact(contact)
        if purpose is OTPPurpose.SIGNUP and identity is not None:
            raise exceptions.ConflictError(f"{self._contact_label(contact)} already registered. Try logging in instead.")
        if purpose is OTPPurpose.LOGIN:
            if identity is None:
                raise exceptions.NotFoundError(f"{self._contact_label(contact)} not registered. Please sign up first.")
            if not identity.is_active:
                raise exceptions.AuthorizationError("Account has been deactivated. Contact support.")

        code = self.generate_code()
        expires_at = self._clock() + timedelta(seconds=self.settings.otp_ttl_seconds)
        with self.lock_factory.exclusive(f"lock:otp:{contact}:{purpose.value}", log=logger):
            otp = self.otp_store.issue(
                contact=contact,
                purpose=purpose,
                code=code,
                expires_at=expires_at,
                max_attempts=self.settings.OTP_MAX_ATTEMPTS,
                ip=ip,
                user_agent=user_agent,
            )
        logger.info("otp_issued id=%s contact=%s purpose=%s", otp.id, mask_contact(contact), purpose.value)

        if self.settings.OTP_DELIVERY_FAILURE_FATAL:
            self._deliver(contact=contact, purpose=purpose, code=code)
        else:
            self.schedule_delivery(self._deliver_quietly, contact=contact, purpose=purpose, code=code)

        return CodeRequestResult(
            contact=contact,
            purpose=purpose,
            expires_in=self.settings.otp_ttl_seconds,
            retry_at=limit.reset_at,
        )

    def resend_code(
        self,
        *,
        contact: str,
        purpose: OTPPurpose | str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> CodeRequestResult:
        """Issue a fresh code once the minimum resend interval since the last one has passed."""

        contact = canonical_contact(contact)
        latest = self.otp_store.find_latest(contact=contact)
        if latest is not None:
            interval = timedelta(seconds=self.settings.OTP_RESEND_INTERVAL_SECONDS)
            available_at = as_utc(latest.created_at) + interval
            now = self._clock()
            if now < available_at:
                wait = math.ceil((available_at - now).total_seconds())
                raise exceptions.RateLimitExceeded(
                    f"Please wait {wait} seconds before requesting a new code",
                    retry_at=available_at,
                )
        return self.request_code(contact=contact, purpose=purpose, ip=ip, user_agent=user_agent)

    def verify_code(self, *, contact: str, code: str, purpose: OTPPurpose | str) -> CodeVerification:
        contact = canonical_contact(contact)
        purpose = coerce_purpose(purpose)
        code = (code or "").strip()
        if len(code) != self.settings.OTP_LENGTH or not code.isdigit():
            raise exceptions.ValidationError(f"Code must be {self.settings.OTP_LENGTH} digits")

        otp = self.otp_store.find_latest_unused(contact=contact, purpose=purpose)
        if otp is None:
            raise exceptions.NotFoundError("No valid code found. Request a new one.")
        if as_utc(otp.expires_at) <= self._clock():
            raise exceptions.OTPExpired("Code has expired. Request a new one.")
        if otp.attempts >= otp.max_attempts:
            raise exceptions.OTPExhausted("Maximum code attempts exceeded. Request a new code.")

        if not constant_time_equals(otp.code, code):
            attempts = self.otp_store.increment_attempts(otp.id)
            if attempts is None:
                raise exceptions.OTPExhausted("Maximum code attempts exceeded. Request a new code.")
            remaining = max(otp.max_attempts - attempts, 0)
            logger.info(
                "otp_mismatch id=%s contact=%s attempts_remaining=%s", otp.id, mask_contact(contact), remaining
            )
            raise exceptions.OTPInvalid(
                f"Invalid code. {remaining} attempts remaining.", attempts_remaining=remaining
            )

        if not self.otp_store.mark_used(otp.id, now=self._clock()):
            # Consumed by a concurrent verification.
            raise exceptions.NotFoundError("No valid code found. Request a new one.")
        logger.info("otp_verified id=%s contact=%s purpose=%s", otp.id, mask_contact(contact), purpose.value)

        identity_id = None
        if purpose is OTPPurpose.LOGIN:
            identity = self.identity_store.find_by_contact(contact)
            identity_id = identity.id if identity else None
        return CodeVerification(valid=True, identity_id=identity_id)

    def code_status(self, *, contact: str, purpose: OTPPurpose | str) -> CodeStatus:
        contact = canonical_contact(contact)
        purpose = coerce_purpose(purpose)
        now = self._clock()
        otp = self.otp_store.find_valid(contact=contact, purpose=purpose, now=now)
        if otp is None or otp.attempts >= otp.max_attempts:
            return CodeStatus(exists=False)
        return CodeStatus(
            exists=True,
            expires_in=max(int((as_utc(otp.expires_at) - now).total_seconds()), 0),
            attempts_left=max(otp.max_attempts - otp.attempts, 0),
        )

    def purge_stale_codes(self, *, now: datetime | None = None) -> int:
        cutoff = (now or self._clock()) - timedelta(days=self.settings.OTP_RETENTION_DAYS)
        deleted = self.otp_store.purge_stale(older_than=cutoff)
        logger.info("otp_purged count=%s cutoff=%s", deleted, cutoff.isoformat())
        return deleted

    def _rate_limit_key(self, contact: str, purpose: OTPPurpose) -> str:
        if self.settings.OTP_RATE_LIMIT_SCOPE == "contact_purpose":
            return f"otp:{contact}:{purpose.value}"
        return f"otp:{contact}"

    def _deliver_quietly(self, *, contact: str, purpose: OTPPurpose, code: str) -> None:
        try:
            self._deliver(contact=contact, purpose=purpose, code=code)
        except exceptions.DeliveryError:
            # The stored code stays valid for a resend within its TTL.
            self.sms_logger.warning(
                "OTP delivery failed | contact=%s | purpose=%s", mask_contact(contact), purpose.value
            )

    def _deliver(self, *, contact: str, purpose: OTPPurpose, code: str) -> None:
        if is_email(contact):
            self._send_email(email=contact, purpose=purpose, code=code)
        else:
            self._send_sms(phone=contact, purpose=purpose, code=code)

    def _send_sms(self, *, phone: str, purpose: OTPPurpose, code: str) -> None:
        message = self.settings.OTP_SMS_TEMPLATE.format(
            purpose=self._purpose_label(purpose),
            code=code,
            minutes=self.settings.OTP_EXPIRATION_MINUTES,
        )

        if self.settings.SMS_DRY_RUN:
            self.sms_logger.info(
                "DRY-RUN OTP SMS | phone=%s | code=%s | message=\"%s\"",
                phone,
                code,
                message,
            )
            return

        if not self.sms_provider:
            raise exceptions.OTPDeliveryFailed("SMS provider is not configured")

        try:
            result = self.sms_provider.send_text(phone=phone, message=message)
        except exceptions.DeliveryError as exc:
            raise exceptions.OTPDeliveryFailed("Could not send the code by SMS") from exc

        self.sms_logger.info(
            "OTP SMS sent | phone=%s | provider=%s | status=%s | provider_message_id=%s",
            mask_contact(phone),
            result.provider,
            result.provider_status,
            result.provider_message_id,
        )
        if result.meta:
            self.sms_logger.debug("OTP SMS response meta | phone=%s | meta=%s", mask_contact(phone), result.meta)

    def _send_email(self, *, email: str, purpose: OTPPurpose, code: str) -> None:
        label = self._purpose_label(purpose)
        subject = f"Your {self.settings.PROJECT_NAME} {label} code"
        body = (
            f"Your {label} code is {code}.\n\n"
            f"It expires in {self.settings.OTP_EXPIRATION_MINUTES} minutes. "
            "If you did not request it, you can ignore this message."
        )

        if self.settings.EMAIL_DRY_RUN:
            self.sms_logger.info("DRY-RUN OTP EMAIL | email=%s | code=%s | subject=\"%s\"", email, code, subject)
            return

        if not self.email_provider:
            raise exceptions.OTPDeliveryFailed("Email provider is not configured")

        try:
            result = self.email_provider.send_email(email=email, subject=subject, body=body)
        except exceptions.DeliveryError as exc:
            raise exceptions.OTPDeliveryFailed("Could not send the code by email") from exc
        self.sms_logger.info("OTP email sent | email=%s | provider=%s", mask_contact(email), result.provider)

    @staticmethod
    def _purpose_label(purpose: OTPPurpose) -> str:
        return purpose.value.replace("_", " ")

    @staticmethod
    def _contact_label(contact: str) -> str:
        return "Email address" if is_email(contact) else "Phone number"
