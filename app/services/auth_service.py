from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Callable, Optional

from app.core.observability import mask_contact
from app.models import OTPPurpose, User
from app.stores import IdentityProfile, IdentityStore

from . import exceptions
from .otp_service import (
    CodeRequestResult,
    CodeStatus,
    CodeVerification,
    OTPService,
    canonical_contact,
)
from .session_service import DeviceInfo, RefreshedTokens, SessionInfo, SessionService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AuthResult:
    user: User
    session_id: str
    access_token: str
    refresh_token: str
    expires_in: int
    session_expires_at: datetime


@dataclass(slots=True)
class AuthenticatedIdentity:
    user: User
    session: SessionInfo


class AuthService:
    """Signup, login and logout entry points over the code engine and the session manager."""

    def __init__(
        self,
        *,
        otp_service: OTPService,
        session_service: SessionService,
        identity_store: IdentityStore,
        clock: Callable[[], datetime] | None = None,
    ):
        self.otp_service = otp_service
        self.session_service = session_service
        self.identity_store = identity_store
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def request_code(
        self,
        *,
        contact: str,
        purpose: OTPPurpose | str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> CodeRequestResult:
        return self.otp_service.request_code(contact=contact, purpose=purpose, ip=ip, user_agent=user_agent)

    def resend_code(
        self,
        *,
        contact: str,
        purpose: OTPPurpose | str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> CodeRequestResult:
        return self.otp_service.resend_code(contact=contact, purpose=purpose, ip=ip, user_agent=user_agent)

    def verify_code(self, *, contact: str, code: str, purpose: OTPPurpose | str) -> CodeVerification:
        return self.otp_service.verify_code(contact=contact, code=code, purpose=purpose)

    def code_status(self, *, contact: str, purpose: OTPPurpose | str) -> CodeStatus:
        return self.otp_service.code_status(contact=contact, purpose=purpose)

    def signup(
        self,
        *,
        contact: str,
        code: str,
        profile: IdentityProfile | None = None,
        device: DeviceInfo | None = None,
    ) -> AuthResult:
        contact = canonical_contact(contact)
        profile = profile or IdentityProfile()
        if profile.email:
            profile.email = canonical_contact(profile.email)

        self.otp_service.verify_code(contact=contact, code=code, purpose=OTPPurpose.SIGNUP)
        user = self.identity_store.create(contact, profile)
        logger.info("user_signed_up user=%s contact=%s", user.id, mask_contact(contact))
        return self._start_session(user, device)

    def login(self, *, contact: str, code: str, device: DeviceInfo | None = None) -> AuthResult:
        contact = canonical_contact(contact)
        verification = self.otp_service.verify_code(contact=contact, code=code, purpose=OTPPurpose.LOGIN)

        user: Optional[User] = None
        if verification.identity_id is not None:
            user = self.identity_store.get_by_id(verification.identity_id)
        if user is None:
            raise exceptions.NotFoundError("Account not found. Please sign up first.")
        if not user.is_active:
            raise exceptions.AuthorizationError("Account has been deactivated. Contact support.")

        logger.info("user_logged_in user=%s contact=%s", user.id, mask_contact(contact))
        return self._start_session(user, device)

    def logout(self, session_id: str) -> None:
        self.session_service.logout(session_id)

    def logout_all(self, user_id: int) -> int:
        return self.session_service.logout_all(user_id)

    def refresh_token(self, refresh_token: str) -> RefreshedTokens:
        # Signature and session binding are checked by refresh_session.
        claims = self.session_service.token_service.decode(refresh_token)
        user = self.identity_store.get_by_id(claims.user_id)
        if user is None or not user.is_active:
            logger.warning("refresh_rejected_inactive_identity user=%s", claims.user_id)
            raise exceptions.AuthenticationError("Account is not active")
        return self.session_service.refresh_session(refresh_token)

    def validate_token(self, access_token: str) -> AuthenticatedIdentity:
        session = self.session_service.validate_access_token(access_token)
        if session is None:
            raise exceptions.AuthenticationError("Invalid or expired session")
        user = self.identity_store.get_by_id(session.user_id)
        if user is None:
            raise exceptions.AuthenticationError("Invalid or expired session")
        if not user.is_active:
            raise exceptions.AuthorizationError("Account has been deactivated. Contact support.")
        return AuthenticatedIdentity(user=user, session=session)

    def _start_session(self, user: User, device: DeviceInfo | None) -> AuthResult:
        created = self.session_service.create_session(user_id=user.id, role=user.role.value, device=device)
        self.identity_store.update_last_login(user.id, now=self._clock())
        user = self.identity_store.get_by_id(user.id) or user
        return AuthResult(
            user=user,
            session_id=created.session_id,
            access_token=created.access_token,
            refresh_token=created.refresh_token,
            expires_in=created.access_expires_in,
            session_expires_at=created.expires_at,
        )
