from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Callable, Dict, Optional
import uuid

import jwt

from app.core.config import Settings
from app.models import TokenKind

from . import exceptions

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["sub", "sid", "typ", "jti", "iat", "exp", "iss", "aud"]


@dataclass(slots=True, frozen=True)
class SessionClaims:
    """Identity and session a token pair is bound to."""

    user_id: int
    role: str
    session_id: str


@dataclass(slots=True, frozen=True)
class TokenClaims:
    user_id: int
    role: str
    session_id: str
    kind: TokenKind
    issued_at: datetime
    expires_at: datetime
    jti: str

    @property
    def session(self) -> SessionClaims:
        return SessionClaims(user_id=self.user_id, role=self.role, session_id=self.session_id)


@dataclass(slots=True, frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


class TokenService:
    """Signs and verifies access/refresh JWTs. Holds no storage state."""

    def __init__(self, settings: Settings, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    @property
    def access_expires_in(self) -> int:
        return self.settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    @property
    def refresh_expires_in(self) -> int:
        return self.settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60

    def issue_access_token(self, claims: SessionClaims) -> str:
        token, _ = self._issue(claims, TokenKind.ACCESS)
        return token

    def issue_refresh_token(self, claims: SessionClaims) -> str:
        token, _ = self._issue(claims, TokenKind.REFRESH)
        return token

    def issue_pair(self, claims: SessionClaims) -> TokenPair:
        access_token, access_expires_at = self._issue(claims, TokenKind.ACCESS)
        refresh_token, refresh_expires_at = self._issue(claims, TokenKind.REFRESH)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    def verify(self, token: str, expected_kind: TokenKind) -> TokenClaims:
        """Check signature, issuer, audience, expiry and kind.

        Raises ``ExpiredToken`` for a well-formed token past ``exp`` and
        ``InvalidToken`` for everything else.
        """

        try:
            payload = jwt.decode(
                token,
                self._secret_for(expected_kind),
                algorithms=[self.settings.JWT_ALGORITHM],
                audience=self.settings.JWT_AUDIENCE,
                issuer=self.settings.JWT_ISSUER,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as exc:
            raise exceptions.ExpiredToken("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise exceptions.InvalidToken("Invalid token") from exc

        if payload.get("typ") != expected_kind.value:
            raise exceptions.InvalidToken("Invalid token")
        return self._to_claims(payload)

    def decode(self, token: str) -> TokenClaims:
        """Read the claims without checking the signature; only for already-trusted tokens."""

        try:
            payload = jwt.decode(token, options={"verify_signature": False})
            return self._to_claims(payload)
        except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as exc:
            raise exceptions.InvalidToken("Invalid token") from exc

    def expires_at(self, token: str) -> datetime:
        return self.decode(token).expires_at

    def is_expired(self, token: str) -> bool:
        try:
            return self.expires_at(token) <= self._clock()
        except exceptions.InvalidToken:
            return True

    def _issue(self, claims: SessionClaims, kind: TokenKind) -> tuple[str, datetime]:
        issued_at = self._clock()
        if kind is TokenKind.ACCESS:
            expires_at = issued_at + timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        else:
            expires_at = issued_at + timedelta(days=self.settings.REFRESH_TOKEN_EXPIRE_DAYS)
        payload: Dict[str, Any] = {
            "sub": str(claims.user_id),
            "role": claims.role,
            "sid": claims.session_id,
            "typ": kind.value,
            "jti": uuid.uuid4().hex,
            "iat": issued_at,
            "exp": expires_at,
            "iss": self.settings.JWT_ISSUER,
            "aud": self.settings.JWT_AUDIENCE,
        }
        token = jwt.encode(payload, self._secret_for(kind), algorithm=self.settings.JWT_ALGORITHM)
        return token, expires_at

    def _secret_for(self, kind: TokenKind) -> str:
        if kind is TokenKind.ACCESS:
            return self.settings.JWT_SECRET_KEY
        return self.settings.JWT_REFRESH_SECRET_KEY

    @staticmethod
    def _to_claims(payload: Dict[str, Any]) -> TokenClaims:
        return TokenClaims(
            user_id=int(payload["sub"]),
            role=str(payload.get("role") or ""),
            session_id=str(payload["sid"]),
            kind=TokenKind(payload["typ"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            jti=str(payload["jti"]),
        )
