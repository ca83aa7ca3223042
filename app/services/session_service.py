from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable, Optional

from app.core.locking import LockFactory
from app.core.config import Settings
from app.core.security import generate_session_id, hash_token
from app.models import AuthSession, DeviceType, TokenKind
from app.models.base import as_utc
from app.stores import SessionStats, SessionStore

from . import exceptions
from .token_service import SessionClaims, TokenService

logger = logging.getLogger(__name__)

TABLET_MARKERS = ("ipad", "tablet", "kindle", "playbook", "silk")
MOBILE_MARKERS = ("mobi", "iphone", "ipod", "android", "blackberry", "opera mini", "windows phone")
DESKTOP_MARKERS = ("windows", "macintosh", "mac os x", "x11", "linux", "cros")


def detect_device_type(user_agent: str | None) -> DeviceType:
    ua = (user_agent or "").lower()
    if not ua:
        return DeviceType.UNKNOWN
    if any(marker in ua for marker in TABLET_MARKERS) or ("android" in ua and "mobile" not in ua):
        return DeviceType.TABLET
    if any(marker in ua for marker in MOBILE_MARKERS):
        return DeviceType.MOBILE
    if any(marker in ua for marker in DESKTOP_MARKERS):
        return DeviceType.DESKTOP
    return DeviceType.UNKNOWN


@dataclass(slots=True)
class DeviceInfo:
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    device_type: Optional[DeviceType] = None


@dataclass(slots=True)
class CreatedSession:
    session_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    access_expires_in: int
    evicted_session_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class RefreshedTokens:
    session_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    access_expires_in: int


@dataclass(slots=True)
class SessionInfo:
    session_id: str
    user_id: int
    role: str
    expires_at: datetime
    expires_in: int
    device_type: DeviceType
    user_agent: Optional[str]
    ip_address: Optional[str]
    created_at: datetime
    last_used_at: Optional[datetime]


@dataclass(slots=True)
class SessionLimit:
    has_reached_limit: bool
    active_count: int
    max_sessions: int


@dataclass(slots=True)
class CleanupResult:
    deactivated: int
    deleted: int


class SessionService:
    """Binds token pairs to revocable session rows and enforces the per-user cap."""

    def __init__(
        self,
        *,
        settings: Settings,
        session_store: SessionStore,
        token_service: TokenService,
        lock_factory: LockFactory,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.session_store = session_store
        self.token_service = token_service
        self.lock_factory = lock_factory
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    @property
    def session_lifetime(self) -> timedelta:
        return timedelta(days=self.settings.REFRESH_TOKEN_EXPIRE_DAYS)

    def create_session(self, *, user_id: int, role: str, device: DeviceInfo | None = None) -> CreatedSession:
        device = device or DeviceInfo()
        session_id = generate_session_id()
        pair = self.token_service.issue_pair(SessionClaims(user_id=user_id, role=role, session_id=session_id))
        now = self._clock()
        expires_at = now + self.session_lifetime

        row = AuthSession(
            session_id=session_id,
            user_id=user_id,
            access_token_hash=hash_token(pair.access_token),
            refresh_token_hash=hash_token(pair.refresh_token),
            expires_at=expires_at,
            user_agent=device.user_agent[:255] if device.user_agent else None,
            device_type=device.device_type or detect_device_type(device.user_agent),
            ip_address=device.ip_address,
            is_active=True,
            last_used_at=now,
            created_at=now,
            updated_at=now,
        )
        with self.lock_factory.exclusive(f"lock:sessions:{user_id}", log=logger):
            evicted = self.session_store.create_with_cap(
                row, max_active=self.settings.MAX_SESSIONS_PER_USER, now=now
            )

        logger.info("session_created session=%s user=%s evicted=%s", session_id, user_id, len(evicted))
        return CreatedSession(
            session_id=session_id,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_at=expires_at,
            access_expires_in=self.token_service.access_expires_in,
            evicted_session_ids=evicted,
        )

    def validate_access_token(self, access_token: str) -> Optional[SessionInfo]:
        """Return the live session bound to ``access_token``, or ``None`` when there is none.

        Backend failures are raised, never reported as ``None``.
        """

        row = self.session_store.find_by_access_token(access_token)
        if row is None or not row.is_active:
            return None
        now = self._clock()
        if as_utc(row.expires_at) <= now:
            self.session_store.deactivate(row.session_id, now=now)
            logger.info("session_expired session=%s", row.session_id)
            return None

        try:
            claims = self.token_service.verify(access_token, TokenKind.ACCESS)
        except exceptions.AuthenticationError:
            return None
        if claims.session_id != row.session_id or claims.user_id != row.user_id:
            logger.warning("session_binding_mismatch session=%s", row.session_id)
            return None

        self.session_store.touch(row.id, now=now)
        return self._to_info(row, now=now)

    def refresh_session(self, refresh_token: str) -> RefreshedTokens:
        row = self.session_store.find_by_refresh_token(refresh_token)
        if row is None:
            raise exceptions.InvalidToken("Invalid refresh token")
        if not row.is_active:
            raise exceptions.InvalidToken("Session is no longer active")
        now = self._clock()
        session_id = row.session_id
        expires_at = as_utc(row.expires_at)
        if expires_at <= now:
            self.session_store.deactivate(session_id, now=now)
            raise exceptions.SessionExpired("Session has expired. Please log in again.")

        claims = self.token_service.verify(refresh_token, TokenKind.REFRESH)
        if claims.session_id != session_id or claims.user_id != row.user_id:
            logger.warning("session_binding_mismatch session=%s", session_id)
            raise exceptions.InvalidToken("Invalid refresh token")

        pair = self.token_service.issue_pair(claims.session)
        rotated = self.session_store.rotate_tokens(
            row.id,
            old_refresh_token=refresh_token,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )
        if not rotated:
            # Another request rotated this session first.
            raise exceptions.InvalidToken("Refresh token has already been used")
        self.session_store.touch(row.id, now=now)

        logger.info("session_refreshed session=%s", session_id)
        return RefreshedTokens(
            session_id=session_id,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_at=expires_at,
            access_expires_in=self.token_service.access_expires_in,
        )

    def logout(self, session_id: str) -> None:
        if self.session_store.deactivate(session_id, now=self._clock()):
            logger.info("session_logged_out session=%s", session_id)

    def logout_all(self, user_id: int) -> int:
        count = self.session_store.deactivate_all_for_user(user_id, now=self._clock())
        logger.info("sessions_logged_out user=%s count=%s", user_id, count)
        return count

    def invalidate_by_access_token(self, access_token: str) -> bool:
        row = self.session_store.find_by_access_token(access_token)
        if row is None:
            return False
        return self.session_store.deactivate(row.session_id, now=self._clock())

    def check_session_limit(self, user_id: int) -> SessionLimit:
        active = self.session_store.count_active_by_user(user_id, now=self._clock())
        limit = self.settings.MAX_SESSIONS_PER_USER
        return SessionLimit(has_reached_limit=active >= limit, active_count=active, max_sessions=limit)

    def list_active_sessions(self, user_id: int) -> list[SessionInfo]:
        now = self._clock()
        return [
            self._to_info(row, now=now)
            for row in self.session_store.list_active_by_user(user_id, now=now)
        ]

    def session_stats(self, user_id: int) -> SessionStats:
        return self.session_store.stats_for_user(user_id, now=self._clock())

    def extend_session(self, session_id: str, *, minutes: int = 15) -> SessionInfo:
        """Push expiry to ``now + minutes``; never shortens a session."""

        if minutes <= 0:
            raise exceptions.ValidationError("minutes must be positive")
        now = self._clock()
        current = self.session_store.find_by_session_id(session_id)
        if current is None or not current.is_active:
            raise exceptions.NotFoundError("Session not found")
        target = max(as_utc(current.expires_at), now + timedelta(minutes=minutes))
        row = self.session_store.extend(session_id, expires_at=target)
        if row is None:
            raise exceptions.NotFoundError("Session not found")
        logger.info("session_extended session=%s minutes=%s", session_id, minutes)
        return self._to_info(row, now=now)

    def get_session(self, session_id: str) -> Optional[AuthSession]:
        return self.session_store.find_by_session_id(session_id)

    def cleanup_expired_sessions(self, *, now: datetime | None = None) -> CleanupResult:
        now = now or self._clock()
        purge_before = now - timedelta(days=self.settings.SESSION_RETENTION_DAYS)
        deactivated, deleted = self.session_store.cleanup_expired(now=now, purge_before=purge_before)
        logger.info("sessions_cleaned deactivated=%s deleted=%s", deactivated, deleted)
        return CleanupResult(deactivated=deactivated, deleted=deleted)

    @staticmethod
    def _to_info(row: AuthSession, *, now: datetime) -> SessionInfo:
        expires_at = as_utc(row.expires_at)
        return SessionInfo(
            session_id=row.session_id,
            user_id=row.user_id,
            role=row.user.role.value,
            expires_at=expires_at,
            expires_in=max(int((expires_at - now).total_seconds()), 0),
            device_type=row.device_type,
            user_agent=row.user_agent,
            ip_address=row.ip_address,
            created_at=as_utc(row.created_at),
            last_used_at=as_utc(row.last_used_at) if row.last_used_at else None,
        )
