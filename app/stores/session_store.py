from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.core.security import hash_token
from app.models import AuthSession
from app.models.base import as_utc

from .base import translate_storage_errors


@dataclass(slots=True)
class SessionStats:
    total_sessions: int
    active_sessions: int
    expired_sessions: int
    device_types: dict[str, int] = field(default_factory=dict)


class SessionStore(Protocol):
    def create_with_cap(self, session: AuthSession, *, max_active: int, now: datetime) -> list[str]: ...

    def find_by_session_id(self, session_id: str) -> Optional[AuthSession]: ...

    def find_by_access_token(self, access_token: str) -> Optional[AuthSession]: ...

    def find_by_refresh_token(self, refresh_token: str) -> Optional[AuthSession]: ...

    def rotate_tokens(
        self,
        row_id: int,
        *,
        old_refresh_token: str,
        access_token: str,
        refresh_token: str,
    ) -> bool: ...

    def touch(self, row_id: int, *, now: datetime) -> None: ...

    def deactivate(self, session_id: str, *, now: datetime) -> bool: ...

    def deactivate_all_for_user(self, user_id: int, *, now: datetime) -> int: ...

    def list_active_by_user(self, user_id: int, *, now: datetime) -> list[AuthSession]: ...

    def count_active_by_user(self, user_id: int, *, now: datetime) -> int: ...

    def extend(self, session_id: str, *, expires_at: datetime) -> Optional[AuthSession]: ...

    def cleanup_expired(self, *, now: datetime, purge_before: datetime) -> tuple[int, int]: ...

    def stats_for_user(self, user_id: int, *, now: datetime) -> SessionStats: ...


class SqlSessionStore:
    def __init__(self, db: Session):
        self.db = db

    @translate_storage_errors
    def create_with_cap(self, session: AuthSession, *, max_active: int, now: datetime) -> list[str]:
        """Insert the session and deactivate the oldest active ones beyond ``max_active``.

        Returns the evicted session ids. Runs as one transaction; the active rows
        are locked so concurrent logins for the same user serialize here.
        """

        self.db.add(session)
        self.db.flush()
        active = (
            self._active_query(session.user_id, now)
            .order_by(AuthSession.created_at.desc(), AuthSession.id.desc())
            .with_for_update()
            .all()
        )
        evicted = active[max_active:]
        for row in evicted:
            row.is_active = False
            row.updated_at = now
        self.db.commit()
        return [row.session_id for row in evicted]

    @translate_storage_errors
    def find_by_session_id(self, session_id: str) -> Optional[AuthSession]:
        return (
            self.db.query(AuthSession)
            .filter(AuthSession.session_id == session_id)
            .populate_existing()
            .first()
        )

    @translate_storage_errors
    def find_by_access_token(self, access_token: str) -> Optional[AuthSession]:
        return (
            self.db.query(AuthSession)
            .filter(AuthSession.access_token_hash == hash_token(access_token))
            .populate_existing()
            .first()
        )

    @translate_storage_errors
    def find_by_refresh_token(self, refresh_token: str) -> Optional[AuthSession]:
        return (
            self.db.query(AuthSession)
            .filter(AuthSession.refresh_token_hash == hash_token(refresh_token))
            .populate_existing()
            .first()
        )

    @translate_storage_errors
    def rotate_tokens(
        self,
        row_id: int,
        *,
        old_refresh_token: str,
        access_token: str,
        refresh_token: str,
    ) -> bool:
        """Swap both tokens only if the row still holds ``old_refresh_token``."""

        updated = (
            self.db.query(AuthSession)
            .filter(
                AuthSession.id == row_id,
                AuthSession.refresh_token_hash == hash_token(old_refresh_token),
                AuthSession.is_active.is_(True),
            )
            .update(
                {
                    AuthSession.access_token_hash: hash_token(access_token),
                    AuthSession.refresh_token_hash: hash_token(refresh_token),
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return bool(updated)

    @translate_storage_errors
    def touch(self, row_id: int, *, now: datetime) -> None:
        self.db.query(AuthSession).filter(AuthSession.id == row_id).update(
            {AuthSession.last_used_at: now}, synchronize_session=False
        )
        self.db.commit()

    @translate_storage_errors
    def deactivate(self, session_id: str, *, now: datetime) -> bool:
        updated = (
            self.db.query(AuthSession)
            .filter(AuthSession.session_id == session_id, AuthSession.is_active.is_(True))
            .update({AuthSession.is_active: False, AuthSession.updated_at: now}, synchronize_session=False)
        )
        self.db.commit()
        return bool(updated)

    @translate_storage_errors
    def deactivate_all_for_user(self, user_id: int, *, now: datetime) -> int:
        updated = (
            self.db.query(AuthSession)
            .filter(AuthSession.user_id == user_id, AuthSession.is_active.is_(True))
            .update({AuthSession.is_active: False, AuthSession.updated_at: now}, synchronize_session=False)
        )
        self.db.commit()
        return updated

    @translate_storage_errors
    def list_active_by_user(self, user_id: int, *, now: datetime) -> list[AuthSession]:
        return (
            self._active_query(user_id, now)
            .order_by(AuthSession.created_at.desc(), AuthSession.id.desc())
            .populate_existing()
            .all()
        )

    @translate_storage_errors
    def count_active_by_user(self, user_id: int, *, now: datetime) -> int:
        return self._active_query(user_id, now).count()

    @translate_storage_errors
    def extend(self, session_id: str, *, expires_at: datetime) -> Optional[AuthSession]:
        session = (
            self.db.query(AuthSession)
            .filter(AuthSession.session_id == session_id, AuthSession.is_active.is_(True))
            .first()
        )
        if session is None:
            return None
        session.expires_at = expires_at
        self.db.commit()
        return session

    @translate_storage_errors
    def cleanup_expired(self, *, now: datetime, purge_before: datetime) -> tuple[int, int]:
        """Deactivate rows past expiry, then delete rows older than the retention cutoff.

        Both statements only match rows whose timestamps are already in the past,
        so repeated or concurrent runs converge on the same state.
        """

        deactivated = (
            self.db.query(AuthSession)
            .filter(AuthSession.is_active.is_(True), AuthSession.expires_at <= now)
            .update({AuthSession.is_active: False, AuthSession.updated_at: now}, synchronize_session=False)
        )
        deleted = (
            self.db.query(AuthSession)
            .filter(
                or_(
                    AuthSession.expires_at < purge_before,
                    and_(AuthSession.is_active.is_(False), AuthSession.updated_at < purge_before),
                )
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deactivated, deleted

    @translate_storage_errors
    def stats_for_user(self, user_id: int, *, now: datetime) -> SessionStats:
        rows = self.db.query(AuthSession).filter(AuthSession.user_id == user_id).populate_existing().all()
        active = self._active_query(user_id, now).count()
        expired = sum(1 for row in rows if as_utc(row.expires_at) <= now)
        device_types = Counter(row.device_type.value for row in rows)
        return SessionStats(
            total_sessions=len(rows),
            active_sessions=active,
            expired_sessions=expired,
            device_types=dict(device_types),
        )

    def _active_query(self, user_id: int, now: datetime):
        return self.db.query(AuthSession).filter(
            AuthSession.user_id == user_id,
            AuthSession.is_active.is_(True),
            AuthSession.expires_at > now,
        )
