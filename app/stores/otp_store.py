from __future__ import annotations

from datetime import datetime
import logging
from typing import Optional, Protocol

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import OTPCode, OTPPurpose
from app.services.exceptions import BackendError

from .base import translate_storage_errors

logger = logging.getLogger(__name__)


class OTPStore(Protocol):
    def issue(
        self,
        *,
        contact: str,
        purpose: OTPPurpose,
        code: str,
        expires_at: datetime,
        max_attempts: int,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> OTPCode: ...

    def find_valid(self, *, contact: str, purpose: OTPPurpose, now: datetime) -> Optional[OTPCode]: ...

    def find_latest_unused(self, *, contact: str, purpose: OTPPurpose) -> Optional[OTPCode]: ...

    def find_latest(self, *, contact: str) -> Optional[OTPCode]: ...

    def increment_attempts(self, otp_id: int) -> Optional[int]: ...

    def mark_used(self, otp_id: int, *, now: datetime) -> bool: ...

    def purge_stale(self, *, older_than: datetime) -> int: ...


class SqlOTPStore:
    """OTP persistence. Every mutation is a single keyed statement committed immediately."""

    ISSUE_ATTEMPTS = 3

    def __init__(self, db: Session):
        self.db = db

    @translate_storage_errors
    def issue(
        self,
        *,
        contact: str,
        purpose: OTPPurpose,
        code: str,
        expires_at: datetime,
        max_attempts: int,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> OTPCode:
        """Invalidate the unused codes for (contact, purpose) and insert a new one atomically.

        A concurrent issuer that commits first trips the partial unique index;
        the loser rolls back and retries, so the last committed code wins.
        """

        for attempt in range(1, self.ISSUE_ATTEMPTS + 1):
            self._unused_query(contact=contact, purpose=purpose).update(
                {OTPCode.is_used: True}, synchronize_session=False
            )
            otp = OTPCode(
                contact=contact,
                code=code,
                purpose=purpose,
                expires_at=expires_at,
                is_used=False,
                attempts=0,
                max_attempts=max_attempts,
                ip=ip,
                user_agent=user_agent,
            )
            self.db.add(otp)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.info("otp_issue_conflict purpose=%s attempt=%s", purpose.value, attempt)
                continue
            return otp
        raise BackendError()

    @translate_storage_errors
    def find_valid(self, *, contact: str, purpose: OTPPurpose, now: datetime) -> Optional[OTPCode]:
        return (
            self._unused_query(contact=contact, purpose=purpose)
            .filter(OTPCode.expires_at > now)
            .order_by(OTPCode.created_at.desc(), OTPCode.id.desc())
            .populate_existing()
            .first()
        )

    @translate_storage_errors
    def find_latest_unused(self, *, contact: str, purpose: OTPPurpose) -> Optional[OTPCode]:
        return (
            self._unused_query(contact=contact, purpose=purpose)
            .order_by(OTPCode.created_at.desc(), OTPCode.id.desc())
            .populate_existing()
            .first()
        )

    @translate_storage_errors
    def find_latest(self, *, contact: str) -> Optional[OTPCode]:
        return (
            self.db.query(OTPCode)
            .filter(OTPCode.contact == contact)
            .order_by(OTPCode.created_at.desc(), OTPCode.id.desc())
            .first()
        )

    @translate_storage_errors
    def increment_attempts(self, otp_id: int) -> Optional[int]:
        """Return the new attempt count, or ``None`` when the code was already exhausted or used."""

        updated = (
            self.db.query(OTPCode)
            .filter(
                OTPCode.id == otp_id,
                OTPCode.is_used.is_(False),
                OTPCode.attempts < OTPCode.max_attempts,
            )
            .update({OTPCode.attempts: OTPCode.attempts + 1}, synchronize_session=False)
        )
        self.db.commit()
        if not updated:
            return None
        return self.db.query(OTPCode.attempts).filter(OTPCode.id == otp_id).scalar()

    @translate_storage_errors
    def mark_used(self, otp_id: int, *, now: datetime) -> bool:
        updated = (
            self.db.query(OTPCode)
            .filter(OTPCode.id == otp_id, OTPCode.is_used.is_(False))
            .update({OTPCode.is_used: True, OTPCode.used_at: now}, synchronize_session=False)
        )
        self.db.commit()
        return bool(updated)

    @translate_storage_errors
    def purge_stale(self, *, older_than: datetime) -> int:
        deleted = (
            self.db.query(OTPCode)
            .filter(
                or_(
                    OTPCode.expires_at < older_than,
                    (OTPCode.is_used.is_(True)) & (OTPCode.created_at < older_than),
                )
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted

    def _unused_query(self, *, contact: str, purpose: OTPPurpose):
        return self.db.query(OTPCode).filter(
            OTPCode.contact == contact,
            OTPCode.purpose == purpose,
            OTPCode.is_used.is_(False),
        )
