from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.phone import is_email
from app.models import User
from app.services.exceptions import ConflictError

from .base import translate_storage_errors


@dataclass(slots=True)
class IdentityProfile:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None


class IdentityStore(Protocol):
    def find_by_contact(self, contact: str) -> Optional[User]: ...

    def get_by_id(self, user_id: int) -> Optional[User]: ...

    def create(self, contact: str, profile: IdentityProfile) -> User: ...

    def update_last_login(self, user_id: int, *, now: datetime) -> None: ...


class SqlIdentityStore:
    def __init__(self, db: Session):
        self.db = db

    @translate_storage_errors
    def find_by_contact(self, contact: str) -> Optional[User]:
        column = User.email if is_email(contact) else User.phone
        return self.db.query(User).filter(column == contact).first()

    @translate_storage_errors
    def get_by_id(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).populate_existing().first()

    @translate_storage_errors
    def create(self, contact: str, profile: IdentityProfile) -> User:
        if is_email(contact):
            user = User(email=contact)
        else:
            user = User(phone=contact, email=profile.email)
        user.first_name = profile.first_name
        user.last_name = profile.last_name
        user.is_verified = True
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError("User already exists with this contact") from exc
        self.db.refresh(user)
        return user

    @translate_storage_errors
    def update_last_login(self, user_id: int, *, now: datetime) -> None:
        self.db.query(User).filter(User.id == user_id).update(
            {User.last_login_at: now}, synchronize_session=False
        )
        self.db.commit()
