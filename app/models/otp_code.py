from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow
from .enums import OTPPurpose


class OTPCode(Base):
    __tablename__ = "otp_codes"
    # At most one unused code per (contact, purpose).
    __table_args__ = (
        Index(
            "uq_otp_codes_active_contact_purpose",
            "contact",
            "purpose",
            unique=True,
            sqlite_where=text("is_used = 0"),
            postgresql_where=text("is_used = false"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contact: Mapped[str] = mapped_column(String(320), index=True)
    code: Mapped[str] = mapped_column(String(10))
    purpose: Mapped[OTPPurpose] = mapped_column(
        Enum(OTPPurpose, name="otp_purpose", values_callable=lambda enum: [item.value for item in enum])
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_used: Mapped[bool] = mapped_column(Boolean, default=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)
