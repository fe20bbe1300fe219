"""SQLAlchemy model for issued one-time codes."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Enum, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from credential_engine.core.policies import VerificationPurpose
from credential_engine.models.base import Base, UTCDateTime


class OtpStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    EXPIRED = "EXPIRED"
    LOCKED = "LOCKED"
    SUPERSEDED = "SUPERSEDED"


class OtpRecord(Base):
    """One issued code for a ``(subject, purpose)`` pair.

    Records are never deleted here; terminal states are reached by flipping
    ``status`` and ``consumed``.  At most one non-consumed record exists per
    pair, enforced by a partial unique index.
    """

    __tablename__ = "otp_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject: Mapped[str] = mapped_column(
        String(256), nullable=False, doc="Email address or user id the code was issued to"
    )
    purpose: Mapped[VerificationPurpose] = mapped_column(
        Enum(VerificationPurpose), nullable=False
    )
    code: Mapped[str] = mapped_column(String(10), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    attempts_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consumed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[OtpStatus] = mapped_column(
        Enum(OtpStatus), nullable=False, default=OtpStatus.PENDING
    )
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("ix_otp_records_subject_purpose", "subject", "purpose"),
        Index(
            "uq_otp_records_active_pair",
            "subject",
            "purpose",
            unique=True,
            sqlite_where=text("consumed = 0"),
            postgresql_where=text("consumed = false"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<OtpRecord id={self.id} subject={self.subject!r} "
            f"purpose={self.purpose.value} status={self.status.value}>"
        )
