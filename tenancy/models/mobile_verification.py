"""
One-time codes sent to verify a mobile number.

Only a digest of the code is stored. At most one PENDING row exists per
phone number; issuing a new code expires the previous one.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tenancy.models.base import BaseModel


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class MobileVerification(BaseModel):
    """A code issued for a phone number and its verification state."""

    __tablename__ = "mobile_verifications"

    phone_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="E.164 phone number"
    )

    code_digest: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 of the one-time code"
    )

    tenant_id: Mapped[str | None] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[VerificationStatus] = mapped_column(
        String(20),
        nullable=False,
        default=VerificationStatus.PENDING,
        index=True,
    )

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<MobileVerification(id={self.id}, phone={self.phone_number}, status={self.status})>"
