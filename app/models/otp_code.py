"""
One-time password model.

Each code is single-use, time-limited, and attempt-limited. Only a
peppered hash of the code is stored; the plaintext leaves the process
once, in the delivery email.
"""

import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Enum, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from app.core.database import Base


class OTPType(str, enum.Enum):
    """
    Authentication flows a code can be issued for.

    - LOGIN: Passwordless sign-in
    - VERIFY_EMAIL: Confirm ownership of the address without signing in
    - ACCOUNT_RECOVERY: Sign in and revoke every existing session
    """
    LOGIN = "LOGIN"
    VERIFY_EMAIL = "VERIFY_EMAIL"
    ACCOUNT_RECOVERY = "ACCOUNT_RECOVERY"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OTPCode(Base):
    """
    One-time codes for passwordless authentication.

    Invariants:
    - At most one unused, unexpired code per (user, type)
    - attempts never exceeds the configured maximum; reaching it forces used=True
    """
    __tablename__ = "otp_codes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # SHA-256 hex digest of code + server secret
    code_hash = Column(String(64), nullable=False)
    type = Column(Enum(OTPType, name="otp_type"), nullable=False, default=OTPType.LOGIN)

    attempts = Column(Integer, nullable=False, default=0)
    used = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="otp_codes")

    __table_args__ = (
        Index('ix_otp_codes_lookup', 'user_id', 'type', 'used', 'expires_at'),
        Index('ix_otp_codes_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<OTPCode(user_id={self.user_id}, type={self.type}, used={self.used}, expires_at={self.expires_at})>"
