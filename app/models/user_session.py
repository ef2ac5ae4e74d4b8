"""
Session model binding a refresh token to a device.

One row backs one live refresh token. Rotation overwrites the token
fields on the same row; logout flips is_valid.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from app.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserSession(Base):
    """
    Revocable, device-scoped login session.

    Usable only while is_valid is True and expires_at is in the future.
    access_token is kept for audit only; access tokens are verified statelessly.
    """
    __tablename__ = "sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    access_token = Column(Text, nullable=False)

    # SHA-256 hex digests, never the plaintext refresh token
    refresh_token_hash = Column(String(64), unique=True, nullable=False)
    previous_refresh_token_hash = Column(String(64), nullable=True)

    # Device metadata
    user_agent = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)

    is_valid = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    user = relationship("User", back_populates="sessions")

    __table_args__ = (
        Index('ix_sessions_previous_refresh_token_hash', 'previous_refresh_token_hash'),
        Index('ix_sessions_expires_at', 'expires_at'),
    )

    def __repr__(self):
        return f"<UserSession(id={self.id}, user_id={self.user_id}, is_valid={self.is_valid}, expires_at={self.expires_at})>"
