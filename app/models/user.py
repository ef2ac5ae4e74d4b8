"""
User model for passwordless authentication.

Users are created on their first OTP request and authenticate only through
one-time codes; there is no password column.
"""

import enum
import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Enum, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from app.core.database import Base


class Role(str, enum.Enum):
    """
    Authorization roles carried in the access token `role` claim.
    """
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MENTOR = "MENTOR"
    STUDENT = "STUDENT"
    ALUMNI = "ALUMNI"
    USER = "USER"


class User(Base):
    """
    User account.

    Owns its OTP codes and sessions exclusively; deleting a user cascades to both.
    """
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)

    # Always stored lower-cased and trimmed
    email = Column(String(255), unique=True, nullable=False, index=True)

    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    role = Column(Enum(Role, name="user_role"), nullable=False, default=Role.USER)

    # Account status
    is_active = Column(Boolean, default=True, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    otp_codes = relationship("OTPCode", back_populates="user", cascade="all, delete-orphan")
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role={self.role})>"
