"""
Pydantic schemas for passwordless authentication.
"""

from pydantic import BaseModel, EmailStr, Field, UUID4, field_validator
from typing import Optional
from datetime import datetime

from app.core.config import settings
from app.models.otp_code import OTPType
from app.models.user import Role


class RequestOTPRequest(BaseModel):
    """Request schema for sending a one-time code."""
    email: EmailStr
    type: OTPType = OTPType.LOGIN


class VerifyOTPRequest(BaseModel):
    """Request schema for submitting a one-time code."""
    email: EmailStr
    code: str = Field(..., description="Numeric one-time code from the email")
    type: OTPType = OTPType.LOGIN

    @field_validator('code')
    @classmethod
    def validate_code_format(cls, v: str) -> str:
        """Code must be exactly OTP_LENGTH digits."""
        v = v.strip()
        if not v.isdigit() or len(v) != settings.OTP_LENGTH:
            raise ValueError(f'Code must be exactly {settings.OTP_LENGTH} digits')
        return v


class RefreshTokenRequest(BaseModel):
    """Request schema for refreshing tokens. Falls back to the refresh_token cookie."""
    refresh_token: Optional[str] = None


class SafeUser(BaseModel):
    """User profile response (no sensitive data)."""
    id: UUID4
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Role
    is_active: bool
    email_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    """Tokens issued on login or refresh."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: Optional[SafeUser] = None


class RequestOTPResponse(BaseModel):
    """Response after a code has been issued."""
    success: bool = True
    message: str
    otp_sent_at: datetime
    expires_in_minutes: int


class VerifyEmailResponse(BaseModel):
    """Response for a successful VERIFY_EMAIL submission (no tokens issued)."""
    success: bool = True
    message: str
    user: SafeUser


class MessageResponse(BaseModel):
    success: bool = True
    message: str
