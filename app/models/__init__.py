"""
Database models package.
"""

from app.models.user import User, Role
from app.models.otp_code import OTPCode, OTPType
from app.models.user_session import UserSession

__all__ = ["User", "Role", "OTPCode", "OTPType", "UserSession"]
