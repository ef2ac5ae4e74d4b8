"""
CRUD operations (Create, Read, Update, Delete) for database models.

This layer provides a clean separation between the auth core and database
operations, following the Repository pattern.
"""

from app.crud import user, otp_code, user_session

__all__ = ["user", "otp_code", "user_session"]
