"""
CRUD operations for User model.

Users are looked up by normalised email; the auth flow creates them on
first contact.
"""

from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID
from sqlalchemy.orm import Session
from app.models.user import User


def normalize_email(email: str) -> str:
    """Lower-case and trim an email address."""
    return email.strip().lower()


def get_by_id(db: Session, user_id: UUID) -> Optional[User]:
    """
    Retrieve a user by ID.

    Args:
        db: Database session
        user_id: User UUID

    Returns:
        User instance if found, None otherwise
    """
    return db.query(User).filter(User.id == user_id).first()


def get_by_email(db: Session, email: str) -> Optional[User]:
    """
    Retrieve a user by email address (case-insensitive).

    Args:
        db: Database session
        email: Email address as entered by the user

    Returns:
        User instance if found, None otherwise
    """
    return db.query(User).filter(User.email == normalize_email(email)).first()


def get_or_create_by_email(db: Session, email: str) -> Tuple[User, bool]:
    """
    Find a user by email, creating an active USER account if none exists.

    Args:
        db: Database session
        email: Email address as entered by the user

    Returns:
        Tuple[User, bool]: (user, created)
    """
    existing = get_by_email(db, email)
    if existing:
        return existing, False

    user = User(email=normalize_email(email), is_active=True, email_verified=False)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user, True


def lock_for_update(db: Session, user_id: UUID) -> Optional[User]:
    """
    Take a row lock on the user for the rest of the current transaction.

    Serialises concurrent writers acting for the same user (e.g. two OTP
    requests racing). Backends without row locks ignore FOR UPDATE.
    """
    return db.query(User).filter(User.id == user_id).with_for_update().first()


def record_login(db: Session, user: User, logged_in_at: datetime) -> User:
    """
    Stamp a successful sign-in and mark the email as verified.

    Receiving and returning a one-time code proves ownership of the address.
    """
    user.last_login_at = logged_in_at
    user.email_verified = True
    db.commit()
    db.refresh(user)
    return user


def mark_email_verified(db: Session, user: User) -> User:
    """Set email_verified without touching login state."""
    user.email_verified = True
    db.commit()
    db.refresh(user)
    return user
