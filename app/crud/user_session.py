"""
CRUD operations for UserSession model.

Rotation is a compare-and-swap on the stored refresh-token hash: the UPDATE
only matches while the row still holds the hash the caller presented, so
two concurrent refreshes with the same token cannot both win.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID
from sqlalchemy import or_
from sqlalchemy.orm import Session
from app.models.user_session import UserSession


def create(
    db: Session,
    session_id: UUID,
    user_id: UUID,
    access_token: str,
    refresh_token_hash: str,
    created_at: datetime,
    expires_at: datetime,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None
) -> UserSession:
    """
    Insert a session row with a client-assigned ID.

    Args:
        db: Database session
        session_id: Pre-generated UUID (already embedded in the access token)
        user_id: Owning user
        access_token: Access token issued with this session (audit only)
        refresh_token_hash: Hash of the refresh token
        created_at: Creation time
        expires_at: Absolute session expiry
        user_agent: Client user agent (truncated to 255 chars)
        ip_address: Client IP address

    Returns:
        UserSession: The stored row
    """
    row = UserSession(
        id=session_id,
        user_id=user_id,
        access_token=access_token,
        refresh_token_hash=refresh_token_hash,
        user_agent=user_agent[:255] if user_agent else None,
        ip_address=ip_address[:64] if ip_address else None,
        is_valid=True,
        created_at=created_at,
        updated_at=created_at,
        expires_at=expires_at,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_by_id(db: Session, session_id: UUID) -> Optional[UserSession]:
    """Retrieve a session by ID (valid or not)."""
    return db.query(UserSession).filter(UserSession.id == session_id).first()


def get_active_by_refresh_hash(db: Session, refresh_token_hash: str, now: datetime) -> Optional[UserSession]:
    """
    Find the valid, unexpired session currently holding this refresh-token hash.

    Returns:
        UserSession or None
    """
    return db.query(UserSession).filter(
        UserSession.refresh_token_hash == refresh_token_hash,
        UserSession.is_valid == True,
        UserSession.expires_at > now
    ).first()


def get_by_previous_refresh_hash(db: Session, refresh_token_hash: str) -> Optional[UserSession]:
    """Find a session whose last rotation retired this refresh-token hash."""
    return db.query(UserSession).filter(
        UserSession.previous_refresh_token_hash == refresh_token_hash
    ).first()


def rotate(
    db: Session,
    session_id: UUID,
    expected_refresh_token_hash: str,
    access_token: str,
    refresh_token_hash: str,
    now: datetime
) -> bool:
    """
    Swap in a new token pair if the row still holds the expected hash.

    Returns:
        bool: True if this call performed the rotation
    """
    updated = db.query(UserSession).filter(
        UserSession.id == session_id,
        UserSession.refresh_token_hash == expected_refresh_token_hash,
        UserSession.is_valid == True,
        UserSession.expires_at > now
    ).update({
        UserSession.access_token: access_token,
        UserSession.refresh_token_hash: refresh_token_hash,
        UserSession.previous_refresh_token_hash: expected_refresh_token_hash,
        UserSession.updated_at: now,
    }, synchronize_session=False)
    db.commit()
    return updated == 1


def invalidate(db: Session, session_id: UUID, now: datetime) -> bool:
    """
    Revoke a single session.

    Returns:
        bool: True if a valid session was revoked
    """
    updated = db.query(UserSession).filter(
        UserSession.id == session_id,
        UserSession.is_valid == True
    ).update({UserSession.is_valid: False, UserSession.updated_at: now}, synchronize_session=False)
    db.commit()
    return updated == 1


def invalidate_all_for_user(db: Session, user_id: UUID, now: datetime) -> int:
    """
    Revoke every valid session of a user.

    Returns:
        int: Number of sessions revoked
    """
    updated = db.query(UserSession).filter(
        UserSession.user_id == user_id,
        UserSession.is_valid == True
    ).update({UserSession.is_valid: False, UserSession.updated_at: now}, synchronize_session=False)
    db.commit()
    return updated


def delete_expired_or_invalid(db: Session, now: datetime) -> int:
    """
    Delete sessions that are expired or already revoked.

    Returns:
        int: Number of sessions deleted
    """
    deleted = db.query(UserSession).filter(
        or_(
            UserSession.expires_at < now,
            UserSession.is_valid == False
        )
    ).delete(synchronize_session=False)
    db.commit()
    return deleted
