"""
CRUD operations for OTPCode model.

Every state change that must happen at most once (consume, lock, count an
attempt) is a conditional UPDATE whose row count tells the caller whether
it won. Two concurrent verifications of the same code therefore cannot
both succeed.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
from app.models.otp_code import OTPCode, OTPType


def replace_active(
    db: Session,
    user_id: UUID,
    otp_type: OTPType,
    code_hash: str,
    created_at: datetime,
    expires_at: datetime
) -> OTPCode:
    """
    Store a new code and retire every unused code of the same type.

    Both writes commit in one transaction so at most one unused code per
    (user, type) survives.

    Args:
        db: Database session
        user_id: Owning user
        otp_type: Flow the code belongs to
        code_hash: Hash of the plaintext code
        created_at: Issue time
        expires_at: Expiry time

    Returns:
        OTPCode: The newly stored record
    """
    db.query(OTPCode).filter(
        OTPCode.user_id == user_id,
        OTPCode.type == otp_type,
        OTPCode.used == False
    ).update({OTPCode.used: True}, synchronize_session=False)

    otp = OTPCode(
        user_id=user_id,
        type=otp_type,
        code_hash=code_hash,
        attempts=0,
        used=False,
        created_at=created_at,
        expires_at=expires_at,
    )
    db.add(otp)
    db.commit()
    db.refresh(otp)
    return otp


def get_active(db: Session, user_id: UUID, otp_type: OTPType, now: datetime) -> Optional[OTPCode]:
    """
    Get the most recent unused, unexpired code for (user, type).

    Returns:
        OTPCode or None
    """
    return db.query(OTPCode).filter(
        OTPCode.user_id == user_id,
        OTPCode.type == otp_type,
        OTPCode.used == False,
        OTPCode.expires_at > now
    ).order_by(OTPCode.created_at.desc()).first()


def get_latest_since(db: Session, user_id: UUID, since: datetime) -> Optional[OTPCode]:
    """Most recent code of any type issued to the user at or after `since`."""
    return db.query(OTPCode).filter(
        OTPCode.user_id == user_id,
        OTPCode.created_at >= since
    ).order_by(OTPCode.created_at.desc()).first()


def get_oldest_since(db: Session, user_id: UUID, since: datetime) -> Optional[OTPCode]:
    """Oldest code of any type issued to the user at or after `since`."""
    return db.query(OTPCode).filter(
        OTPCode.user_id == user_id,
        OTPCode.created_at >= since
    ).order_by(OTPCode.created_at.asc()).first()


def count_since(db: Session, user_id: UUID, since: datetime) -> int:
    """Number of codes of any type issued to the user at or after `since`."""
    return db.query(OTPCode).filter(
        OTPCode.user_id == user_id,
        OTPCode.created_at >= since
    ).count()


def increment_attempts(db: Session, otp_id: UUID) -> Optional[int]:
    """
    Count one failed submission against a live code.

    The increment runs inside the database so concurrent failures are all
    counted.

    Returns:
        The new attempt count, or None if the code was consumed meanwhile
    """
    updated = db.query(OTPCode).filter(
        OTPCode.id == otp_id,
        OTPCode.used == False
    ).update({OTPCode.attempts: OTPCode.attempts + 1}, synchronize_session=False)
    db.commit()

    if updated != 1:
        return None

    return db.query(OTPCode.attempts).filter(OTPCode.id == otp_id).scalar()


def lock(db: Session, otp_id: UUID) -> bool:
    """
    Retire a code without a successful submission (attempt cap reached).

    Returns:
        bool: True if this call retired the code
    """
    updated = db.query(OTPCode).filter(
        OTPCode.id == otp_id,
        OTPCode.used == False
    ).update({OTPCode.used: True}, synchronize_session=False)
    db.commit()
    return updated == 1


def consume(db: Session, otp_id: UUID, used_at: datetime) -> bool:
    """
    Mark a code as used after a correct submission.

    Returns:
        bool: True if this call consumed the code, False if another request
        consumed or locked it first
    """
    updated = db.query(OTPCode).filter(
        OTPCode.id == otp_id,
        OTPCode.used == False
    ).update({OTPCode.used: True, OTPCode.used_at: used_at}, synchronize_session=False)
    db.commit()
    return updated == 1


def delete_stale(db: Session, now: datetime, used_before: datetime) -> int:
    """
    Delete expired codes and codes consumed before `used_before`.

    Returns:
        int: Number of codes deleted
    """
    deleted = db.query(OTPCode).filter(
        or_(
            OTPCode.expires_at < now,
            and_(OTPCode.used == True, OTPCode.used_at < used_before)
        )
    ).delete(synchronize_session=False)
    db.commit()
    return deleted
