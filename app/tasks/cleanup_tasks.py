"""
Periodic cleanup of expired auth records.

Scheduled hourly by Celery beat (see app/core/celery_app.py). Both tasks are
idempotent and safe to run concurrently with live traffic.
"""

import logging
from celery import shared_task

from app.core.database import SessionLocal
from app.core.otp import OTPEngine
from app.core.sessions import SessionManager

logger = logging.getLogger(__name__)


@shared_task(name="cleanup_expired_otps_task")
def cleanup_expired_otps_task():
    """Delete expired codes and used codes past their retention window."""
    db = SessionLocal()
    try:
        deleted_count = OTPEngine(db).cleanup_expired_otps()
        return {"status": "success", "deleted_count": deleted_count}
    except Exception as e:
        db.rollback()
        logger.error(f"Error cleaning up OTP codes: {str(e)}")
        raise
    finally:
        db.close()


@shared_task(name="cleanup_expired_sessions_task")
def cleanup_expired_sessions_task():
    """Delete expired and revoked sessions."""
    db = SessionLocal()
    try:
        deleted_count = SessionManager(db).cleanup_expired_sessions()
        return {"status": "success", "deleted_count": deleted_count}
    except Exception as e:
        db.rollback()
        logger.error(f"Error cleaning up sessions: {str(e)}")
        raise
    finally:
        db.close()
