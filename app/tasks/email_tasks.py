"""
Celery tasks for email operations.

Handles asynchronous OTP and welcome email delivery with retry logic.
"""

import logging
from typing import Optional
from celery import shared_task
from app.services.email_service import email_service

logger = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    """SES refused or failed to send a message."""


@shared_task(
    bind=True,
    name="send_otp_email_task",
    max_retries=3,
    default_retry_delay=30,
    autoretry_for=(EmailDeliveryError,),
    retry_backoff=True,
    retry_backoff_max=300,  # Codes expire quickly; stop backing off after 5 minutes
    retry_jitter=True
)
def send_otp_email_task(
    self,
    to_email: str,
    otp_code: str,
    expiry_minutes: int,
    otp_type: str = "LOGIN",
    user_name: Optional[str] = None
):
    """
    Celery task to send a one-time code asynchronously.

    Features:
    - Automatic retry on failure (up to 3 attempts)
    - Exponential backoff with jitter

    Args:
        to_email: Recipient email address
        otp_code: Plaintext one-time code
        expiry_minutes: Minutes until the code expires
        otp_type: Flow the code is for
        user_name: Optional user's name

    Raises:
        EmailDeliveryError: If email sending fails (triggers retry)
    """
    logger.info(f"Sending OTP email to {to_email} (attempt {self.request.retries + 1})")

    success = email_service.send_otp_email(
        to_email=to_email,
        otp_code=otp_code,
        expiry_minutes=expiry_minutes,
        otp_type=otp_type,
        user_name=user_name
    )

    if not success:
        if self.request.retries >= self.max_retries:
            logger.error(f"All retry attempts exhausted for {to_email}")
        raise EmailDeliveryError(f"Failed to send OTP email to {to_email}")

    logger.info(f"OTP email sent successfully to {to_email}")
    return {"status": "success", "email": to_email}


@shared_task(
    bind=True,
    name="send_welcome_email_task",
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(EmailDeliveryError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True
)
def send_welcome_email_task(self, to_email: str, user_name: str):
    """
    Celery task to greet a user after their first sign-in.

    Raises:
        EmailDeliveryError: If email sending fails (triggers retry)
    """
    logger.info(f"Sending welcome email to {to_email} (attempt {self.request.retries + 1})")

    if not email_service.send_welcome_email(to_email=to_email, user_name=user_name):
        raise EmailDeliveryError(f"Failed to send welcome email to {to_email}")

    return {"status": "success", "email": to_email}
