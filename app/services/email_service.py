"""
AWS SES Email Service for delivering one-time codes.

Handles email formatting and AWS SES integration. The plaintext code only
ever exists in the outgoing message; it is never logged.
"""

import logging
from typing import Optional
import boto3
from botocore.exceptions import ClientError, BotoCoreError
from app.core.config import settings

logger = logging.getLogger(__name__)

SUBJECTS = {
    "LOGIN": "Your sign-in code",
    "VERIFY_EMAIL": "Verify your email address",
    "ACCOUNT_RECOVERY": "Your account recovery code",
}

INTROS = {
    "LOGIN": "Use the code below to sign in.",
    "VERIFY_EMAIL": "Use the code below to verify your email address.",
    "ACCOUNT_RECOVERY": "Use the code below to recover your account. Signing in with it will sign you out everywhere else.",
}


class EmailService:
    """
    Service for sending emails via AWS SES.

    Supports both development (sandbox) and production modes.
    """

    def __init__(self, ses_client=None):
        """Initialize AWS SES client"""
        if ses_client is not None:
            self.ses_client = ses_client
            return

        session_kwargs = {
            'region_name': settings.AWS_REGION,
        }

        # Add credentials if provided (otherwise uses IAM role)
        if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
            session_kwargs['aws_access_key_id'] = settings.AWS_ACCESS_KEY_ID
            session_kwargs['aws_secret_access_key'] = settings.AWS_SECRET_ACCESS_KEY

        self.ses_client = boto3.client('ses', **session_kwargs)

    def send_otp_email(
        self,
        to_email: str,
        otp_code: str,
        expiry_minutes: int,
        otp_type: str = "LOGIN",
        user_name: Optional[str] = None
    ) -> bool:
        """
        Send a one-time code to a user.

        Args:
            to_email: Recipient email address
            otp_code: Plaintext one-time code
            expiry_minutes: Minutes until the code expires
            otp_type: LOGIN, VERIFY_EMAIL or ACCOUNT_RECOVERY (selects the wording)
            user_name: Optional user's name for personalization

        Returns:
            bool: True if email sent successfully, False otherwise
        """
        subject = SUBJECTS.get(otp_type, SUBJECTS["LOGIN"])
        intro = INTROS.get(otp_type, INTROS["LOGIN"])

        html_body = self._build_otp_html(otp_code, intro, expiry_minutes, user_name)
        text_body = self._build_otp_text(otp_code, intro, expiry_minutes, user_name)

        return self._send(to_email, subject, html_body, text_body, kind="OTP")

    def send_welcome_email(self, to_email: str, user_name: str) -> bool:
        """
        Greet a user after their first successful sign-in.

        Args:
            to_email: Recipient email address
            user_name: First name, or the local part of the address

        Returns:
            bool: True if email sent successfully, False otherwise
        """
        subject = f"Welcome to {settings.PROJECT_NAME}!"
        dashboard_url = f"{settings.FRONTEND_URL}/dashboard"

        html_body = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>{subject}</title>
</head>
<body style="margin: 0; padding: 32px 40px; font-family: Arial, sans-serif; color: #333333; font-size: 16px; line-height: 24px;">
    <h2 style="margin: 0 0 16px;">Welcome, {user_name}!</h2>
    <p style="margin: 0 0 24px;">Your account is ready. Next time, just enter your email and we'll send you a sign-in code.</p>
    <p style="margin: 0 0 24px;"><a href="{dashboard_url}" style="color: #1a73e8;">Go to your dashboard</a></p>
    <p style="margin: 0; color: #888888; font-size: 13px;">If you didn't sign up, please contact support.</p>
</body>
</html>
"""
        text_body = f"""Welcome, {user_name}!

Your account is ready. Next time, just enter your email and we'll send you a sign-in code.

Go to your dashboard: {dashboard_url}

If you didn't sign up, please contact support.
"""
        return self._send(to_email, subject, html_body, text_body, kind="Welcome")

    def _send(self, to_email: str, subject: str, html_body: str, text_body: str, kind: str) -> bool:
        try:
            response = self.ses_client.send_email(
                Source=f"{settings.AWS_SES_FROM_NAME} <{settings.AWS_SES_FROM_EMAIL}>",
                Destination={'ToAddresses': [to_email]},
                Message={
                    'Subject': {'Data': subject, 'Charset': 'UTF-8'},
                    'Body': {
                        'Html': {'Data': html_body, 'Charset': 'UTF-8'},
                        'Text': {'Data': text_body, 'Charset': 'UTF-8'}
                    }
                }
            )

            message_id = response.get('MessageId')
            logger.info(f"{kind} email sent to {to_email} (MessageId: {message_id})")
            return True

        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_message = e.response['Error']['Message']
            logger.error(f"AWS SES ClientError: {error_code} - {error_message}")

            if error_code == 'MessageRejected':
                logger.error(f"Email rejected: {error_message}")
            elif error_code == 'MailFromDomainNotVerified':
                logger.error("Sender email not verified in SES")

            return False

        except BotoCoreError as e:
            logger.error(f"AWS BotoCoreError: {str(e)}")
            return False

    def _build_otp_html(self, code: str, intro: str, expiry_minutes: int, user_name: Optional[str] = None) -> str:
        greeting = f"Hi {user_name}," if user_name else "Hi there,"

        return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{settings.PROJECT_NAME}</title>
</head>
<body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #f4f4f4;">
    <table role="presentation" style="width: 100%; border-collapse: collapse;">
        <tr>
            <td align="center" style="padding: 40px 0;">
                <table role="presentation" style="width: 480px; border-collapse: collapse; background-color: #ffffff; border-radius: 8px;">
                    <tr>
                        <td style="padding: 32px 40px; color: #333333; font-size: 16px; line-height: 24px;">
                            <p style="margin: 0 0 16px;">{greeting}</p>
                            <p style="margin: 0 0 24px;">{intro}</p>
                            <p style="margin: 0 0 24px; font-size: 32px; font-weight: bold; letter-spacing: 8px; text-align: center;">{code}</p>
                            <p style="margin: 0 0 16px;">This code expires in {expiry_minutes} minutes and can only be used once.</p>
                            <p style="margin: 0; color: #888888; font-size: 13px;">If you didn't request this code, you can safely ignore this email.</p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>
"""

    def _build_otp_text(self, code: str, intro: str, expiry_minutes: int, user_name: Optional[str] = None) -> str:
        greeting = f"Hi {user_name}," if user_name else "Hi there,"

        return f"""{greeting}

{intro}

Your code: {code}

This code expires in {expiry_minutes} minutes and can only be used once.

If you didn't request this code, you can safely ignore this email.
"""


# Singleton instance
email_service = EmailService()
