"""
Unit tests for the SES email service.

The SES client is a MagicMock; no AWS calls are made.
"""

import pytest
from unittest.mock import MagicMock
from botocore.exceptions import ClientError, EndpointConnectionError

from app.services.email_service import EmailService


@pytest.fixture
def ses_client():
    client = MagicMock()
    client.send_email.return_value = {"MessageId": "msg-123"}
    return client


@pytest.fixture
def service(ses_client):
    return EmailService(ses_client=ses_client)


def _sent_message(ses_client):
    return ses_client.send_email.call_args.kwargs


class TestSendOTPEmail:

    def test_sends_code_in_both_bodies(self, service, ses_client):
        assert service.send_otp_email("student@example.com", "482913", expiry_minutes=10) is True

        message = _sent_message(ses_client)
        assert message["Destination"] == {"ToAddresses": ["student@example.com"]}
        assert "482913" in message["Message"]["Body"]["Text"]["Data"]
        assert "482913" in message["Message"]["Body"]["Html"]["Data"]
        assert "expires in 10 minutes" in message["Message"]["Body"]["Text"]["Data"]

    @pytest.mark.parametrize("otp_type,subject", [
        ("LOGIN", "Your sign-in code"),
        ("VERIFY_EMAIL", "Verify your email address"),
        ("ACCOUNT_RECOVERY", "Your account recovery code"),
    ])
    def test_subject_depends_on_type(self, service, ses_client, otp_type, subject):
        service.send_otp_email("student@example.com", "482913", 10, otp_type=otp_type)

        assert _sent_message(ses_client)["Message"]["Subject"]["Data"] == subject

    def test_greets_by_name(self, service, ses_client):
        service.send_otp_email("ada@example.com", "482913", 10, user_name="Ada")

        assert _sent_message(ses_client)["Message"]["Body"]["Text"]["Data"].startswith("Hi Ada,")

    def test_client_error_returns_false(self, service, ses_client):
        ses_client.send_email.side_effect = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified."}},
            "SendEmail",
        )

        assert service.send_otp_email("student@example.com", "482913", 10) is False

    def test_botocore_error_returns_false(self, service, ses_client):
        ses_client.send_email.side_effect = EndpointConnectionError(
            endpoint_url="https://email.us-east-1.amazonaws.com"
        )

        assert service.send_otp_email("student@example.com", "482913", 10) is False


class TestSendWelcomeEmail:

    def test_sends_welcome(self, service, ses_client):
        assert service.send_welcome_email("ada@example.com", "Ada") is True

        message = _sent_message(ses_client)
        assert message["Message"]["Subject"]["Data"].startswith("Welcome to ")
        assert "Welcome, Ada!" in message["Message"]["Body"]["Text"]["Data"]
        assert "/dashboard" in message["Message"]["Body"]["Html"]["Data"]

    def test_client_error_returns_false(self, service, ses_client):
        ses_client.send_email.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "Maximum sending rate exceeded."}},
            "SendEmail",
        )

        assert service.send_welcome_email("ada@example.com", "Ada") is False
