"""
Unit tests for structured logging.
"""

import json
import logging

from app.core.logging_config import REDACTED, CustomJsonFormatter


def _format(**extra):
    formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(logger)s %(message)s')
    record = logging.LogRecord(
        name="app.core.otp",
        level=logging.WARNING,
        pathname=__file__,
        lineno=12,
        msg="OTP locked after too many failed attempts",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


def test_standard_fields():
    output = _format(user_id="u1", reason="max_attempts")

    assert output["message"] == "OTP locked after too many failed attempts"
    assert output["level"] == "WARNING"
    assert output["logger"] == "app.core.otp"
    assert output["timestamp"].endswith("Z")
    assert output["line"] == 12
    assert output["user_id"] == "u1"
    assert output["reason"] == "max_attempts"


def test_secret_fields_are_masked():
    output = _format(otp_code="482913", refresh_token="ab" * 64, user_id="u1")

    assert output["otp_code"] == REDACTED
    assert output["refresh_token"] == REDACTED
    assert output["user_id"] == "u1"
    assert "482913" not in json.dumps(output)
