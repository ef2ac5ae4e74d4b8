"""
Structured logging configuration for the application.

Security events from the auth core carry `extra=` fields (user_id, otp_type,
session_id, reason, ...) that arrive as top-level JSON keys in production.
Fields that could hold secret material are masked before they are written.
"""

import logging
import sys
from typing import Any, Dict
from datetime import datetime, timezone
from pythonjsonlogger import jsonlogger

REDACTED = "[REDACTED]"

# Never written to logs even if passed through `extra=`
SENSITIVE_FIELDS = frozenset({
    "otp_code",
    "code",
    "access_token",
    "refresh_token",
    "jwt_secret",
    "authorization",
})


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding standard fields and masking secret-bearing keys.
    """

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace('+00:00', 'Z')
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['function'] = record.funcName

        # Source location for warnings and errors
        if record.levelno >= logging.WARNING:
            log_record['line'] = record.lineno
            log_record['pathname'] = record.pathname

        for key in SENSITIVE_FIELDS.intersection(log_record):
            log_record[key] = REDACTED


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure root logging for the API and the Celery worker.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: JSON output (production) or plain text (development)
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)

    if json_logs:
        formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(logger)s %(message)s')
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler.setFormatter(formatter)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.addHandler(console_handler)

    # Quiet chatty dependencies; token verification detail stays at DEBUG
    for noisy in ("urllib3", "boto3", "botocore", "sqlalchemy.engine", "jose"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Module logger; use as `logger = get_logger(__name__)`."""
    return logging.getLogger(name)
