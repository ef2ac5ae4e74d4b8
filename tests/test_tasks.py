"""
Unit tests for background jobs.

Tasks run eagerly with .apply() or by direct call; no broker is needed.
"""

import threading
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from sqlalchemy.exc import SQLAlchemyError

from app.core import celery_utils
from app.core.celery_utils import _queue_task_sync, queue_task_safely
from app.models.otp_code import OTPCode, OTPType
from app.models.user_session import UserSession
from app.tasks import cleanup_tasks
from app.tasks.cleanup_tasks import cleanup_expired_otps_task, cleanup_expired_sessions_task
from app.tasks.email_tasks import EmailDeliveryError, send_otp_email_task, send_welcome_email_task


class FakeEmailService:
    def __init__(self, succeed=True):
        self.succeed = succeed
        self.calls = []

    def send_otp_email(self, **kwargs):
        self.calls.append(("otp", kwargs))
        return self.succeed

    def send_welcome_email(self, **kwargs):
        self.calls.append(("welcome", kwargs))
        return self.succeed


@pytest.fixture
def fake_email_service(monkeypatch):
    fake = FakeEmailService()
    monkeypatch.setattr("app.tasks.email_tasks.email_service", fake)
    return fake


OTP_TASK_KWARGS = {
    "to_email": "student@example.com",
    "otp_code": "482913",
    "expiry_minutes": 10,
    "otp_type": "LOGIN",
}


class TestSendOTPEmailTask:

    def test_success(self, fake_email_service):
        result = send_otp_email_task.apply(kwargs=OTP_TASK_KWARGS)

        assert result.successful()
        assert result.get() == {"status": "success", "email": "student@example.com"}
        assert fake_email_service.calls == [("otp", {**OTP_TASK_KWARGS, "user_name": None})]

    def test_failure_raises_delivery_error(self, fake_email_service):
        fake_email_service.succeed = False

        with pytest.raises(EmailDeliveryError):
            send_otp_email_task(**OTP_TASK_KWARGS)

    def test_failure_is_retried_then_fails(self, fake_email_service):
        fake_email_service.succeed = False

        result = send_otp_email_task.apply(kwargs=OTP_TASK_KWARGS)

        assert result.failed()
        assert isinstance(result.result, EmailDeliveryError)
        assert len(fake_email_service.calls) > 1


class TestSendWelcomeEmailTask:

    def test_success(self, fake_email_service):
        result = send_welcome_email_task.apply(kwargs={"to_email": "ada@example.com", "user_name": "Ada"})

        assert result.successful()
        assert fake_email_service.calls == [("welcome", {"to_email": "ada@example.com", "user_name": "Ada"})]

    def test_failure_raises_delivery_error(self, fake_email_service):
        fake_email_service.succeed = False

        with pytest.raises(EmailDeliveryError):
            send_welcome_email_task(to_email="ada@example.com", user_name="Ada")


class TestCleanupTasks:

    @pytest.fixture
    def task_db(self, db_session, monkeypatch):
        monkeypatch.setattr(cleanup_tasks, "SessionLocal", lambda: db_session)
        return db_session

    def test_otp_cleanup(self, task_db, user):
        now = datetime.now(timezone.utc)
        task_db.add_all([
            OTPCode(user_id=user.id, type=OTPType.LOGIN, code_hash="0" * 64,
                    created_at=now - timedelta(hours=2), expires_at=now - timedelta(hours=1)),
            OTPCode(user_id=user.id, type=OTPType.LOGIN, code_hash="1" * 64,
                    created_at=now, expires_at=now + timedelta(minutes=10)),
        ])
        task_db.commit()

        result = cleanup_expired_otps_task.apply()

        assert result.get() == {"status": "success", "deleted_count": 1}
        assert task_db.query(OTPCode).count() == 1

    def test_session_cleanup(self, task_db, user):
        now = datetime.now(timezone.utc)
        task_db.add_all([
            UserSession(user_id=user.id, access_token="a", refresh_token_hash="a" * 64,
                        expires_at=now - timedelta(minutes=1)),
            UserSession(user_id=user.id, access_token="b", refresh_token_hash="b" * 64,
                        is_valid=False, expires_at=now + timedelta(days=1)),
            UserSession(user_id=user.id, access_token="c", refresh_token_hash="c" * 64,
                        expires_at=now + timedelta(days=1)),
        ])
        task_db.commit()

        result = cleanup_expired_sessions_task.apply()

        assert result.get() == {"status": "success", "deleted_count": 2}
        assert task_db.query(UserSession).count() == 1

    @pytest.mark.parametrize("task,service_name,method", [
        (cleanup_expired_otps_task, "OTPEngine", "cleanup_expired_otps"),
        (cleanup_expired_sessions_task, "SessionManager", "cleanup_expired_sessions"),
    ])
    def test_store_error_rolls_back_and_reraises(self, monkeypatch, task, service_name, method):
        db = MagicMock()
        service = MagicMock()
        getattr(service, method).side_effect = SQLAlchemyError("connection lost")
        monkeypatch.setattr(cleanup_tasks, "SessionLocal", lambda: db)
        monkeypatch.setattr(cleanup_tasks, service_name, lambda session: service)

        with pytest.raises(SQLAlchemyError):
            task()

        db.rollback.assert_called_once()
        db.close.assert_called_once()


class TestQueueTaskSafely:

    @pytest.fixture
    def task(self):
        task = MagicMock()
        task.name = "send_otp_email_task"
        task.apply_async.return_value.id = "task-1"
        return task

    def test_publishes_with_expiry(self, task, monkeypatch):
        monkeypatch.setattr(celery_utils, "Connection", MagicMock())

        assert _queue_task_sync(task, (), {"to_email": "a@example.com"}, 600) == (True, "task-1", "")

        call = task.apply_async.call_args.kwargs
        assert call["kwargs"] == {"to_email": "a@example.com"}
        assert call["expires"] == 600

    def test_broker_error_is_reported(self, task, monkeypatch):
        monkeypatch.setattr(celery_utils, "Connection", MagicMock(side_effect=OSError("broker down")))

        assert _queue_task_sync(task, (), {}) == (False, "", "broker down")

    def test_success(self, task, monkeypatch):
        seen = []

        def fake_sync(task, args, kwargs, expires=None):
            seen.append((kwargs, expires))
            return (True, "task-1", "")

        monkeypatch.setattr(celery_utils, "_queue_task_sync", fake_sync)

        assert queue_task_safely(task, expires=600, to_email="a@example.com") is True
        assert seen == [({"to_email": "a@example.com"}, 600)]

    def test_failure_returns_false(self, task, monkeypatch):
        monkeypatch.setattr(celery_utils, "_queue_task_sync", lambda *a: (False, "", "broker down"))

        assert queue_task_safely(task) is False

    def test_timeout_returns_false(self, task, monkeypatch):
        release = threading.Event()

        def hanging_sync(*args):
            release.wait(timeout=5)
            return (True, "task-1", "")

        monkeypatch.setattr(celery_utils, "_queue_task_sync", hanging_sync)
        monkeypatch.setattr(celery_utils, "QUEUE_TIMEOUT_SECONDS", 0.05)

        try:
            assert queue_task_safely(task) is False
        finally:
            release.set()
