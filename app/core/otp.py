"""
OTP engine: issue and verify one-time codes.

Handles generation, hashing, rate limiting, verification, and cleanup of
numeric login codes.

Policy outcomes (cooldown, hourly cap, wrong code, lockout) come back as
RateLimitDecision / VerificationResult values so route handlers can map
them to user-facing responses. Store errors propagate unchanged.
"""

import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Protocol, Union
from uuid import UUID
from sqlalchemy.orm import Session

from app.core.config import Settings, settings
from app.core.logging_config import get_logger
from app.core.security import generate_otp_code, hash_otp, verify_otp_hash
from app.core.timeutils import Clock, ensure_utc, utc_now
from app.crud import otp_code as otp_crud
from app.crud import user as user_crud
from app.models.otp_code import OTPType

logger = get_logger(__name__)

RATE_WINDOW = timedelta(hours=1)

NO_VALID_OTP_MESSAGE = "No valid OTP found. Please request a new code."
MAX_ATTEMPTS_MESSAGE = "Maximum verification attempts exceeded. Please request a new code."


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


@dataclass
class RateLimitDecision:
    """Whether a user may be sent a new code, and if not, for how long."""
    can_request: bool
    wait_seconds: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class OTPRequestResult:
    """Outcome of request_otp: the plaintext code when issued, else the refusal."""
    decision: RateLimitDecision
    code: Optional[str] = None

    @property
    def issued(self) -> bool:
        return self.code is not None


@dataclass
class VerificationResult:
    """Outcome of a code submission. `error` is safe to show to the user."""
    success: bool
    error: Optional[str] = None


class OTPRateLimiter(Protocol):
    """Decides whether a user may be issued another code."""

    def check(self, user_id: UUID) -> RateLimitDecision:
        ...


class StoreOTPRateLimiter:
    """
    Cooldown and hourly cap derived from the otp_codes history.

    The history lives in the shared database, so the limit holds across
    every API instance without a separate counter service. Read-only.
    """

    def __init__(self, db: Session, config: Settings = settings, clock: Clock = utc_now):
        self.db = db
        self.config = config
        self.clock = clock

    def check(self, user_id: UUID) -> RateLimitDecision:
        now = self.clock()
        cooldown = self.config.OTP_COOLDOWN_SECONDS

        if cooldown > 0:
            recent = otp_crud.get_latest_since(self.db, user_id, now - timedelta(seconds=cooldown))
            if recent:
                elapsed = (now - ensure_utc(recent.created_at)).total_seconds()
                wait_seconds = max(1, math.ceil(cooldown - elapsed))
                return RateLimitDecision(
                    can_request=False,
                    wait_seconds=wait_seconds,
                    reason=f"Please wait {_plural(wait_seconds, 'second')} before requesting a new code",
                )

        window_start = now - RATE_WINDOW
        hourly_count = otp_crud.count_since(self.db, user_id, window_start)
        if hourly_count >= self.config.OTP_MAX_PER_HOUR:
            oldest = otp_crud.get_oldest_since(self.db, user_id, window_start)
            # The window reopens when the oldest code in it ages out
            age = (now - ensure_utc(oldest.created_at)).total_seconds() if oldest else 0
            wait_seconds = max(1, math.ceil(RATE_WINDOW.total_seconds() - age))
            wait_minutes = max(1, math.ceil(wait_seconds / 60))
            return RateLimitDecision(
                can_request=False,
                wait_seconds=wait_seconds,
                reason=f"Too many OTP requests. Please try again in {_plural(wait_minutes, 'minute')}.",
            )

        return RateLimitDecision(can_request=True)


class OTPEngine:
    """
    Issues and verifies one-time codes for a user.

    Security properties:
    - Codes come from the OS CSPRNG and are stored only as a peppered hash
    - Creating a code retires every unused code of the same type
    - Submissions are compared in constant time
    - The submission that reaches OTP_MAX_ATTEMPTS locks the code for good
    """

    def __init__(
        self,
        db: Session,
        config: Settings = settings,
        rate_limiter: Optional[OTPRateLimiter] = None,
        clock: Clock = utc_now
    ):
        self.db = db
        self.config = config
        self.clock = clock
        self.rate_limiter = rate_limiter or StoreOTPRateLimiter(db, config=config, clock=clock)

    def can_request_otp(self, user_id: UUID) -> RateLimitDecision:
        """Check cooldown and hourly cap for a user. Has no side effects."""
        return self.rate_limiter.check(user_id)

    def create_otp(self, user_id: UUID, otp_type: Union[OTPType, str] = OTPType.LOGIN) -> str:
        """
        Generate, store, and return a new code.

        Does not consult the rate limiter; request handlers use request_otp.
        The caller delivers the returned plaintext out of band; only its hash
        is persisted.

        Args:
            user_id: Owning user
            otp_type: Flow the code is for

        Returns:
            str: Plaintext code, OTP_LENGTH digits
        """
        user_crud.lock_for_update(self.db, user_id)
        return self._issue(user_id, OTPType(otp_type))

    def request_otp(self, user_id: UUID, otp_type: Union[OTPType, str] = OTPType.LOGIN) -> OTPRequestResult:
        """
        Check the user's limits and issue a code as one step.

        The user row stays locked from the limit check until the new code is
        committed, so concurrent requests for the same user are counted one
        after another and cannot both slip under the cooldown or hourly cap.

        Args:
            user_id: Owning user
            otp_type: Flow the code is for

        Returns:
            OTPRequestResult: the plaintext code, or the refusing decision
        """
        otp_type = OTPType(otp_type)

        user_crud.lock_for_update(self.db, user_id)
        decision = self.rate_limiter.check(user_id)
        if not decision.can_request:
            # Release the row lock
            self.db.rollback()
            logger.info(
                f"OTP request refused for user {user_id}",
                extra={"user_id": str(user_id), "otp_type": otp_type.value, "wait_seconds": decision.wait_seconds}
            )
            return OTPRequestResult(decision=decision)

        return OTPRequestResult(decision=decision, code=self._issue(user_id, otp_type))

    def _issue(self, user_id: UUID, otp_type: OTPType) -> str:
        now = self.clock()
        code = generate_otp_code(self.config.OTP_LENGTH)

        otp = otp_crud.replace_active(
            self.db,
            user_id=user_id,
            otp_type=otp_type,
            code_hash=hash_otp(code, self.config.JWT_SECRET),
            created_at=now,
            expires_at=now + timedelta(minutes=self.config.OTP_EXPIRY_MINUTES),
        )

        logger.info(
            f"OTP issued for user {user_id}",
            extra={"user_id": str(user_id), "otp_id": str(otp.id), "otp_type": otp_type.value}
        )
        return code

    def verify_otp(self, user_id: UUID, code: str, otp_type: Union[OTPType, str] = OTPType.LOGIN) -> VerificationResult:
        """
        Check a submitted code against the user's live code of this type.

        Args:
            user_id: User the code was issued to
            code: Code as typed by the user
            otp_type: Flow the code is for

        Returns:
            VerificationResult: success, or a user-facing error message
        """
        otp_type = OTPType(otp_type)
        now = self.clock()
        max_attempts = self.config.OTP_MAX_ATTEMPTS
        log_extra = {"user_id": str(user_id), "otp_type": otp_type.value}

        otp = otp_crud.get_active(self.db, user_id, otp_type, now)
        if not otp:
            logger.info("OTP verification failed: no valid code", extra={**log_extra, "reason": "no_valid_otp"})
            return VerificationResult(success=False, error=NO_VALID_OTP_MESSAGE)

        if otp.attempts >= max_attempts:
            otp_crud.lock(self.db, otp.id)
            logger.warning("OTP locked: attempt cap already reached", extra={**log_extra, "reason": "max_attempts"})
            return VerificationResult(success=False, error=MAX_ATTEMPTS_MESSAGE)

        if not verify_otp_hash(code.strip(), otp.code_hash, self.config.JWT_SECRET):
            attempts = otp_crud.increment_attempts(self.db, otp.id)
            if attempts is None:
                # Consumed or locked by a concurrent request
                return VerificationResult(success=False, error=NO_VALID_OTP_MESSAGE)

            remaining = max_attempts - attempts
            if remaining <= 0:
                otp_crud.lock(self.db, otp.id)
                logger.warning("OTP locked after too many failed attempts", extra={**log_extra, "reason": "max_attempts"})
                return VerificationResult(success=False, error=MAX_ATTEMPTS_MESSAGE)

            logger.info("OTP verification failed: wrong code", extra={**log_extra, "reason": "invalid_code", "attempts": attempts})
            return VerificationResult(
                success=False,
                error=f"Invalid OTP code. {_plural(remaining, 'attempt')} remaining.",
            )

        if not otp_crud.consume(self.db, otp.id, now):
            return VerificationResult(success=False, error=NO_VALID_OTP_MESSAGE)

        logger.info("OTP verified", extra=log_extra)
        return VerificationResult(success=True)

    def cleanup_expired_otps(self) -> int:
        """
        Delete expired codes and codes used more than OTP_USED_RETENTION_HOURS ago.

        Intended for the periodic cleanup task, not per-request use.

        Returns:
            int: Number of codes deleted
        """
        now = self.clock()
        deleted = otp_crud.delete_stale(
            self.db,
            now=now,
            used_before=now - timedelta(hours=self.config.OTP_USED_RETENTION_HOURS),
        )
        logger.info(f"Cleaned up {deleted} expired OTP codes", extra={"deleted_count": deleted})
        return deleted
