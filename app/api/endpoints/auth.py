"""
Authentication endpoints for passwordless (email OTP) sign-in.

Implements short-lived JWT access tokens backed by server-side sessions:
- POST /request-otp: Email a one-time code (creates the account on first use)
- POST /verify-otp: Exchange a code for tokens (or verify an email address)
- POST /refresh: Rotate the refresh token and get a new access token
- POST /logout: Revoke the current session
- POST /logout-all: Revoke every session of the current user
- GET /me: Get current user profile
"""

import logging
from typing import Optional, Union
from fastapi import APIRouter, HTTPException, Depends, Request, Response, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.celery_utils import queue_task_safely
from app.core.deps import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    AuthContext,
    get_auth_context,
    get_current_user,
    get_otp_engine,
    get_rate_limiter,
    get_session_manager,
)
from app.core.otp import NO_VALID_OTP_MESSAGE, OTPEngine
from app.core.rate_limiter import RateLimiter, check_auth_ip_limit, get_client_ip
from app.core.sessions import SessionManager
from app.crud import user as user_crud
from app.models.otp_code import OTPType
from app.models.user import User
from app.schemas.auth import (
    AuthResponse,
    MessageResponse,
    RefreshTokenRequest,
    RequestOTPRequest,
    RequestOTPResponse,
    SafeUser,
    VerifyEmailResponse,
    VerifyOTPRequest,
)
from app.tasks.email_tasks import send_otp_email_task, send_welcome_email_task

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = logging.getLogger(__name__)


def _set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
        path="/",
    )
    response.set_cookie(
        key=REFRESH_TOKEN_COOKIE,
        value=refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
        path="/",
    )


def _clear_auth_cookies(response: Response) -> None:
    for key in (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE):
        response.delete_cookie(
            key=key,
            path="/",
            secure=settings.COOKIE_SECURE,
            httponly=True,
            samesite="strict",
        )


@router.post("/request-otp", response_model=RequestOTPResponse)
def request_otp(
    request: RequestOTPRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    otp_engine: OTPEngine = Depends(get_otp_engine),
    limiter: RateLimiter = Depends(get_rate_limiter)
):
    """
    Send a one-time code to an email address.

    Creates an active USER account the first time an address is seen.
    Enforces the per-IP throttle, then the per-user cooldown and hourly cap.
    """
    check_auth_ip_limit(limiter, get_client_ip(http_request), "request-otp")

    user, created = user_crud.get_or_create_by_email(db, request.email)
    if created:
        logger.info(f"New user created on first OTP request: {user.email}", extra={"user_id": str(user.id)})

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive. Please contact support."
        )

    result = otp_engine.request_otp(user.id, request.type)
    if not result.issued:
        decision = result.decision
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=decision.reason,
            headers={"Retry-After": str(decision.wait_seconds)}
        )

    sent_at = otp_engine.clock()

    # The plaintext code sits in the broker until a worker sends it; the
    # message is dropped once the code itself would have expired
    queued = queue_task_safely(
        send_otp_email_task,
        expires=settings.OTP_EXPIRY_MINUTES * 60,
        to_email=user.email,
        otp_code=result.code,
        expiry_minutes=settings.OTP_EXPIRY_MINUTES,
        otp_type=request.type.value,
        user_name=user.first_name
    )
    if not queued:
        # Don't fail the request - the user can ask again after the cooldown
        logger.error(f"Failed to queue OTP email for {user.email}", extra={"user_id": str(user.id)})

    return RequestOTPResponse(
        message="OTP sent to your email",
        otp_sent_at=sent_at,
        expires_in_minutes=settings.OTP_EXPIRY_MINUTES
    )


@router.post("/verify-otp", response_model=Union[AuthResponse, VerifyEmailResponse])
def verify_otp(
    request: VerifyOTPRequest,
    http_request: Request,
    response: Response,
    db: Session = Depends(get_db),
    otp_engine: OTPEngine = Depends(get_otp_engine),
    session_manager: SessionManager = Depends(get_session_manager),
    limiter: RateLimiter = Depends(get_rate_limiter)
):
    """
    Verify a one-time code.

    LOGIN and ACCOUNT_RECOVERY open a new session and return tokens (also set
    as HttpOnly cookies). ACCOUNT_RECOVERY first revokes every existing
    session. VERIFY_EMAIL only marks the address as verified.

    An unknown email is answered exactly like a missing code.
    """
    client_ip = get_client_ip(http_request)
    check_auth_ip_limit(limiter, client_ip, "verify-otp")

    user = user_crud.get_by_email(db, request.email)
    if not user:
        logger.info("OTP verification for unknown email", extra={"reason": "unknown_user"})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NO_VALID_OTP_MESSAGE
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive. Please contact support."
        )

    result = otp_engine.verify_otp(user.id, request.code, request.type)
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.error
        )

    if request.type == OTPType.VERIFY_EMAIL:
        user = user_crud.mark_email_verified(db, user)
        logger.info(f"Email verified: {user.email}", extra={"user_id": str(user.id)})
        return VerifyEmailResponse(
            message="Email verified successfully",
            user=SafeUser.model_validate(user)
        )

    if request.type == OTPType.ACCOUNT_RECOVERY:
        revoked = session_manager.invalidate_all_sessions(user.id)
        logger.info(
            f"Account recovery for {user.email}: revoked {revoked} sessions",
            extra={"user_id": str(user.id), "revoked_count": revoked}
        )

    first_login = user.last_login_at is None
    user = user_crud.record_login(db, user, otp_engine.clock())
    created = session_manager.create_session(
        user_id=user.id,
        email=user.email,
        role=user.role,
        user_agent=http_request.headers.get("user-agent"),
        ip_address=client_ip
    )

    _set_auth_cookies(response, created.access_token, created.refresh_token)
    logger.info(
        f"User logged in: {user.email}",
        extra={"user_id": str(user.id), "session_id": str(created.session.id), "otp_type": request.type.value}
    )

    if first_login:
        queued = queue_task_safely(
            send_welcome_email_task,
            to_email=user.email,
            user_name=user.first_name or user.email.split("@")[0]
        )
        if not queued:
            logger.error(f"Failed to queue welcome email for {user.email}", extra={"user_id": str(user.id)})

    return AuthResponse(
        access_token=created.access_token,
        refresh_token=created.refresh_token,
        expires_at=created.expires_at,
        user=SafeUser.model_validate(user)
    )


@router.post("/refresh", response_model=AuthResponse)
def refresh_token(
    http_request: Request,
    response: Response,
    request: Optional[RefreshTokenRequest] = None,
    session_manager: SessionManager = Depends(get_session_manager),
    limiter: RateLimiter = Depends(get_rate_limiter)
):
    """
    Rotate tokens using a refresh token from the body or the refresh_token cookie.

    The presented refresh token is retired; replaying it later fails (and
    revokes the session when reuse detection is enabled).
    """
    check_auth_ip_limit(limiter, get_client_ip(http_request), "refresh")

    token = (request.refresh_token if request else None) or http_request.cookies.get(REFRESH_TOKEN_COOKIE)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token required"
        )

    tokens = session_manager.refresh_tokens(token)
    if tokens is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token"
        )

    _set_auth_cookies(response, tokens.access_token, tokens.refresh_token)

    return AuthResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_at=tokens.expires_at
    )


@router.post("/logout", response_model=MessageResponse)
def logout(
    response: Response,
    context: AuthContext = Depends(get_auth_context),
    session_manager: SessionManager = Depends(get_session_manager)
):
    """
    Revoke the session behind the presented access token and clear auth cookies.
    """
    session_manager.invalidate_session(context.token.session_id)
    _clear_auth_cookies(response)

    logger.info(f"User logged out: {context.user.email}", extra={"user_id": str(context.user.id)})
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
def logout_all(
    response: Response,
    current_user: User = Depends(get_current_user),
    session_manager: SessionManager = Depends(get_session_manager)
):
    """
    Revoke every session of the current user, on all devices.
    """
    revoked = session_manager.invalidate_all_sessions(current_user.id)
    _clear_auth_cookies(response)

    return MessageResponse(message=f"Logged out of {revoked} session{'' if revoked == 1 else 's'}")


@router.get("/me", response_model=SafeUser)
def get_current_user_profile(
    current_user: User = Depends(get_current_user)
):
    """
    Get current authenticated user's profile.

    Accepts the access token from the Authorization header or the access_token cookie.
    """
    return current_user
