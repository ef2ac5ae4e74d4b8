"""
FastAPI dependencies for authentication and authorization.

These dependencies wire the auth core into request handlers and protect
endpoints by resolving the calling user from an access token.
"""

from dataclasses import dataclass
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Callable, Optional

from app.core.config import settings
from app.core.database import get_db
from app.core.otp import OTPEngine
from app.core.rate_limiter import RateLimiter, rate_limiter
from app.core.sessions import SessionManager
from app.core.tokens import AccessTokenPayload, TokenService, parse_uuid
from app.crud import user as user_crud
from app.models.user import Role, User

ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"

# HTTP Bearer token scheme (Authorization: Bearer <token>); the cookie is the fallback
security = HTTPBearer(auto_error=False)


def get_token_service() -> TokenService:
    return TokenService.from_settings(settings)


def get_otp_engine(db: Session = Depends(get_db)) -> OTPEngine:
    return OTPEngine(db, config=settings)


def get_session_manager(
    db: Session = Depends(get_db),
    token_service: TokenService = Depends(get_token_service)
) -> SessionManager:
    return SessionManager(db, token_service=token_service, config=settings)


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


@dataclass
class AuthContext:
    """The authenticated caller: user row plus the verified token claims."""
    user: User
    token: AccessTokenPayload


async def get_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
    token_service: TokenService = Depends(get_token_service),
    session_manager: SessionManager = Depends(get_session_manager)
) -> AuthContext:
    """
    Resolve the caller from an access token.

    This dependency:
    1. Reads the Bearer token, falling back to the access_token cookie
    2. Verifies signature and expiry
    3. Checks that the session named by the token is still valid
    4. Fetches the user and ensures the account is active

    Raises:
        HTTPException 401: Missing/invalid token, dead session, unknown user
        HTTPException 403: User account is inactive
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token = credentials.credentials if credentials else request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        raise credentials_exception

    payload = token_service.verify_access_token(token)
    if payload is None:
        raise credentials_exception

    session_status = session_manager.validate_session(payload.session_id)
    if session_status is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or invalidated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = parse_uuid(payload.user_id)
    if user_id is None or user_id != session_status.user_id:
        raise credentials_exception

    user = user_crud.get_by_id(db, user_id)
    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    return AuthContext(user=user, token=payload)


async def get_current_user(context: AuthContext = Depends(get_auth_context)) -> User:
    """Get the authenticated, active user for the request."""
    return context.user


def require_roles(*roles: Role) -> Callable:
    """
    Build a dependency that admits only users holding one of `roles`.

    The role is read from the verified access token, which is minted from
    the user row at login and on every refresh.

    Example:
        @router.get("/admin/users")
        def list_users(admin: User = Depends(require_admin)):
            ...

    Raises:
        HTTPException 403: Authenticated, but the role is not allowed
    """
    allowed = {Role(role).value for role in roles}

    async def role_checker(context: AuthContext = Depends(get_auth_context)) -> User:
        if context.token.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this action"
            )
        return context.user

    return role_checker


require_admin = require_roles(Role.ADMIN, Role.SUPER_ADMIN)
require_super_admin = require_roles(Role.SUPER_ADMIN)
