"""
Session manager: server-side sessions behind the issued tokens.

Every access token carries the ID of a session row (`sid`). A token is only
honoured while that row is valid and unexpired, which is what makes logout
and revoke-all effective before the access token itself expires.

Refresh tokens are single use. Each refresh rotates the stored hash; the
retired hash is kept so a replay of an old token can be detected and the
session revoked.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID
from sqlalchemy.orm import Session

from app.core.config import Settings, settings
from app.core.logging_config import get_logger
from app.core.timeutils import Clock, ensure_utc, utc_now
from app.core.tokens import TokenPair, TokenService, parse_uuid
from app.crud import user as user_crud
from app.crud import user_session as session_crud
from app.models.user_session import UserSession

logger = get_logger(__name__)


@dataclass
class CreatedSession:
    """A new session plus the tokens issued for it."""
    session: UserSession
    access_token: str
    refresh_token: str
    expires_at: datetime


@dataclass
class SessionStatus:
    user_id: UUID
    is_valid: bool


class SessionManager:
    """Creates, validates, rotates, and revokes user sessions."""

    def __init__(
        self,
        db: Session,
        token_service: Optional[TokenService] = None,
        config: Settings = settings,
        clock: Clock = utc_now
    ):
        self.db = db
        self.config = config
        self.clock = clock
        self.token_service = token_service or TokenService.from_settings(config, clock=clock)

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(days=self.config.REFRESH_TOKEN_EXPIRE_DAYS)

    def create_session(
        self,
        user_id: UUID,
        email: str,
        role: Any,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> CreatedSession:
        """
        Open a session and issue its first token pair.

        The session ID is generated up front and embedded in the access
        token, so the row is written once with its final tokens.

        Args:
            user_id: Owning user
            email: User email (access-token claim)
            role: User role (access-token claim)
            user_agent: Client user agent
            ip_address: Client IP address

        Returns:
            CreatedSession: Stored session and plaintext tokens
        """
        now = self.clock()
        session_id = uuid.uuid4()

        tokens = self.token_service.generate_tokens(user_id, email, role, session_id)
        session = session_crud.create(
            self.db,
            session_id=session_id,
            user_id=user_id,
            access_token=tokens.access_token,
            refresh_token_hash=TokenService.hash_refresh_token(tokens.refresh_token),
            created_at=now,
            expires_at=now + self.session_ttl,
            user_agent=user_agent,
            ip_address=ip_address,
        )

        logger.info(
            f"Session created for user {user_id}",
            extra={"user_id": str(user_id), "session_id": str(session_id)}
        )
        return CreatedSession(
            session=session,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
        )

    def validate_session(self, session_id: Any) -> Optional[SessionStatus]:
        """
        Look up a session and report whether it is still usable.

        Returns:
            SessionStatus for a valid, unexpired session; None otherwise
            (unknown, revoked, expired, or a malformed ID)
        """
        parsed_id = parse_uuid(session_id)
        if parsed_id is None:
            return None

        session = session_crud.get_by_id(self.db, parsed_id)
        if not session or not session.is_valid:
            return None

        if ensure_utc(session.expires_at) <= self.clock():
            return None

        return SessionStatus(user_id=session.user_id, is_valid=True)

    def refresh_tokens(self, refresh_token: Optional[str]) -> Optional[TokenPair]:
        """
        Exchange a refresh token for a new token pair.

        The presented token stops working once this call succeeds. The
        session keeps its original expiry.

        Returns:
            TokenPair on success; None if the token is unknown, retired,
            belongs to an expired or revoked session, or the user is gone
            or deactivated
        """
        if not refresh_token:
            return None

        now = self.clock()
        presented_hash = TokenService.hash_refresh_token(refresh_token)

        session = session_crud.get_active_by_refresh_hash(self.db, presented_hash, now)
        if not session:
            self._handle_retired_refresh_token(presented_hash, now)
            return None

        user = user_crud.get_by_id(self.db, session.user_id)
        if not user or not user.is_active:
            logger.info(
                "Refresh refused: user missing or inactive",
                extra={"session_id": str(session.id), "user_id": str(session.user_id)}
            )
            return None

        tokens = self.token_service.generate_tokens(user.id, user.email, user.role, session.id)
        rotated = session_crud.rotate(
            self.db,
            session_id=session.id,
            expected_refresh_token_hash=presented_hash,
            access_token=tokens.access_token,
            refresh_token_hash=TokenService.hash_refresh_token(tokens.refresh_token),
            now=now,
        )
        if not rotated:
            logger.warning(
                "Refresh refused: token rotated by a concurrent request",
                extra={"session_id": str(session.id), "user_id": str(user.id)}
            )
            return None

        logger.info("Session tokens rotated", extra={"session_id": str(session.id), "user_id": str(user.id)})
        return tokens

    def _handle_retired_refresh_token(self, presented_hash: str, now: datetime) -> None:
        if not self.config.REFRESH_TOKEN_REUSE_REVOKES_SESSION:
            return

        session = session_crud.get_by_previous_refresh_hash(self.db, presented_hash)
        if session and session.is_valid:
            session_crud.invalidate(self.db, session.id, now)
            logger.warning(
                "Refresh token reuse detected, session revoked",
                extra={"session_id": str(session.id), "user_id": str(session.user_id)}
            )

    def invalidate_session(self, session_id: Any) -> bool:
        """
        Revoke one session (logout). Idempotent.

        Returns:
            bool: True if a valid session was revoked by this call
        """
        parsed_id = parse_uuid(session_id)
        if parsed_id is None:
            return False

        revoked = session_crud.invalidate(self.db, parsed_id, self.clock())
        if revoked:
            logger.info("Session invalidated", extra={"session_id": str(parsed_id)})
        return revoked

    def invalidate_all_sessions(self, user_id: UUID) -> int:
        """
        Revoke every session of a user (logout everywhere).

        Returns:
            int: Number of sessions revoked
        """
        revoked = session_crud.invalidate_all_for_user(self.db, user_id, self.clock())
        logger.info(
            f"Invalidated {revoked} sessions for user {user_id}",
            extra={"user_id": str(user_id), "revoked_count": revoked}
        )
        return revoked

    def cleanup_expired_sessions(self) -> int:
        """
        Delete expired and revoked sessions.

        Returns:
            int: Number of sessions deleted
        """
        deleted = session_crud.delete_expired_or_invalid(self.db, self.clock())
        logger.info(f"Cleaned up {deleted} expired sessions", extra={"deleted_count": deleted})
        return deleted
