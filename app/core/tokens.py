"""
Token service for access and refresh tokens.

- Access token: signed JWT (HMAC), 15 minutes by default, verified statelessly
- Refresh token: opaque random string, returned once, stored only as a hash

The service owns no state; it is a function of the secret, the payload, and
the clock.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID
from jose import JWTError, jwt

from app.core.config import SUPPORTED_JWT_ALGORITHMS, Settings, settings
from app.core.exceptions import AuthConfigurationError
from app.core.logging_config import get_logger
from app.core.security import generate_refresh_token, hash_token
from app.core.timeutils import Clock, utc_now

logger = get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"
REQUIRED_CLAIMS = ("sub", "email", "role", "sid", "iat", "exp")


@dataclass
class TokenPair:
    """Freshly minted tokens. `expires_at` is the access-token expiry."""
    access_token: str
    refresh_token: str
    expires_at: datetime


@dataclass
class AccessTokenPayload:
    """Claims of a verified access token."""
    user_id: str
    email: str
    role: str
    session_id: str
    issued_at: datetime
    expires_at: datetime


class TokenService:
    """
    Mints and verifies tokens.

    Raises AuthConfigurationError on construction when the secret is missing
    or the algorithm is not an HMAC algorithm; there is no insecure fallback.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        access_token_ttl: timedelta = timedelta(minutes=15),
        clock: Clock = utc_now
    ):
        if not secret or not secret.strip():
            raise AuthConfigurationError("JWT signing secret is not configured")
        if algorithm not in SUPPORTED_JWT_ALGORITHMS:
            raise AuthConfigurationError(f"Unsupported JWT algorithm: {algorithm}")

        self._secret = secret
        self.algorithm = algorithm
        self.access_token_ttl = access_token_ttl
        self.clock = clock

    @classmethod
    def from_settings(cls, config: Settings = settings, clock: Clock = utc_now) -> "TokenService":
        return cls(
            secret=config.JWT_SECRET,
            algorithm=config.JWT_ALGORITHM,
            access_token_ttl=timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES),
            clock=clock,
        )

    def generate_tokens(self, user_id: Any, email: str, role: Any, session_id: Any) -> TokenPair:
        """
        Create an access token bound to a session plus a new refresh token.

        Args:
            user_id: User ID (UUID or str)
            email: User email
            role: Role enum member or role name
            session_id: ID of the session the tokens belong to

        Returns:
            TokenPair: access token, plaintext refresh token, access-token expiry
        """
        issued_at = int(self.clock().timestamp())
        expires_at = issued_at + int(self.access_token_ttl.total_seconds())

        claims = {
            "sub": str(user_id),
            "email": email,
            "role": getattr(role, "value", role),
            "sid": str(session_id),
            "type": ACCESS_TOKEN_TYPE,
            "iat": issued_at,
            "exp": expires_at,
        }
        access_token = jwt.encode(claims, self._secret, algorithm=self.algorithm)

        return TokenPair(
            access_token=access_token,
            refresh_token=generate_refresh_token(),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )

    def verify_access_token(self, token: Optional[str]) -> Optional[AccessTokenPayload]:
        """
        Verify signature, algorithm, and expiry of an access token.

        Never raises: every failure returns None. The reason is logged at
        debug level only.

        Returns:
            AccessTokenPayload or None
        """
        if not token:
            return None

        try:
            # Expiry is checked below against the injected clock
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except (JWTError, ValueError, TypeError) as e:
            logger.debug(f"Invalid access token: {e}")
            return None

        if claims.get("type") != ACCESS_TOKEN_TYPE:
            logger.debug("Invalid access token: wrong token type")
            return None

        missing = [claim for claim in REQUIRED_CLAIMS if claims.get(claim) in (None, "")]
        if missing:
            logger.debug(f"Invalid access token: missing claims {missing}")
            return None

        exp = claims["exp"]
        iat = claims["iat"]
        if not isinstance(exp, (int, float)) or not isinstance(iat, (int, float)):
            logger.debug("Invalid access token: non-numeric iat/exp")
            return None

        if self.clock().timestamp() > exp:
            logger.debug("Access token expired")
            return None

        return AccessTokenPayload(
            user_id=claims["sub"],
            email=claims["email"],
            role=claims["role"],
            session_id=claims["sid"],
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    @staticmethod
    def hash_refresh_token(refresh_token: str) -> str:
        """Hash under which a refresh token is stored and looked up."""
        return hash_token(refresh_token)


def parse_uuid(value: Any) -> Optional[UUID]:
    """Parse a UUID from a token claim; None if it is not one."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (ValueError, TypeError):
        return None
