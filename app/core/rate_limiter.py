"""
Redis-based rate limiting for the auth endpoints.

Throttles requests per client IP, independent of the per-user OTP cooldown
and hourly cap enforced by the OTP engine.
"""

import redis
from typing import Optional
from fastapi import HTTPException, Request, status

from app.core.config import settings
from app.core.logging_config import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Redis-based fixed-window rate limiter.

    Counts requests per key in a window that starts at the first request and
    expires automatically. Fails open when Redis is unreachable.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        """Initialize Redis connection (lazy; nothing connects until first use)"""
        self.redis_client = redis_client or redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            decode_responses=True,
            socket_timeout=1,
            socket_connect_timeout=1
        )

    def check_rate_limit(
        self,
        key: str,
        max_requests: int,
        window_seconds: int,
        error_message: str = "Rate limit exceeded"
    ) -> None:
        """
        Check if a request is within rate limits.

        Args:
            key: Unique identifier for this rate limit (e.g., "auth:request-otp:203.0.113.7")
            max_requests: Maximum number of requests allowed
            window_seconds: Time window in seconds
            error_message: Custom error message if rate limit exceeded

        Raises:
            HTTPException: 429 Too Many Requests if rate limit exceeded
        """
        try:
            # MULTI/EXEC: the counter never exists without a TTL
            pipe = self.redis_client.pipeline()
            pipe.set(key, 0, ex=window_seconds, nx=True)
            pipe.incr(key)
            _, count = pipe.execute()

            if count > max_requests:
                ttl = self.redis_client.ttl(key)
                retry_after = ttl if ttl and ttl > 0 else window_seconds
                logger.warning(f"Rate limit exceeded for {key}", extra={"rate_limit_key": key})
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail=f"{error_message}. Try again in {retry_after} seconds.",
                    headers={"Retry-After": str(retry_after)}
                )

        except redis.RedisError as e:
            # If Redis is down, log error but don't block the request
            logger.error(f"Redis rate limiter error: {e}")

    def reset_limit(self, key: str) -> None:
        """
        Reset the rate limit for a key.

        Args:
            key: Rate limit key to reset
        """
        try:
            self.redis_client.delete(key)
        except redis.RedisError as e:
            logger.error(f"Redis reset error: {e}")


# Singleton instance
rate_limiter = RateLimiter()


def check_auth_ip_limit(limiter: RateLimiter, ip_address: str, endpoint: str) -> None:
    """
    Rate limit for unauthenticated auth endpoints, per client IP.

    Limit: AUTH_IP_RATE_LIMIT_MAX requests per AUTH_IP_RATE_LIMIT_WINDOW_SECONDS.

    Raises:
        HTTPException: 429 if rate limit exceeded
    """
    limiter.check_rate_limit(
        key=f"auth:{endpoint}:{ip_address}",
        max_requests=settings.AUTH_IP_RATE_LIMIT_MAX,
        window_seconds=settings.AUTH_IP_RATE_LIMIT_WINDOW_SECONDS,
        error_message="Too many requests from your IP address"
    )


def get_client_ip(request: Request) -> str:
    """
    Extract the client's IP address from the request.

    Handles X-Forwarded-For header for proxied requests.

    Args:
        request: FastAPI request object

    Returns:
        Client IP address as string
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first (client IP)
        return forwarded_for.split(",")[0].strip()

    return request.client.host if request.client else "unknown"
