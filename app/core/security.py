"""
Security primitives for the passwordless auth core.

One-time codes are generated from the OS CSPRNG and stored only as a
peppered SHA-256 digest. Refresh tokens are opaque random strings stored
only as a SHA-256 digest. Secret material is always compared in constant
time.
"""

import hashlib
import hmac
import secrets


REFRESH_TOKEN_BYTES = 64


def generate_otp_code(length: int = 6) -> str:
    """
    Generate a numeric one-time code.

    Uses secrets.randbelow so every value in [0, 10**length) is equally
    likely (no modulo bias), then zero-pads to a fixed width.

    Args:
        length: Number of digits

    Returns:
        str: Zero-padded numeric code (e.g., "004219")
    """
    return str(secrets.randbelow(10 ** length)).zfill(length)


def hash_otp(code: str, secret: str) -> str:
    """Return the hex SHA-256 digest of the code followed by the server secret."""
    return hashlib.sha256((code + secret).encode("utf-8")).hexdigest()


def constant_time_equals(left: str, right: str) -> bool:
    """
    Compare two secret strings without leaking where they differ.

    A length mismatch still performs a full comparison (against itself)
    so both branches cost the same.
    """
    left_bytes = left.encode("utf-8")
    right_bytes = right.encode("utf-8")
    if len(left_bytes) != len(right_bytes):
        hmac.compare_digest(left_bytes, left_bytes)
        return False
    return hmac.compare_digest(left_bytes, right_bytes)


def verify_otp_hash(code: str, stored_hash: str, secret: str) -> bool:
    """Check a submitted code against the stored digest."""
    return constant_time_equals(hash_otp(code, secret), stored_hash)


def generate_refresh_token() -> str:
    """Generate an opaque refresh token (64 random bytes, hex encoded)."""
    return secrets.token_hex(REFRESH_TOKEN_BYTES)


def hash_token(token: str) -> str:
    """
    Hash a high-entropy token for storage.

    Refresh tokens carry 512 bits of randomness, so an unsalted SHA-256 is
    enough and keeps lookups by hash possible.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
