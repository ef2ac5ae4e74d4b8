"""
Unit tests for security primitives.

Tests:
- OTP generation and hashing
- Constant-time comparison
- Refresh token generation and hashing
"""

import pytest

from app.core import security
from app.core.security import (
    constant_time_equals,
    generate_otp_code,
    generate_refresh_token,
    hash_otp,
    hash_token,
    verify_otp_hash,
)


class TestOTPCodes:
    """Test one-time code generation and hashing"""

    @pytest.mark.parametrize("length", [4, 6, 8, 10])
    def test_fixed_width_digits(self, length):
        for _ in range(50):
            code = generate_otp_code(length)
            assert len(code) == length
            assert code.isdigit()

    def test_zero_padding(self, monkeypatch):
        monkeypatch.setattr(security.secrets, "randbelow", lambda upper: 4219)

        assert generate_otp_code(6) == "004219"

    def test_draws_from_full_range(self, monkeypatch):
        bounds = []

        def fake_randbelow(upper):
            bounds.append(upper)
            return upper - 1

        monkeypatch.setattr(security.secrets, "randbelow", fake_randbelow)

        assert generate_otp_code(6) == "999999"
        assert bounds == [10 ** 6]

    def test_hash_is_sha256_hex_and_peppered(self):
        digest = hash_otp("482913", "secret-a")

        assert len(digest) == 64
        assert digest == hash_otp("482913", "secret-a")
        assert digest != hash_otp("482913", "secret-b")
        assert digest != hash_otp("482914", "secret-a")

    def test_verify_otp_hash(self):
        stored = hash_otp("482913", "pepper")

        assert verify_otp_hash("482913", stored, "pepper") is True
        assert verify_otp_hash("000000", stored, "pepper") is False
        assert verify_otp_hash("482913", stored, "other-pepper") is False

    def test_verify_against_corrupt_hash(self):
        assert verify_otp_hash("482913", "short", "pepper") is False
        assert verify_otp_hash("482913", "", "pepper") is False


class TestConstantTimeEquals:
    """Test timing-safe comparison"""

    def test_equal(self):
        assert constant_time_equals("abc123", "abc123") is True

    def test_same_length_different(self):
        assert constant_time_equals("abc123", "abc124") is False

    def test_length_mismatch(self):
        assert constant_time_equals("abc", "abcd") is False
        assert constant_time_equals("", "a") is False

    def test_non_ascii(self):
        assert constant_time_equals("pässwörd", "pässwörd") is True
        assert constant_time_equals("pässwörd", "passwörd") is False


class TestRefreshTokens:
    """Test opaque refresh token helpers"""

    def test_refresh_token_is_64_random_bytes_hex(self):
        token = generate_refresh_token()

        assert len(token) == 128
        assert bytes.fromhex(token)

    def test_hash_token(self):
        token = generate_refresh_token()

        assert hash_token(token) == hash_token(token)
        assert len(hash_token(token)) == 64
        assert hash_token(token) != hash_token(generate_refresh_token())
