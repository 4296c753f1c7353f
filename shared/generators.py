"""
Random code and token generators.

Every source of randomness used by the auth core goes through a
``RandomSource`` so tests can substitute deterministic values:

- OTP codes
- OTP expiry jitter
- refresh-token TTL jitter
- refresh-token values

``SecureRandomSource`` is the production implementation and draws
exclusively from the ``secrets`` module.
"""

from __future__ import annotations

import secrets
import string
from typing import Protocol


def generate_otp_code(length: int = 6) -> str:
    """Generate a cryptographically secure numeric OTP.

    Args:
        length: Number of digits (default 6).

    Returns:
        String of random decimal digits (leading zeros allowed).
    """
    return "".join(secrets.choice(string.digits) for _ in range(length))


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure URL-safe random token.

    Args:
        length: Number of random bytes before base64 encoding (default 32).
            The resulting string will be longer than *length* characters.

    Returns:
        URL-safe base64-encoded token string.
    """
    return secrets.token_urlsafe(length)


class RandomSource(Protocol):
    def otp_code(self, length: int) -> str: ...

    def randint(self, low: int, high: int) -> int: ...

    def secure_token(self, nbytes: int) -> str: ...


class SecureRandomSource:
    """``RandomSource`` backed by the OS CSPRNG."""

    def otp_code(self, length: int) -> str:
        return generate_otp_code(length)

    def randint(self, low: int, high: int) -> int:
        """Uniform integer in ``[low, high]`` inclusive."""
        if high < low:
            raise ValueError(f"empty range [{low}, {high}]")
        return low + secrets.randbelow(high - low + 1)

    def secure_token(self, nbytes: int) -> str:
        return generate_secure_token(nbytes)
