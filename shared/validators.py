"""
Input validators — framework-agnostic, pure functions.

Used by the request DTOs; the service layer assumes inputs already passed
through them.
"""

from __future__ import annotations

import re

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

_PASSWORD_ALLOWED_RE = re.compile(r"""^[a-zA-Z0-9!@#$%^&*()_+\-=\[\]{}|;':",.<>?/\\`~]+$""")
_OTP_CODE_RE = re.compile(r"[0-9]{6}")


def password_policy_violation(password: str) -> str | None:
    """Return the first rule *password* breaks, or ``None`` if it is acceptable.

    Rules:
    - 8 to 128 characters
    - At least one English letter
    - At least one digit
    - At least one special character
    - Only English letters, digits and ASCII special characters
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
    if len(password) > PASSWORD_MAX_LENGTH:
        return f"Password must be at most {PASSWORD_MAX_LENGTH} characters"
    if not re.search(r"[a-zA-Z]", password):
        return "Password must contain at least one English letter"
    if not re.search(r"[0-9]", password):
        return "Password must contain at least one English digit"
    if not re.search(r"[^a-zA-Z0-9]", password):
        return "Password must contain at least one special character"
    if not _PASSWORD_ALLOWED_RE.fullmatch(password):
        return (
            "Password must contain only English letters, English digits, "
            "and allowed special characters"
        )
    return None


def validate_otp_code(code: str) -> bool:
    """Return True if *code* is exactly six ASCII digits."""
    return bool(_OTP_CODE_RE.fullmatch(code))
