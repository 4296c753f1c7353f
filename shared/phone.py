"""
Phone number normalization for the Iranian numbering plan.

Only one plan is supported. Canonical form is E.164 ``+989XXXXXXXXX``.
Accepted inputs (spaces and dashes ignored):

- ``+989121234567``
- ``00989121234567``
- ``989121234567``
- ``09121234567``
- ``9121234567``
"""

from __future__ import annotations

import re

_CANONICAL_RE = re.compile(r"\+989[0-9]{9}")
_SEPARATORS_RE = re.compile(r"[\s-]")


def is_canonical_phone(phone: str) -> bool:
    """Return True if *phone* is already ``+989XXXXXXXXX``."""
    return bool(phone) and bool(_CANONICAL_RE.fullmatch(phone))


def normalize_phone(raw: str) -> str:
    """Normalize *raw* to canonical E.164.

    Raises:
        ValueError: when the input cannot be mapped to a valid number.
    """
    if not raw or not isinstance(raw, str):
        raise ValueError("Invalid phone input")

    phone = _SEPARATORS_RE.sub("", raw.strip())

    if phone.startswith("0098"):
        phone = "+98" + phone[4:]
    elif phone.startswith("98"):
        phone = "+98" + phone[2:]
    elif phone.startswith("09"):
        phone = "+98" + phone[1:]
    elif phone.startswith("9") and len(phone) == 10:
        phone = "+98" + phone
    elif not phone.startswith("+98"):
        raise ValueError("Invalid phone format")

    if not is_canonical_phone(phone):
        raise ValueError("Invalid Iranian phone number format")
    return phone
