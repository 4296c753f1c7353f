"""SmsProvider protocol — the OTP service depends on this, not the concrete implementation."""

from typing import Protocol


class SmsProvider(Protocol):
    async def send_otp(self, phone: str, code: str) -> bool: ...
