"""Development SmsProvider that writes the OTP to the log instead of sending it.

Selected automatically when Kavenegar is not configured. Never enabled in
production (see app.create_app).
"""

from shared.logging import get_logger

log = get_logger(__name__)


class ConsoleSmsProvider:
    async def send_otp(self, phone: str, code: str) -> bool:
        # Plain phone and code on purpose: this is the developer's inbox.
        log.warning("dev_sms_otp", phone_number=phone, otp=code)
        return True
