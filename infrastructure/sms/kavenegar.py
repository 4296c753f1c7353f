"""Kavenegar implementation of SmsProvider.

Uses the Verify Lookup API (template-based OTP messages):
- async httpx via HttpClient
- injected SmsSettings instead of module-level env reads
- returns False on any failure; the caller decides what to do with it
"""

from config import SmsSettings
from infrastructure.http_client import HttpClient
from shared.logging import get_logger, mask_phone

log = get_logger(__name__)

_KAVENEGAR_LOOKUP_URL = "https://api.kavenegar.com/v1/{api_key}/verify/lookup.json"


def to_kavenegar_receptor(phone: str) -> str:
    """Convert ``+989XXXXXXXXX`` to the local ``09XXXXXXXXX`` receptor format."""
    if phone.startswith("+98"):
        return "0" + phone[3:]
    return phone


class KavenegarSmsProvider:
    def __init__(self, settings: SmsSettings, http_client: HttpClient) -> None:
        self._settings = settings
        self._http = http_client

    async def send_otp(self, phone: str, code: str) -> bool:
        if not self._settings.kavenegar_enabled:
            log.error("kavenegar_send_failed", reason="not_configured")
            return False

        params = {
            "receptor": to_kavenegar_receptor(phone),
            "token": code,
            "template": self._settings.kavenegar_template,
        }
        if self._settings.kavenegar_sender:
            params["sender"] = self._settings.kavenegar_sender

        url = _KAVENEGAR_LOOKUP_URL.format(api_key=self._settings.kavenegar_api_key)
        try:
            response = await self._http.post(url, data=params)
            if response.status_code == 200:
                log.info("otp_sms_sent", phone=mask_phone(phone))
                return True
            log.error(
                "otp_sms_failed",
                phone=mask_phone(phone),
                status_code=response.status_code,
                response=response.text[:200],
            )
            return False
        except Exception as e:
            log.error(
                "otp_sms_error",
                phone=mask_phone(phone),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
