"""
Twilio SMS delivery over its REST API.

Delivery never raises: every call returns an SmsResult and failures are
logged. Callers decide what a failed send means for their request.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

import httpx

from khareedo.core.config import settings

logger = logging.getLogger(__name__)

OTP_TEMPLATES = {
    "registration": "Your OTP for Milke Khareedo registration is {otp}. This OTP is valid for {minutes} minutes. Do not share this OTP with anyone.",
    "forgot_password": "Your OTP for Milke Khareedo password reset is {otp}. This OTP is valid for {minutes} minutes. Do not share this OTP with anyone.",
    "login": "Your OTP for Milke Khareedo login is {otp}. This OTP is valid for {minutes} minutes. Do not share this OTP with anyone.",
}
DEFAULT_OTP_TEMPLATE = "Your OTP for Milke Khareedo is {otp}. This OTP is valid for {minutes} minutes. Do not share this OTP with anyone."

CREDENTIALS_TEMPLATE = (
    "Welcome to Milke Khareedo, {name}! Your {role} account is ready. "
    "Login email: {email} Password: {password}"
)


@dataclass
class SmsResult:
    success: bool
    message_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None


def generate_otp() -> str:
    """6-digit numeric code."""
    return str(secrets.randbelow(900000) + 100000)


class TwilioSmsClient:
    """Sends SMS through Twilio's Messages endpoint."""

    def __init__(self, account_sid: Optional[str] = None, auth_token: Optional[str] = None,
                 from_number: Optional[str] = None, timeout: float = 10.0):
        self.account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number or settings.TWILIO_PHONE_NUMBER
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def send_sms(self, to: str, body: str) -> SmsResult:
        if not self.configured:
            logger.error("Twilio credentials not configured, SMS not sent")
            return SmsResult(success=False, error="SMS provider not configured")

        url = f"{settings.TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    data={"To": to, "From": self.from_number, "Body": body},
                    auth=(self.account_sid, self.auth_token),
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Twilio rejected SMS to {to}: {e.response.status_code} {e.response.text[:200]}")
            return SmsResult(success=False, error=f"SMS provider returned {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Twilio request failed for {to}: {e}")
            return SmsResult(success=False, error=str(e))

        logger.info(f"SMS sent to {to}: sid={payload.get('sid')} status={payload.get('status')}")
        return SmsResult(success=True, message_id=payload.get("sid"), status=payload.get("status"))

    async def send_otp(self, phone_number: str, country_code: str, otp: str,
                       otp_type: str = "registration") -> SmsResult:
        template = OTP_TEMPLATES.get(otp_type, DEFAULT_OTP_TEMPLATE)
        body = template.format(otp=otp, minutes=settings.OTP_EXPIRY_MINUTES)
        return await self.send_sms(f"{country_code}{phone_number}", body)

    async def send_credentials(self, phone_number: str, country_code: str, name: str,
                               role: str, email: str, password: str) -> SmsResult:
        body = CREDENTIALS_TEMPLATE.format(name=name, role=role, email=email, password=password)
        return await self.send_sms(f"{country_code}{phone_number}", body)


_sms_client: Optional[TwilioSmsClient] = None


def get_sms_client() -> TwilioSmsClient:
    """FastAPI dependency returning the process-wide SMS client."""
    global _sms_client
    if _sms_client is None:
        _sms_client = TwilioSmsClient()
    return _sms_client
