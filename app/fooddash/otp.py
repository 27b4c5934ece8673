"""
SMS one-time codes through Twilio Verify.

Twilio owns code generation, expiry and attempt counting; we only normalise the
phone number and relay send/check calls.
"""
from __future__ import annotations

import base64
import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

COUNTRY_CODE = "242"
DEV_OTP_CODE = "123456"
_NATIONAL = re.compile(r"^0[456]\d{7}$")
_NATIONAL_WITHOUT_ZERO = re.compile(r"^[456]\d{7}$")
_NON_DIGITS = re.compile(r"\D+")


class OtpError(RuntimeError):
    pass


def normalize_congo_mobile(raw: str | None) -> str:
    """
    '06 123 45 67', '+242 061234567', '(242) 61234567' -> '+242061234567'.
    Raises ValueError for anything that is not a Congo mobile number.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    national = digits[len(COUNTRY_CODE):] if digits.startswith(COUNTRY_CODE) else digits
    if _NATIONAL_WITHOUT_ZERO.match(national):
        national = "0" + national
    if not _NATIONAL.match(national):
        raise ValueError("Invalid mobile number (04xxxxxxx, 05xxxxxxx, 06xxxxxxx).")
    return f"+{COUNTRY_CODE}{national}"


@dataclass(frozen=True)
class TwilioVerifyClient:
    account_sid: str
    auth_token: str
    service_sid: str
    base_url: str = "https://verify.twilio.com/v2"
    timeout_seconds: int = 20

    def _auth_header(self) -> str:
        token = base64.b64encode(f"{self.account_sid}:{self.auth_token}".encode("utf-8")).decode("ascii")
        return f"Basic {token}"

    def _post(self, path: str, fields: dict[str, str]) -> dict[str, Any]:
        if not (self.account_sid and self.auth_token and self.service_sid):
            raise OtpError("SMS verification is not configured.")
        url = f"{self.base_url.rstrip('/')}/Services/{self.service_sid}{path}"
        body = urllib.parse.urlencode(fields).encode("utf-8")
        req = urllib.request.Request(url, data=body, method="POST")
        req.add_header("Authorization", self._auth_header())
        req.add_header("Content-Type", "application/x-www-form-urlencoded")
        req.add_header("Accept", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            try:
                detail = json.loads(e.read().decode("utf-8", errors="ignore") or "{}").get("message") or ""
            except (OSError, ValueError):
                detail = ""
            logger.warning("Twilio Verify request failed status=%s", e.code)
            raise OtpError(detail or f"HTTP {e.code} from SMS provider.") from e
        except (urllib.error.URLError, TimeoutError) as e:
            logger.warning("Twilio Verify unreachable: %s", e)
            raise OtpError("SMS provider unreachable.") from e
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise OtpError("Invalid JSON from SMS provider.") from e

    def send(self, phone_e164: str) -> str:
        data = self._post("/Verifications", {"To": phone_e164, "Channel": "sms"})
        return str(data.get("status") or "pending")

    def check(self, phone_e164: str, code: str) -> bool:
        data = self._post("/VerificationCheck", {"To": phone_e164, "Code": code})
        return data.get("status") == "approved"


def verify_client_from_config(config: dict) -> TwilioVerifyClient:
    return TwilioVerifyClient(
        account_sid=(config.get("TWILIO_ACCOUNT_SID") or "").strip(),
        auth_token=(config.get("TWILIO_AUTH_TOKEN") or "").strip(),
        service_sid=(config.get("TWILIO_VERIFY_SERVICE_SID") or "").strip(),
    )


def send_code(config: dict, raw_phone: str | None) -> dict[str, Any]:
    phone = normalize_congo_mobile(raw_phone)
    if config.get("OTP_DEV_MODE"):
        logger.info("OTP dev mode: not sending SMS to %s", phone)
        return {"phone": phone, "status": "pending", "dev_mode": True}
    status = verify_client_from_config(config).send(phone)
    return {"phone": phone, "status": status, "dev_mode": False}


def check_code(config: dict, raw_phone: str | None, code: str | None) -> tuple[str, bool]:
    """Returns (normalised phone, verified)."""
    phone = normalize_congo_mobile(raw_phone)
    code = (code or "").strip()
    if not code:
        raise ValueError("Code is required.")
    if config.get("OTP_DEV_MODE") and code == DEV_OTP_CODE:
        return phone, True
    return phone, verify_client_from_config(config).check(phone, code)
