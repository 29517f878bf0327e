"""
SMS delivery through Clickatell's HTTP API
"""
import logging
from typing import Optional

import requests

from ..config import settings
from ..utils.validators import format_phone_to_27
from .delivery import SendResult, is_retryable_status

logger = logging.getLogger(__name__)

SMS_MAX_LENGTH = 160


def truncate_sms(message: str) -> str:
    """Single SMS segment: 160 chars, ellipsis when cut"""
    if len(message) > SMS_MAX_LENGTH:
        return message[:SMS_MAX_LENGTH - 3] + "..."
    return message


class ClickatellSmsSender:
    provider = "clickatell"

    def __init__(self, api_key: Optional[str] = None, api_url: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key if api_key is not None else settings.CLICKATELL_API_KEY
        self.api_url = api_url or settings.CLICKATELL_API_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.session = requests.Session()

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def send(self, to: str, message: str) -> SendResult:
        """Send one SMS. Never raises for provider or network errors."""
        if not self.api_key:
            logger.warning("CLICKATELL_API_KEY is not configured")
            return SendResult.failed("SMS service not configured")

        params = {
            "apiKey": self.api_key,
            "to": format_phone_to_27(to),
            "content": truncate_sms(message),
        }

        try:
            response = self.session.get(self.api_url, params=params, timeout=self.timeout)
        except requests.Timeout:
            logger.error(f"Clickatell request timed out after {self.timeout}s")
            return SendResult.failed("SMS API timeout", retryable=True)
        except requests.RequestException as e:
            logger.error(f"Clickatell request failed: {e}")
            return SendResult.failed(f"SMS API unreachable: {e}", retryable=True)

        response_text = response.text.strip()

        if not response.ok:
            logger.error(f"Clickatell API error {response.status_code}: {response_text}")
            return SendResult.failed(
                f"SMS API error: {response.status_code}",
                retryable=is_retryable_status(response.status_code)
            )

        # Legacy plain-text replies: "ID: xxx" or "ERR: xxx"
        if response_text.startswith("ID:"):
            return SendResult.ok(response_text[3:].strip())
        if response_text.startswith("ERR:"):
            return SendResult.failed(f"Clickatell error: {response_text[4:].strip()}")

        try:
            data = response.json()
        except ValueError:
            return SendResult.ok()

        messages = data.get("messages") or []
        if messages and messages[0].get("apiMessageId"):
            return SendResult.ok(messages[0]["apiMessageId"])
        if data.get("error"):
            return SendResult.failed(str(data["error"]))

        return SendResult.ok()


def build_center_sms(center_name: str, message: str) -> str:
    return f"{center_name}: {message}"
