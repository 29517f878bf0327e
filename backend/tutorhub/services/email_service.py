"""
Email delivery through the Resend HTTP API, plus the HTML bodies we send
"""
import html
import logging
from typing import List, Optional, Union

import requests

from ..config import settings
from .delivery import SendResult, is_retryable_status

logger = logging.getLogger(__name__)


class ResendEmailSender:
    provider = "resend"

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.from_email = from_email or settings.RESEND_FROM_EMAIL
        self.api_url = api_url or settings.RESEND_API_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.session = requests.Session()

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def send(self, to: Union[str, List[str]], subject: str, html_body: str) -> SendResult:
        """Send one email. Never raises for provider or network errors."""
        if not self.api_key:
            logger.warning("RESEND_API_KEY is not configured")
            return SendResult.failed("Email service not configured")

        payload = {
            "from": self.from_email,
            "to": to,
            "subject": subject,
            "html": html_body,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = self.session.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout:
            logger.error(f"Resend request timed out after {self.timeout}s")
            return SendResult.failed("Email API timeout", retryable=True)
        except requests.RequestException as e:
            logger.error(f"Resend request failed: {e}")
            return SendResult.failed(f"Email API unreachable: {e}", retryable=True)

        if not response.ok:
            try:
                error = response.json().get("message") or response.text
            except ValueError:
                error = response.text
            logger.error(f"Resend API error {response.status_code}: {error}")
            return SendResult.failed(
                f"Email API error: {error}",
                retryable=is_retryable_status(response.status_code)
            )

        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None
        return SendResult.ok(message_id)


def render_notification_email(title: str, recipient_name: str, message: str) -> str:
    return f"""
        <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
          <h2 style="color: #1E40AF;">{html.escape(title)}</h2>
          <p>Dear {html.escape(recipient_name or "")},</p>
          <div style="white-space: pre-line;">{html.escape(message)}</div>
        </div>
    """


def render_portal_link_email(full_name: str, center_name: str, portal_url: str, expires_in_days: int) -> str:
    url = html.escape(portal_url, quote=True)
    return f"""
        <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
          <h2 style="color: #1E40AF;">Portal Access Link</h2>
          <p>Hello {html.escape(full_name or "")},</p>
          <p>Your portal access link for {html.escape(center_name)} is ready:</p>
          <p style="margin: 20px 0;">
            <a href="{url}" style="background: #1E40AF; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">
              Access Portal
            </a>
          </p>
          <p style="color: #666; font-size: 14px;">This link expires in {expires_in_days} days.</p>
          <p style="color: #666; font-size: 14px;">If you didn't request this link, please ignore this email.</p>
        </div>
    """
