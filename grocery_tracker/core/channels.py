"""Outbound delivery channels: push (HTTP gateway) and email (SMTP).

Every send returns a ChannelResult instead of raising, so one channel's
failure never affects another. Sends are attempted once; a failed send is
reported to the caller and not retried. Missing configuration or a missing
recipient address is reported as a failed result with a reason.
"""

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

import httpx

from grocery_tracker.config import Settings
from grocery_tracker.core import users as users_core

PUSH = "push"
EMAIL = "email"


@dataclass(frozen=True)
class ChannelResult:
    channel: str
    ok: bool
    reason: Optional[str] = None


class ChannelSender:
    """Sends push notifications and emails for a user id.

    Contact details (push token, email address) are looked up from the users
    table at send time.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def push_configured(self) -> bool:
        return bool(self.settings.push_gateway_url)

    @property
    def email_configured(self) -> bool:
        return bool(self.settings.smtp_host)

    def send_push(self, user_id: int, title: str, body: str, metadata: Optional[dict] = None) -> ChannelResult:
        if not self.push_configured:
            return ChannelResult(PUSH, False, "push not configured")
        user = users_core.get(user_id)
        if user is None or not user.push_token:
            return ChannelResult(PUSH, False, "no push token")

        headers = {}
        if self.settings.push_api_key:
            headers["Authorization"] = f"Bearer {self.settings.push_api_key}"
        message = {
            "token": user.push_token,
            "notification": {"title": title, "body": body},
            "data": {k: str(v) for k, v in (metadata or {}).items()},
        }
        try:
            response = httpx.post(
                self.settings.push_gateway_url,
                json=message,
                headers=headers,
                timeout=self.settings.channel_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            return ChannelResult(PUSH, False, str(e) or type(e).__name__)
        return ChannelResult(PUSH, True)

    def send_email(self, user_id: int, subject: str, body: str) -> ChannelResult:
        if not self.email_configured:
            return ChannelResult(EMAIL, False, "email not configured")
        user = users_core.get(user_id)
        if user is None or not user.email:
            return ChannelResult(EMAIL, False, "no email address")

        s = self.settings
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = s.smtp_from or s.smtp_user or "grocery-tracker@localhost"
        msg["To"] = user.email
        msg.set_content(body)
        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.channel_timeout) as smtp:
                if s.smtp_starttls:
                    smtp.starttls()
                if s.smtp_user and s.smtp_password:
                    smtp.login(s.smtp_user, s.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            return ChannelResult(EMAIL, False, str(e) or type(e).__name__)
        return ChannelResult(EMAIL, True)
