"""
Outbound e-mail for OTP delivery: SMTP relay and an in-memory outbox for tests.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Optional, Protocol

from bgaze.errors import DeliveryFailed

logger = logging.getLogger(__name__)

OTP_SUBJECT = "Your One-Time Passcode | BGaze Monitoring"

_OTP_TEXT = """Hi there,

You are receiving this e-mail because you attempted to sign in to the
BGaze Monitoring research-study app.

Your one-time passcode is: {code}

The passcode expires in {minutes} minutes. If you did not request it,
you can ignore this message.

Braingaze
"""

_OTP_HTML = """<!doctype html>
<html>
  <body style="margin:0;padding:24px;background:#f5f7fa;font-family:Arial,Helvetica,sans-serif;">
    <table width="100%" cellpadding="0" cellspacing="0" style="max-width:600px;margin:auto;background:#ffffff;border-radius:8px;">
      <tr>
        <td style="background:#1e3a8a;padding:16px 24px;text-align:center;color:#ffffff;font-size:24px;font-weight:bold;">
          BGaze&nbsp;Monitoring &middot; One-Time Passcode
        </td>
      </tr>
      <tr>
        <td style="padding:24px;color:#444;font-size:16px;line-height:1.5;">
          <p>Hi there,</p>
          <p>You are receiving this e-mail because you attempted to sign in to the
          <strong>BGaze Monitoring</strong> research-study app.</p>
          <div style="margin:32px 0;text-align:center;">
            <span style="display:inline-block;padding:12px 28px;background:#eef2ff;border-radius:10px;font-size:32px;font-weight:700;letter-spacing:4px;color:#1e3a8a;">{code}</span>
          </div>
          <p>Enter the code above to complete your login. It expires in {minutes}&nbsp;minutes.</p>
          <p>If you did not request this code, reply to this e-mail and our team will help.</p>
        </td>
      </tr>
      <tr>
        <td style="background:#f0f2f5;padding:16px 24px;font-size:12px;color:#666;text-align:center;">
          &copy; Braingaze &middot; <a href="https://braingaze.com" style="color:#666;text-decoration:none;">braingaze.com</a>
        </td>
      </tr>
    </table>
  </body>
</html>
"""


@dataclass
class MailMessage:
    to: str
    subject: str
    text: str
    html: Optional[str] = None


def build_otp_message(to: str, code: str, ttl_seconds: int) -> MailMessage:
    minutes = max(1, ttl_seconds // 60)
    return MailMessage(
        to=to,
        subject=OTP_SUBJECT,
        text=_OTP_TEXT.format(code=code, minutes=minutes),
        html=_OTP_HTML.format(code=code, minutes=minutes),
    )


class Mailer(Protocol):
    def send(self, message: MailMessage) -> None:
        ...


@dataclass
class InMemoryMailer:
    """Test double that records every message instead of sending it."""

    outbox: list[MailMessage] = field(default_factory=list)
    fail: bool = False

    def send(self, message: MailMessage) -> None:
        if self.fail:
            raise DeliveryFailed()
        self.outbox.append(message)

    def reset(self) -> None:
        self.outbox.clear()
        self.fail = False


@dataclass
class SmtpMailer:
    """
    SMTP relay client. Port 465 uses implicit TLS; other ports upgrade with STARTTLS.
    """

    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None
    sender: Optional[str] = None
    use_ssl: bool = True
    timeout: float = 30.0

    def _build(self, message: MailMessage) -> EmailMessage:
        email = EmailMessage()
        email["From"] = self.sender or self.username or ""
        email["To"] = message.to
        email["Subject"] = message.subject
        email.set_content(message.text)
        if message.html:
            email.add_alternative(message.html, subtype="html")
        return email

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.use_ssl:
            return smtplib.SMTP_SSL(
                self.host, self.port, timeout=self.timeout, context=context
            )
        client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            client.starttls(context=context)
        except (smtplib.SMTPException, OSError):
            client.close()
            raise
        return client

    def send(self, message: MailMessage) -> None:
        try:
            with self._connect() as client:
                if self.username:
                    client.login(self.username, self.password or "")
                client.send_message(self._build(message))
        except (smtplib.SMTPException, OSError) as exc:
            logger.exception("Failed to deliver mail to %s", message.to)
            raise DeliveryFailed() from exc
