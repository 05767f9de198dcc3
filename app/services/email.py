"""
Email service — delivers one-time passcodes via SMTP.

In development (no SMTP configured), emails are printed to the console
so you can see what *would* be sent without configuring a mail server.

A single ``EmailDispatcher`` is started with the application and keeps
one SMTP connection open for the process lifetime. The connection is
opened lazily on the first send and re-opened after any failure.
"""

from __future__ import annotations

import asyncio
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib

from app.config import (
    OTP_TTL_SECONDS,
    SMTP_FROM_EMAIL,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_TIMEOUT,
    SMTP_USE_TLS,
    SMTP_USERNAME,
    smtp_enabled,
)

logger = logging.getLogger(__name__)

OTP_SUBJECT = "Your OTP Code"


def build_otp_body(code: str) -> str:
    minutes = max(1, OTP_TTL_SECONDS // 60)
    return (
        f"Your OTP code is {code}\n\n"
        f"It expires in {minutes} minute(s). If you did not try to log in, "
        "you can ignore this email."
    )


def _build_html_body(code: str) -> str:
    return f"""
    <html>
    <body style="font-family:sans-serif;color:#333">
      <h2>Verify it's you</h2>
      <p>Use this code to finish signing in:</p>
      <p style="font-size:2em;letter-spacing:0.3em;font-weight:bold">{code}</p>
      <p style="margin-top:1em;font-size:0.9em;color:#888">
        If you did not try to log in, you can ignore this email.
      </p>
    </body>
    </html>
    """


class EmailDispatcher:
    """
    Sends messages over a shared, lazily-opened SMTP connection.

    ``send`` never raises for delivery problems: it logs them and returns
    False so callers can void whatever they were delivering.
    """

    def __init__(
        self,
        *,
        hostname: str = SMTP_HOST,
        port: int = SMTP_PORT,
        username: str = SMTP_USERNAME,
        password: str = SMTP_PASSWORD,
        from_email: str = SMTP_FROM_EMAIL,
        start_tls: bool = SMTP_USE_TLS,
        timeout: float = SMTP_TIMEOUT,
        enabled: bool | None = None,
    ) -> None:
        self._hostname = hostname
        self._port = port
        self._username = username
        self._password = password
        self._from_email = from_email
        self._start_tls = start_tls
        self._timeout = timeout
        self._enabled = smtp_enabled() if enabled is None else enabled
        self._smtp: aiosmtplib.SMTP | None = None
        self._lock = asyncio.Lock()

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._enabled:
            logger.info("Email dispatcher ready (SMTP %s:%d)", self._hostname, self._port)
        else:
            logger.info("Email dispatcher in console mode — emails will be logged, not sent")

    async def stop(self) -> None:
        """Close the shared SMTP connection if one is open."""
        async with self._lock:
            await self._disconnect()
        logger.info("Email dispatcher stopped")

    async def _connect(self) -> aiosmtplib.SMTP:
        if self._smtp is None or not self._smtp.is_connected:
            smtp = aiosmtplib.SMTP(
                hostname=self._hostname,
                port=self._port,
                username=self._username or None,
                password=self._password or None,
                start_tls=self._start_tls,
                timeout=self._timeout,
            )
            await smtp.connect()
            self._smtp = smtp
            logger.info("SMTP connection opened to %s:%d", self._hostname, self._port)
        return self._smtp

    async def _disconnect(self) -> None:
        if self._smtp is None:
            return
        smtp, self._smtp = self._smtp, None
        if smtp.is_connected:
            try:
                await smtp.quit()
            except aiosmtplib.SMTPException:
                smtp.close()

    # ── Sending ────────────────────────────────────────────────────────

    async def send(self, to_email: str, subject: str, body: str, html: str | None = None) -> bool:
        """Deliver one message. Returns True once the server accepted it."""
        # ── Console fallback (dev mode) ───────────────────────────────
        if not self._enabled:
            logger.info(
                "📧 [DEV] Would send email to %s:\n  Subject: %s\n  %s",
                to_email,
                subject,
                body,
            )
            return True

        # ── Real SMTP send ────────────────────────────────────────────
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._from_email
        msg["To"] = to_email
        msg.attach(MIMEText(body, "plain"))
        if html:
            msg.attach(MIMEText(html, "html"))

        async with self._lock:
            try:
                smtp = await self._connect()
                await smtp.send_message(msg)
            except aiosmtplib.SMTPException:
                logger.exception("Failed to send email to %s", to_email)
                await self._disconnect()
                return False

        logger.info("Email sent to %s", to_email)
        return True

    async def send_otp(self, to_email: str, code: str) -> bool:
        return await self.send(to_email, OTP_SUBJECT, build_otp_body(code), _build_html_body(code))
