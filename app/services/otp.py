"""
One-time passcode lifecycle: issue, deliver, verify.

Only the newest code issued for an email is ever valid. Issuing
supersedes older codes; a code lives ``ttl_seconds``, tolerates
``max_attempts`` wrong guesses, and can be consumed exactly once. If the
code cannot be delivered it is voided before the failure is reported,
so an undeliverable code never stays valid.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Protocol

from app.config import OTP_LENGTH, OTP_MAX_ATTEMPTS, OTP_TTL_SECONDS
from app.db import Database
from app.errors import (
    OtpAttemptsExceeded,
    OtpDispatchFailed,
    OtpExpired,
    OtpMismatch,
    OtpNotFound,
)
from app.models import OtpRecord, OtpStatus

logger = logging.getLogger(__name__)


class OtpDispatcher(Protocol):
    async def send_otp(self, to_email: str, code: str) -> bool: ...


def generate_code(length: int = OTP_LENGTH) -> str:
    """Uniformly random numeric code, zero-padded to ``length`` digits."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class OtpManager:
    def __init__(
        self,
        db: Database,
        dispatcher: OtpDispatcher,
        clock: Callable[[], datetime],
        *,
        ttl_seconds: int = OTP_TTL_SECONDS,
        max_attempts: int = OTP_MAX_ATTEMPTS,
        length: int = OTP_LENGTH,
    ) -> None:
        self._db = db
        self._dispatcher = dispatcher
        self._clock = clock
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self._length = length

    def is_expired(self, record: OtpRecord) -> bool:
        return self._clock() > record.created_at + timedelta(seconds=self.ttl_seconds)

    async def issue(self, email: str) -> str:
        """
        Generate, store and deliver a fresh code for ``email``.

        Raises OtpDispatchFailed (after voiding the new code) when the
        dispatcher reports that delivery failed.
        """
        code = generate_code(self._length)
        record = await self._db.replace_otp(email, code, self._clock())

        sent = await self._dispatcher.send_otp(email, code)
        if not sent:
            await self._db.close_otp(record.id, OtpStatus.VOID)
            logger.error("OTP for %s could not be delivered; code voided", email)
            raise OtpDispatchFailed()

        logger.info("OTP issued for %s (expires in %ds)", email, self.ttl_seconds)
        return code

    async def verify(self, email: str, code: str) -> None:
        """Consume the current code for ``email`` if ``code`` matches it."""
        record = await self._db.latest_active_otp(email)
        if record is None:
            logger.info("No active OTP for %s", email)
            raise OtpNotFound()

        if self.is_expired(record):
            await self._db.close_otp(record.id, OtpStatus.VOID)
            logger.info("Expired OTP presented for %s", email)
            raise OtpExpired()

        if not hmac.compare_digest(record.code.encode(), code.encode()):
            attempts = await self._db.record_otp_attempt(record.id)
            if attempts is None:
                raise OtpNotFound()
            if attempts >= self.max_attempts:
                await self._db.close_otp(record.id, OtpStatus.VOID)
                logger.warning("OTP for %s voided after %d wrong attempts", email, attempts)
                raise OtpAttemptsExceeded()
            logger.warning("Invalid OTP for %s (attempt %d/%d)", email, attempts, self.max_attempts)
            raise OtpMismatch(attempts_remaining=self.max_attempts - attempts)

        # Lost the race against a concurrent verifier or a newer issuance.
        if not await self._db.close_otp(record.id, OtpStatus.CONSUMED):
            raise OtpNotFound()

        logger.info("OTP verified for %s", email)
