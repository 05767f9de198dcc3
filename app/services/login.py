"""
Login orchestration: the step-up authentication state machine.

    Start ─► CredentialChecked ─┬─► DeviceKnown ─► PolicyChecked ─► Authenticated | Denied
                                └─► DeviceUnknown ─► ChallengeIssued ─┬─► Authenticated
                                                                      └─► ChallengeFailed

A challenge is bound to the device that triggered it through a pending
login: an opaque token stored with the challenged fingerprint. The
client echoes the token together with the emailed code; on success that
exact fingerprint is trusted and the login is granted. A wrong code
keeps the pending login so the client can retry with another guess
until the code's attempt budget runs out; every other challenge failure
discards it and the client has to start over. The pending login lives a
little longer than its code so that a late reply is told the code
expired.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable

from app.config import PENDING_LOGIN_GRACE_SECONDS
from app.db import Database
from app.errors import (
    ChallengeNotFound,
    OtpAttemptsExceeded,
    OtpDispatchFailed,
    OtpExpired,
    OtpNotFound,
)
from app.models import DeviceFingerprint, LoginDecision, LoginState, PendingLogin
from app.services.credentials import CredentialVerifier
from app.services.devices import DeviceTrustRegistry
from app.services.otp import OtpManager
from app.services.policy import AccessPolicy

logger = logging.getLogger(__name__)


class LoginOrchestrator:
    def __init__(
        self,
        db: Database,
        credentials: CredentialVerifier,
        devices: DeviceTrustRegistry,
        otp: OtpManager,
        policy: AccessPolicy,
        clock: Callable[[], datetime],
        *,
        pending_grace_seconds: int = PENDING_LOGIN_GRACE_SECONDS,
    ) -> None:
        self._db = db
        self._credentials = credentials
        self._devices = devices
        self._otp = otp
        self._policy = policy
        self._clock = clock
        self._pending_grace_seconds = pending_grace_seconds

    @property
    def pending_ttl_seconds(self) -> int:
        return self._otp.ttl_seconds + self._pending_grace_seconds

    def _pending_expired(self, pending: PendingLogin) -> bool:
        return self._clock() > pending.created_at + timedelta(seconds=self.pending_ttl_seconds)

    # ── Start → CredentialChecked → DeviceKnown | DeviceUnknown ────────

    async def login(
        self, email: str, password: str, fingerprint: DeviceFingerprint
    ) -> LoginDecision:
        await self._credentials.verify(email, password)

        if await self._devices.is_trusted(email, fingerprint):
            self._policy.check(fingerprint, self._clock())
            logger.info("Login granted for %s on a trusted device", email)
            return LoginDecision(state=LoginState.AUTHENTICATED, email=email)

        return await self._challenge(email, fingerprint)

    async def _challenge(self, email: str, fingerprint: DeviceFingerprint) -> LoginDecision:
        # A new code supersedes the previous one, so older pending logins are dead.
        await self._db.delete_pending_logins_for(email)
        token = secrets.token_urlsafe(32)
        await self._db.create_pending_login(token, email, fingerprint, self._clock())

        try:
            await self._otp.issue(email)
        except OtpDispatchFailed:
            await self._db.delete_pending_login(token)
            raise

        logger.info(
            "Unrecognised %s device for %s, OTP challenge issued",
            fingerprint.device_class.value,
            email,
        )
        return LoginDecision(
            state=LoginState.CHALLENGE_ISSUED,
            email=email,
            pending_token=token,
            expires_in_seconds=self._otp.ttl_seconds,
        )

    # ── ChallengeIssued → Authenticated | ChallengeFailed ──────────────

    async def complete_challenge(self, email: str, code: str, pending_token: str) -> LoginDecision:
        pending = await self._db.get_pending_login(pending_token)
        if pending is None or pending.email != email:
            raise ChallengeNotFound()

        if self._pending_expired(pending):
            await self._db.delete_pending_login(pending_token)
            raise ChallengeNotFound()

        try:
            await self._otp.verify(email, code)
        except (OtpNotFound, OtpExpired, OtpAttemptsExceeded):
            await self._db.delete_pending_login(pending_token)
            raise

        await self._devices.trust(email, pending.fingerprint)
        await self._db.delete_pending_login(pending_token)
        logger.info("Challenge resolved for %s, login granted", email)
        return LoginDecision(state=LoginState.AUTHENTICATED, email=email)
