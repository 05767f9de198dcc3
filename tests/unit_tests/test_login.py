"""Tests for the login state machine."""

import pytest

from app.errors import (
    AccountNotFound,
    ChallengeNotFound,
    InvalidPassword,
    OtpAttemptsExceeded,
    OtpDispatchFailed,
    OtpExpired,
    OtpMismatch,
    OtpNotFound,
    OutsideAccessWindow,
)
from app.models import LoginState
from tests.mocks.models import (
    DESKTOP_FINGERPRINT,
    EMAIL,
    EVENING,
    MOBILE_FINGERPRINT,
    OTHER_EMAIL,
    PASSWORD,
    make_fingerprint,
)


def _wrong(code: str) -> str:
    return f"{(int(code) + 1) % 1_000_000:06d}"


class TestCredentialStage:
    async def test_unknown_account(self, orchestrator, account, dispatcher):
        with pytest.raises(AccountNotFound):
            await orchestrator.login(OTHER_EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        assert dispatcher.sent == []

    async def test_wrong_password_stops_before_device_logic(self, orchestrator, account, dispatcher):
        with pytest.raises(InvalidPassword):
            await orchestrator.login(EMAIL, "wrong password", DESKTOP_FINGERPRINT)
        assert dispatcher.sent == []


class TestKnownDevice:
    async def test_trusted_desktop_authenticated(self, orchestrator, registry, account, dispatcher):
        await registry.trust(EMAIL, DESKTOP_FINGERPRINT)
        decision = await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        assert decision.state is LoginState.AUTHENTICATED
        assert decision.pending_token is None
        assert dispatcher.sent == []

    async def test_trusted_mobile_in_window(self, orchestrator, registry, account):
        await registry.trust(EMAIL, MOBILE_FINGERPRINT)
        decision = await orchestrator.login(EMAIL, PASSWORD, MOBILE_FINGERPRINT)
        assert decision.authenticated

    async def test_trusted_mobile_in_evening_denied(self, orchestrator, registry, account, clock):
        await registry.trust(EMAIL, MOBILE_FINGERPRINT)
        clock.set(EVENING)
        with pytest.raises(OutsideAccessWindow):
            await orchestrator.login(EMAIL, PASSWORD, MOBILE_FINGERPRINT)

    async def test_trusted_desktop_in_evening_allowed(self, orchestrator, registry, account, clock):
        await registry.trust(EMAIL, DESKTOP_FINGERPRINT)
        clock.set(EVENING)
        assert (await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)).authenticated


class TestChallenge:
    async def test_unknown_device_gets_challenge(self, orchestrator, account, dispatcher, database):
        decision = await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)

        assert decision.state is LoginState.CHALLENGE_ISSUED
        assert decision.pending_token
        assert decision.expires_in_seconds == 300
        assert [to for to, _ in dispatcher.sent] == [EMAIL]

        pending = await database.get_pending_login(decision.pending_token)
        assert pending.fingerprint == DESKTOP_FINGERPRINT

    async def test_near_miss_fingerprint_is_challenged(self, orchestrator, registry, account):
        await registry.trust(EMAIL, DESKTOP_FINGERPRINT)
        decision = await orchestrator.login(EMAIL, PASSWORD, make_fingerprint(ip="203.0.113.99"))
        assert decision.state is LoginState.CHALLENGE_ISSUED

    async def test_resolving_challenge_trusts_device(
        self, orchestrator, registry, account, dispatcher, database
    ):
        challenge = await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        code = dispatcher.last_code(EMAIL)

        decision = await orchestrator.complete_challenge(EMAIL, code, challenge.pending_token)

        assert decision.authenticated
        assert await registry.is_trusted(EMAIL, DESKTOP_FINGERPRINT)
        assert await database.get_pending_login(challenge.pending_token) is None

        # Next login from the same device skips the OTP.
        again = await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        assert again.authenticated
        assert len(dispatcher.sent) == 1

    async def test_challenge_binds_to_the_challenged_device(
        self, orchestrator, registry, account, dispatcher
    ):
        phone = await orchestrator.login(EMAIL, PASSWORD, MOBILE_FINGERPRINT)
        code = dispatcher.last_code(EMAIL)
        await orchestrator.complete_challenge(EMAIL, code, phone.pending_token)

        assert await registry.list_devices(EMAIL) == [MOBILE_FINGERPRINT]
        assert not await registry.is_trusted(EMAIL, DESKTOP_FINGERPRINT)

    async def test_resolved_challenge_skips_policy(self, orchestrator, account, dispatcher, clock):
        clock.set(EVENING)
        challenge = await orchestrator.login(EMAIL, PASSWORD, MOBILE_FINGERPRINT)
        code = dispatcher.last_code(EMAIL)
        assert (await orchestrator.complete_challenge(EMAIL, code, challenge.pending_token)).authenticated

    async def test_wrong_code_can_be_retried(self, orchestrator, registry, account, dispatcher):
        challenge = await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        code = dispatcher.last_code(EMAIL)

        with pytest.raises(OtpMismatch):
            await orchestrator.complete_challenge(EMAIL, _wrong(code), challenge.pending_token)
        assert not await registry.is_trusted(EMAIL, DESKTOP_FINGERPRINT)

        decision = await orchestrator.complete_challenge(EMAIL, code, challenge.pending_token)
        assert decision.authenticated

    async def test_retry_bound_forces_restart(self, orchestrator, account, dispatcher, database):
        challenge = await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        code = dispatcher.last_code(EMAIL)

        for _ in range(2):
            with pytest.raises(OtpMismatch):
                await orchestrator.complete_challenge(EMAIL, _wrong(code), challenge.pending_token)
        with pytest.raises(OtpAttemptsExceeded):
            await orchestrator.complete_challenge(EMAIL, _wrong(code), challenge.pending_token)

        assert await database.get_pending_login(challenge.pending_token) is None
        with pytest.raises(ChallengeNotFound):
            await orchestrator.complete_challenge(EMAIL, code, challenge.pending_token)

    async def test_expired_code(self, orchestrator, account, dispatcher, clock, database, registry):
        challenge = await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        code = dispatcher.last_code(EMAIL)
        clock.advance(301)

        with pytest.raises(OtpExpired):
            await orchestrator.complete_challenge(EMAIL, code, challenge.pending_token)
        assert await database.get_pending_login(challenge.pending_token) is None
        assert not await registry.is_trusted(EMAIL, DESKTOP_FINGERPRINT)

    async def test_challenge_abandoned_past_grace(self, orchestrator, account, dispatcher, clock, database):
        challenge = await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        code = dispatcher.last_code(EMAIL)
        clock.advance(orchestrator.pending_ttl_seconds + 1)

        with pytest.raises(ChallengeNotFound):
            await orchestrator.complete_challenge(EMAIL, code, challenge.pending_token)
        assert await database.get_pending_login(challenge.pending_token) is None

    async def test_unknown_token(self, orchestrator, account, dispatcher):
        await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        with pytest.raises(ChallengeNotFound):
            await orchestrator.complete_challenge(EMAIL, dispatcher.last_code(EMAIL), "bogus")

    async def test_token_for_other_email(self, orchestrator, account, dispatcher):
        challenge = await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        with pytest.raises(ChallengeNotFound):
            await orchestrator.complete_challenge(
                OTHER_EMAIL, dispatcher.last_code(EMAIL), challenge.pending_token
            )

    async def test_new_challenge_replaces_old(self, orchestrator, account, dispatcher, database):
        first = await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        second = await orchestrator.login(EMAIL, PASSWORD, MOBILE_FINGERPRINT)

        assert await database.get_pending_login(first.pending_token) is None
        with pytest.raises(ChallengeNotFound):
            await orchestrator.complete_challenge(EMAIL, dispatcher.last_code(EMAIL), first.pending_token)
        assert (
            await orchestrator.complete_challenge(EMAIL, dispatcher.last_code(EMAIL), second.pending_token)
        ).authenticated

    async def test_code_consumed_elsewhere_drops_challenge(
        self, orchestrator, otp_manager, account, dispatcher, database
    ):
        challenge = await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)
        code = dispatcher.last_code(EMAIL)
        await otp_manager.verify(EMAIL, code)

        with pytest.raises(OtpNotFound):
            await orchestrator.complete_challenge(EMAIL, code, challenge.pending_token)
        assert await database.get_pending_login(challenge.pending_token) is None

    async def test_dispatch_failure_leaves_nothing_behind(
        self, orchestrator, account, dispatcher, database
    ):
        dispatcher.fail = True
        with pytest.raises(OtpDispatchFailed):
            await orchestrator.login(EMAIL, PASSWORD, DESKTOP_FINGERPRINT)

        assert await database.latest_active_otp(EMAIL) is None
        async with database.conn.execute("SELECT COUNT(*) AS n FROM pending_logins") as cur:
            row = await cur.fetchone()
        assert row["n"] == 0
