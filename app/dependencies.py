import logging
from datetime import UTC, datetime, timedelta
from typing import Annotated, Callable

import jwt
from fastapi import Cookie, Depends, HTTPException, Request, Response, status

from app.config import ENVIRONMENT, JWT_ALGORITHM, JWT_EXPIRY_DAYS, JWT_SECRET
from app.db import Database
from app.models import DeviceFingerprint, UserInfo
from app.services.credentials import CredentialVerifier
from app.services.devices import DeviceTrustRegistry, fingerprint_from_request
from app.services.email import EmailDispatcher
from app.services.login import LoginOrchestrator
from app.services.otp import OtpManager
from app.services.policy import AccessPolicy

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Timezone-aware server-local time."""
    return datetime.now().astimezone()


# ── Shared resources ───────────────────────────────────────────────────────


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_dispatcher(request: Request) -> EmailDispatcher:
    return request.app.state.dispatcher


def get_clock() -> Clock:
    return local_now


def get_access_policy() -> AccessPolicy:
    return AccessPolicy()


DbDep = Annotated[Database, Depends(get_db)]
ClockDep = Annotated[Clock, Depends(get_clock)]
Fingerprint = Annotated[DeviceFingerprint, Depends(fingerprint_from_request)]


# ── Services ───────────────────────────────────────────────────────────────


def get_otp_manager(
    db: DbDep,
    clock: ClockDep,
    dispatcher: Annotated[EmailDispatcher, Depends(get_dispatcher)],
) -> OtpManager:
    return OtpManager(db, dispatcher, clock)


def get_login_orchestrator(
    db: DbDep,
    clock: ClockDep,
    otp: Annotated[OtpManager, Depends(get_otp_manager)],
    policy: Annotated[AccessPolicy, Depends(get_access_policy)],
) -> LoginOrchestrator:
    return LoginOrchestrator(
        db,
        CredentialVerifier(db),
        DeviceTrustRegistry(db, clock),
        otp,
        policy,
        clock,
    )


Otp = Annotated[OtpManager, Depends(get_otp_manager)]
Orchestrator = Annotated[LoginOrchestrator, Depends(get_login_orchestrator)]


# ── JWT / Session ──────────────────────────────────────────────────────────


def create_jwt(email: str) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": email,
        "iat": now,
        "exp": now + timedelta(days=JWT_EXPIRY_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def create_session_cookie(response: Response, email: str) -> None:
    token = create_jwt(email)
    response.set_cookie(
        key="session",
        value=token,
        httponly=True,
        samesite="lax",
        secure=ENVIRONMENT == "production",
        max_age=JWT_EXPIRY_DAYS * 86400,
    )


async def get_current_user(
    session: Annotated[str | None, Cookie()] = None,
) -> UserInfo:
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please log in via /check-login",
        )

    try:
        payload = jwt.decode(session, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired. Please log in again.",
        ) from None
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session. Please log in again.",
        ) from None

    email: str | None = payload.get("sub")
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload.",
        )

    return UserInfo(
        email=email,
        created_at=datetime.fromtimestamp(payload.get("iat", 0), tz=UTC),
    )


CurrentUser = Annotated[UserInfo, Depends(get_current_user)]
