"""
Authentication endpoints: password login with device-aware OTP step-up.
"""

from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool

from app.config import LOGIN_REDIRECT
from app.dependencies import (
    ClockDep,
    CurrentUser,
    DbDep,
    Fingerprint,
    Orchestrator,
    Otp,
    create_session_cookie,
)
from app.errors import AccountExists
from app.models import (
    AccountInfo,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OtpRequest,
    OtpRequestResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    RegisterRequest,
    UserInfo,
)
from app.rate_limit import AUTH, STRICT, limiter
from app.services.credentials import hash_password

router = APIRouter(tags=["auth"])

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    410: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@router.post(
    "/register",
    response_model=AccountInfo,
    status_code=status.HTTP_201_CREATED,
    operation_id="register",
    summary="Create an account",
    responses={409: {"model": ErrorResponse}},
)
async def register(body: RegisterRequest, db: DbDep, clock: ClockDep) -> AccountInfo:
    password_hash = await run_in_threadpool(hash_password, body.password)
    account = await db.create_account(body.email, password_hash, clock(), name=body.name)
    if account is None:
        raise AccountExists()
    return AccountInfo(email=account.email, name=account.name, created_at=account.created_at)


@router.post(
    "/check-login",
    response_model=LoginResponse,
    operation_id="checkLogin",
    summary="Log in, or receive an OTP challenge when the device is new",
    responses={202: {"model": LoginResponse}, **_ERRORS},
)
@limiter.limit(AUTH)
async def check_login(
    request: Request,
    body: LoginRequest,
    response: Response,
    fingerprint: Fingerprint,
    orchestrator: Orchestrator,
) -> LoginResponse:
    """
    Verify the password, then either grant access (known device, allowed
    by the access policy) or email an OTP and answer 202 with a
    ``pending_token`` to send back to ``/verify-otp``.
    """
    decision = await orchestrator.login(body.email, body.password, fingerprint)

    if decision.authenticated:
        create_session_cookie(response, decision.email)
        return LoginResponse(success=True, message="Login successful", redirect=LOGIN_REDIRECT)

    response.status_code = status.HTTP_202_ACCEPTED
    return LoginResponse(
        success=False,
        challenge=True,
        message="OTP sent, please check your email",
        pending_token=decision.pending_token,
        expires_in_seconds=decision.expires_in_seconds,
    )


@router.post(
    "/send-otp",
    response_model=OtpRequestResponse,
    operation_id="sendOtp",
    summary="Send a one-time passcode to the given email",
    responses={500: {"model": ErrorResponse}},
)
@limiter.limit(STRICT)
async def send_otp(request: Request, body: OtpRequest, otp: Otp) -> OtpRequestResponse:
    await otp.issue(body.email)
    return OtpRequestResponse(
        message="OTP sent successfully",
        expires_in_seconds=otp.ttl_seconds,
    )


@router.post(
    "/verify-otp",
    response_model=OtpVerifyResponse,
    operation_id="verifyOtp",
    summary="Verify a one-time passcode, completing a pending login if one is given",
    responses=_ERRORS,
)
@limiter.limit(AUTH)
async def verify_otp(
    request: Request,
    body: OtpVerifyRequest,
    response: Response,
    otp: Otp,
    orchestrator: Orchestrator,
) -> OtpVerifyResponse:
    """
    Without ``pending_token`` this only checks and consumes the code.
    With it, the challenged device becomes trusted and a session cookie
    is set.
    """
    language = body.lng or "en"

    if body.pending_token is None:
        await otp.verify(body.email, body.otp)
        return OtpVerifyResponse(success=True, language=language)

    decision = await orchestrator.complete_challenge(body.email, body.otp, body.pending_token)
    create_session_cookie(response, decision.email)
    return OtpVerifyResponse(success=True, language=language, redirect=LOGIN_REDIRECT)


@router.post(
    "/logout",
    response_model=MessageResponse,
    operation_id="logout",
    summary="Clear the session cookie",
)
async def logout(response: Response) -> MessageResponse:
    response.delete_cookie("session")
    return MessageResponse(message="Logged out successfully")


@router.get(
    "/me",
    response_model=UserInfo,
    operation_id="getMe",
    summary="Get current authenticated user info",
)
async def get_me(current_user: CurrentUser, db: DbDep) -> UserInfo:
    account = await db.get_account(current_user.email)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account no longer exists. Please log in again.",
        )
    return UserInfo(email=account.email, created_at=account.created_at)
