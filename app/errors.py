"""
Authentication error taxonomy and the FastAPI handlers that render it.

Services raise an ``AuthError`` subclass; the handler turns it into
``{"success": false, "error": <code>, "detail": <message>}`` with the
subclass's HTTP status. Anything else escaping a handler is logged and
answered with a generic 500.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base class for every user-visible authentication failure."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "auth_error"
    message: str = "Authentication failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


# ── Credentials ────────────────────────────────────────────────────────────


class AccountNotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "account_not_found"
    message = "User not found"


class InvalidPassword(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_password"
    message = "Invalid password"


class AccountExists(AuthError):
    status_code = status.HTTP_409_CONFLICT
    code = "account_exists"
    message = "An account with this email already exists"


# ── One-time passcodes ─────────────────────────────────────────────────────


class OtpNotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "otp_not_found"
    message = "OTP not found"


class OtpExpired(AuthError):
    status_code = status.HTTP_410_GONE
    code = "otp_expired"
    message = "OTP expired"


class OtpMismatch(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "otp_mismatch"
    message = "Invalid OTP"

    def __init__(self, attempts_remaining: int) -> None:
        super().__init__(f"Invalid OTP. {attempts_remaining} attempt(s) remaining")
        self.attempts_remaining = attempts_remaining


class OtpAttemptsExceeded(AuthError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "otp_attempts_exceeded"
    message = "Maximum attempts exceeded, request a new code"


class OtpDispatchFailed(AuthError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "dispatch_failed"
    message = "Error sending OTP"


# ── Login flow ─────────────────────────────────────────────────────────────


class OutsideAccessWindow(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "outside_access_window"
    message = "Access restricted during this time for mobile devices"


class ChallengeNotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "challenge_not_found"
    message = "Login challenge not found or expired, please log in again"


# ── Handlers ───────────────────────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> FastAPI:

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.code, "detail": exc.message},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    return app
