"""Pydantic models for the feed authentication API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.config import OTP_LENGTH

UNKNOWN = "unknown"


# ── Devices ────────────────────────────────────────────────────────────────


class DeviceClass(str, Enum):
    """Closed set of device classes a fingerprint can carry."""
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    UNKNOWN = "unknown"


class DeviceFingerprint(BaseModel):
    """Client device identity. Two fingerprints are equal only if every field matches."""
    model_config = ConfigDict(frozen=True)

    browser: str = Field(default=UNKNOWN, description="Browser family")
    os: str = Field(default=UNKNOWN, description="Operating system family")
    device_class: DeviceClass = Field(default=DeviceClass.UNKNOWN, description="Device class")
    ip: str = Field(default=UNKNOWN, description="Originating network address")


# ── Stored records ─────────────────────────────────────────────────────────


class Account(BaseModel):
    """A registered account as stored."""
    email: EmailStr
    name: Optional[str] = None
    password_hash: str
    created_at: datetime


class OtpStatus(str, Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"
    SUPERSEDED = "superseded"
    VOID = "void"


class OtpRecord(BaseModel):
    """One issued passcode."""
    id: int
    email: EmailStr
    code: str
    created_at: datetime
    status: OtpStatus = OtpStatus.ACTIVE
    attempts: int = 0


class PendingLogin(BaseModel):
    """A login paused on an OTP challenge for one specific device."""
    token: str
    email: EmailStr
    fingerprint: DeviceFingerprint
    created_at: datetime


class LoginState(str, Enum):
    AUTHENTICATED = "authenticated"
    CHALLENGE_ISSUED = "challenge_issued"


class LoginDecision(BaseModel):
    """Outcome of a login step, handed to the HTTP layer for session issuance."""
    state: LoginState
    email: EmailStr
    pending_token: Optional[str] = None
    expires_in_seconds: Optional[int] = None

    @property
    def authenticated(self) -> bool:
        return self.state is LoginState.AUTHENTICATED


# ── Requests ───────────────────────────────────────────────────────────────


class RegisterRequest(BaseModel):
    email: EmailStr = Field(..., description="Account email")
    password: str = Field(..., min_length=8, max_length=256, description="Account password")
    name: Optional[str] = Field(None, max_length=120, description="Display name")


class LoginRequest(BaseModel):
    email: EmailStr = Field(..., description="Account email")
    password: str = Field(..., min_length=1, description="Account password")


class OtpRequest(BaseModel):
    email: EmailStr = Field(..., description="Address to send the code to")


class OtpVerifyRequest(BaseModel):
    email: EmailStr = Field(..., description="Address the code was sent to")
    otp: str = Field(..., pattern=rf"^\d{{{OTP_LENGTH}}}$", description="The one-time passcode")
    lng: Optional[str] = Field(None, max_length=16, description="Preferred UI language")
    pending_token: Optional[str] = Field(
        None, description="Token returned by /check-login when a device challenge was issued"
    )


# ── Responses ──────────────────────────────────────────────────────────────


class AccountInfo(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    created_at: datetime


class LoginResponse(BaseModel):
    success: bool
    message: str
    redirect: Optional[str] = None
    challenge: bool = False
    pending_token: Optional[str] = None
    expires_in_seconds: Optional[int] = None


class OtpRequestResponse(BaseModel):
    message: str
    expires_in_seconds: int


class OtpVerifyResponse(BaseModel):
    success: bool
    language: str
    redirect: Optional[str] = None


class UserInfo(BaseModel):
    email: EmailStr
    created_at: datetime


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
