"""
Application configuration from environment variables.

All settings have sensible defaults for local development.
A .env file in the project root is loaded automatically (if present).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file before reading any env vars
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# ── Environment ───────────────────────────────────────────────────────────

APP_VERSION = "0.1.0"
ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# ── Paths ─────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite database file
DB_PATH: str = os.getenv("DB_PATH", str(DATA_DIR / "feed_auth.db"))

# ── JWT ───────────────────────────────────────────────────────────────────

JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret-change-me-in-production")
JWT_ALGORITHM: str = "HS256"
JWT_EXPIRY_DAYS: int = int(os.getenv("JWT_EXPIRY_DAYS", "7"))

# ── Passwords ─────────────────────────────────────────────────────────────

BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

# ── One-time passcodes ────────────────────────────────────────────────────

OTP_LENGTH: int = int(os.getenv("OTP_LENGTH", "6"))

# How long an issued code stays valid.
OTP_TTL_SECONDS: int = int(os.getenv("OTP_TTL_SECONDS", "300"))

# A pending login outlives its code by this much, so a late reply still
# learns the code expired instead of seeing an unknown challenge.
PENDING_LOGIN_GRACE_SECONDS: int = int(os.getenv("PENDING_LOGIN_GRACE_SECONDS", "60"))

# Wrong guesses allowed against a single code before it is voided.
OTP_MAX_ATTEMPTS: int = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))

# ── Access policy ─────────────────────────────────────────────────────────

# Trusted mobile devices may log in during [start, end) server-local hours.
MOBILE_ACCESS_START_HOUR: int = int(os.getenv("MOBILE_ACCESS_START_HOUR", "6"))
MOBILE_ACCESS_END_HOUR: int = int(os.getenv("MOBILE_ACCESS_END_HOUR", "18"))

LOGIN_REDIRECT: str = os.getenv("LOGIN_REDIRECT", "/home/feed")

# ── CORS ──────────────────────────────────────────────────────────────────

# Comma-separated list of browser origins allowed to call the API.
CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# ── SMTP ──────────────────────────────────────────────────────────────────

SMTP_HOST: str = os.getenv("SMTP_HOST", "")
SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME: str = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM_EMAIL: str = os.getenv("SMTP_FROM_EMAIL", "noreply@feed.local")
SMTP_USE_TLS: bool = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
SMTP_TIMEOUT: float = float(os.getenv("SMTP_TIMEOUT", "10"))

# Set to "false" to force console-only mode even when SMTP credentials are present.
# Handy for local development to avoid burning real SMTP quota.
_SMTP_ENABLED_OVERRIDE: str = os.getenv("SMTP_ENABLED", "auto")


def smtp_enabled() -> bool:
    """True when SMTP should actually send emails.

    Controlled by SMTP_ENABLED env var:
      • "auto" (default) — send if credentials are configured
      • "true"  — always send (will fail if credentials are missing)
      • "false" — never send, print to console instead
    """
    if _SMTP_ENABLED_OVERRIDE.lower() == "false":
        return False
    if _SMTP_ENABLED_OVERRIDE.lower() == "true":
        return True
    # "auto": send only when credentials are fully configured
    return bool(SMTP_HOST and SMTP_USERNAME and SMTP_PASSWORD)
