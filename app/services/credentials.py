"""
Credential verification and password hashing.

Passwords are stored as bcrypt hashes; ``bcrypt.checkpw`` compares in
constant time.
"""

from __future__ import annotations

import logging

import bcrypt
from fastapi.concurrency import run_in_threadpool

from app import config
from app.db import Database
from app.errors import AccountNotFound, InvalidPassword
from app.models import Account

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    """Hash a password with a fresh salt at the configured cost."""
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        logger.error("Malformed password hash in account store")
        return False


class CredentialVerifier:
    """Checks an email + password pair against the account store."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def verify(self, email: str, password: str) -> Account:
        account = await self._db.get_account(email)
        if account is None:
            logger.info("Login rejected: unknown account %s", email)
            raise AccountNotFound()

        if not await run_in_threadpool(check_password, password, account.password_hash):
            logger.warning("Login rejected: wrong password for %s", email)
            raise InvalidPassword()

        return account
