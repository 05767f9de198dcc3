"""
SQLite storage layer using aiosqlite.

Stores accounts, their trusted devices, issued one-time passcodes and
logins paused on a passcode challenge. Tables are created automatically
on connect.

One ``Database`` is opened by the application lifespan and shared by
every request through ``app.state``. Every state-changing statement that
must not race (consuming a code, superseding codes, counting wrong
guesses) is a single conditional UPDATE so SQLite applies it atomically.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import aiosqlite

from app.models import (
    Account,
    DeviceClass,
    DeviceFingerprint,
    OtpRecord,
    OtpStatus,
    PendingLogin,
)

logger = logging.getLogger(__name__)


# ── Schema ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    email           TEXT PRIMARY KEY,
    name            TEXT,
    password_hash   TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS devices (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    email           TEXT NOT NULL,
    browser         TEXT NOT NULL,
    os              TEXT NOT NULL,
    device_class    TEXT NOT NULL,
    ip              TEXT NOT NULL,
    created_at      TEXT NOT NULL,
    FOREIGN KEY (email) REFERENCES accounts(email) ON DELETE CASCADE
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_devices_fingerprint
    ON devices(email, browser, os, device_class, ip);

CREATE TABLE IF NOT EXISTS otps (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    email           TEXT NOT NULL,
    code            TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'active',
    attempts        INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_otps_email ON otps(email, status);

CREATE TABLE IF NOT EXISTS pending_logins (
    token           TEXT PRIMARY KEY,
    email           TEXT NOT NULL,
    browser         TEXT NOT NULL,
    os              TEXT NOT NULL,
    device_class    TEXT NOT NULL,
    ip              TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_pending_email ON pending_logins(email);
"""


# ── Helpers ───────────────────────────────────────────────────────────────


def _iso(dt: datetime) -> str:
    return dt.isoformat()


def _fingerprint_params(fingerprint: DeviceFingerprint) -> tuple[str, str, str, str]:
    return (
        fingerprint.browser,
        fingerprint.os,
        fingerprint.device_class.value,
        fingerprint.ip,
    )


def _row_to_account(row: aiosqlite.Row) -> Account:
    return Account(
        email=row["email"],
        name=row["name"],
        password_hash=row["password_hash"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_fingerprint(row: aiosqlite.Row) -> DeviceFingerprint:
    return DeviceFingerprint(
        browser=row["browser"],
        os=row["os"],
        device_class=DeviceClass(row["device_class"]),
        ip=row["ip"],
    )


def _row_to_otp(row: aiosqlite.Row) -> OtpRecord:
    return OtpRecord(
        id=row["id"],
        email=row["email"],
        code=row["code"],
        status=OtpStatus(row["status"]),
        attempts=row["attempts"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_pending(row: aiosqlite.Row) -> PendingLogin:
    return PendingLogin(
        token=row["token"],
        email=row["email"],
        fingerprint=_row_to_fingerprint(row),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class Database:
    """Process-wide aiosqlite connection with an explicit open/close lifecycle."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._conn: aiosqlite.Connection | None = None

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the database and create tables if they don't exist."""
        db_path = Path(self._path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(str(db_path))
        self._conn.row_factory = aiosqlite.Row  # dict-like rows
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")

        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()
        logger.info("Database initialized at %s", db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("Database connection closed")

    @property
    def conn(self) -> aiosqlite.Connection:
        """Return the active connection (``connect()`` must have been awaited)."""
        assert self._conn is not None, "Database not initialized — call connect() first"
        return self._conn

    # ══════════════════════════════════════════════════════════════════
    #                        ACCOUNTS
    # ══════════════════════════════════════════════════════════════════

    async def create_account(
        self,
        email: str,
        password_hash: str,
        created_at: datetime,
        *,
        name: str | None = None,
    ) -> Account | None:
        """Insert a new account. Returns None if the email is already taken."""
        cur = await self.conn.execute(
            """
            INSERT OR IGNORE INTO accounts (email, name, password_hash, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (email, name, password_hash, _iso(created_at)),
        )
        await self.conn.commit()
        if cur.rowcount == 0:
            return None
        return await self.get_account(email)

    async def get_account(self, email: str) -> Account | None:
        async with self.conn.execute(
            "SELECT * FROM accounts WHERE email = ?", (email,)
        ) as cur:
            row = await cur.fetchone()
        return _row_to_account(row) if row else None

    # ══════════════════════════════════════════════════════════════════
    #                        DEVICES
    # ══════════════════════════════════════════════════════════════════

    async def has_device(self, email: str, fingerprint: DeviceFingerprint) -> bool:
        async with self.conn.execute(
            """
            SELECT 1 FROM devices
            WHERE email = ? AND browser = ? AND os = ? AND device_class = ? AND ip = ?
            """,
            (email, *_fingerprint_params(fingerprint)),
        ) as cur:
            row = await cur.fetchone()
        return row is not None

    async def add_device(
        self, email: str, fingerprint: DeviceFingerprint, created_at: datetime
    ) -> bool:
        """Record a device for an account. Returns False if it was already known."""
        cur = await self.conn.execute(
            """
            INSERT OR IGNORE INTO devices (email, browser, os, device_class, ip, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (email, *_fingerprint_params(fingerprint), _iso(created_at)),
        )
        await self.conn.commit()
        return cur.rowcount > 0

    async def list_devices(self, email: str) -> list[DeviceFingerprint]:
        """Devices of an account in the order they were first trusted."""
        async with self.conn.execute(
            "SELECT * FROM devices WHERE email = ? ORDER BY id", (email,)
        ) as cur:
            rows = await cur.fetchall()
        return [_row_to_fingerprint(r) for r in rows]

    # ══════════════════════════════════════════════════════════════════
    #                        ONE-TIME PASSCODES
    # ══════════════════════════════════════════════════════════════════

    async def replace_otp(self, email: str, code: str, created_at: datetime) -> OtpRecord:
        """
        Store ``code`` and supersede every older active code for ``email``.

        Only codes with a lower id are superseded, so when two issuances
        interleave the one inserted last stays the single active code.
        """
        cur = await self.conn.execute(
            "INSERT INTO otps (email, code, status, attempts, created_at) VALUES (?, ?, ?, 0, ?)",
            (email, code, OtpStatus.ACTIVE.value, _iso(created_at)),
        )
        otp_id = cur.lastrowid
        await self.conn.execute(
            "UPDATE otps SET status = ? WHERE email = ? AND status = ? AND id < ?",
            (OtpStatus.SUPERSEDED.value, email, OtpStatus.ACTIVE.value, otp_id),
        )
        await self.conn.commit()
        return OtpRecord(
            id=otp_id,
            email=email,
            code=code,
            created_at=created_at,
        )

    async def latest_active_otp(self, email: str) -> OtpRecord | None:
        """The most recently issued code for ``email`` that is still active."""
        async with self.conn.execute(
            """
            SELECT * FROM otps WHERE email = ? AND status = ?
            ORDER BY id DESC LIMIT 1
            """,
            (email, OtpStatus.ACTIVE.value),
        ) as cur:
            row = await cur.fetchone()
        return _row_to_otp(row) if row else None

    async def get_otp(self, otp_id: int) -> OtpRecord | None:
        async with self.conn.execute("SELECT * FROM otps WHERE id = ?", (otp_id,)) as cur:
            row = await cur.fetchone()
        return _row_to_otp(row) if row else None

    async def close_otp(self, otp_id: int, status: OtpStatus) -> bool:
        """
        Move an active code to ``status``.

        Returns True only for the caller that actually performed the
        transition, so two concurrent consumers cannot both succeed.
        """
        cur = await self.conn.execute(
            "UPDATE otps SET status = ? WHERE id = ? AND status = ?",
            (status.value, otp_id, OtpStatus.ACTIVE.value),
        )
        await self.conn.commit()
        return cur.rowcount > 0

    async def record_otp_attempt(self, otp_id: int) -> int | None:
        """Count one failed guess against an active code and return the new total.

        ``None`` when the code is no longer active.
        """
        async with self.conn.execute(
            "UPDATE otps SET attempts = attempts + 1 WHERE id = ? AND status = ? RETURNING attempts",
            (otp_id, OtpStatus.ACTIVE.value),
        ) as cur:
            row = await cur.fetchone()
        await self.conn.commit()
        return row["attempts"] if row else None

    # ══════════════════════════════════════════════════════════════════
    #                        PENDING LOGINS
    # ══════════════════════════════════════════════════════════════════

    async def create_pending_login(
        self,
        token: str,
        email: str,
        fingerprint: DeviceFingerprint,
        created_at: datetime,
    ) -> PendingLogin:
        await self.conn.execute(
            """
            INSERT INTO pending_logins (token, email, browser, os, device_class, ip, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (token, email, *_fingerprint_params(fingerprint), _iso(created_at)),
        )
        await self.conn.commit()
        return PendingLogin(
            token=token, email=email, fingerprint=fingerprint, created_at=created_at
        )

    async def get_pending_login(self, token: str) -> PendingLogin | None:
        async with self.conn.execute(
            "SELECT * FROM pending_logins WHERE token = ?", (token,)
        ) as cur:
            row = await cur.fetchone()
        return _row_to_pending(row) if row else None

    async def delete_pending_login(self, token: str) -> bool:
        cur = await self.conn.execute("DELETE FROM pending_logins WHERE token = ?", (token,))
        await self.conn.commit()
        return cur.rowcount > 0

    async def delete_pending_logins_for(self, email: str) -> int:
        """Drop every paused login of an account. Returns how many were removed."""
        cur = await self.conn.execute("DELETE FROM pending_logins WHERE email = ?", (email,))
        await self.conn.commit()
        return cur.rowcount
