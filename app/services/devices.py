"""
Device fingerprinting and the per-account trusted-device registry.

A fingerprint is (browser, OS, device class, client address). The
browser and OS families come from the ``User-Agent`` header as parsed by
``user-agents`` (the uap-core regex set), without versions, so equality
stays exact and stable across browser updates. The address is whatever
slowapi's ``get_remote_address`` reports, the same key the rate limiter
uses.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from fastapi import Request
from slowapi.util import get_remote_address
from user_agents import parse as parse_ua
from user_agents.parsers import UserAgent

from app.db import Database
from app.models import UNKNOWN, DeviceClass, DeviceFingerprint

logger = logging.getLogger(__name__)

# uap-core's name for "no match".
_OTHER = "Other"


def _family(name: str | None) -> str:
    if not name or name == _OTHER:
        return UNKNOWN
    return name


def classify_device(agent: UserAgent) -> DeviceClass:
    if agent.is_tablet:
        return DeviceClass.TABLET
    if agent.is_mobile:
        return DeviceClass.MOBILE
    if agent.is_pc:
        return DeviceClass.DESKTOP
    return DeviceClass.UNKNOWN


def parse_user_agent(ua: str | None, ip: str | None = None) -> DeviceFingerprint:
    """Reduce a raw User-Agent string and address to a fingerprint."""
    ua = (ua or "").strip()
    if not ua:
        return DeviceFingerprint(ip=ip or UNKNOWN)

    agent = parse_ua(ua)
    return DeviceFingerprint(
        browser=_family(agent.browser.family),
        os=_family(agent.os.family),
        device_class=classify_device(agent),
        ip=ip or UNKNOWN,
    )


def fingerprint_from_request(request: Request) -> DeviceFingerprint:
    """FastAPI dependency: fingerprint of the calling client."""
    return parse_user_agent(request.headers.get("user-agent"), get_remote_address(request))


class DeviceTrustRegistry:
    """Which fingerprints each account has already proven it owns."""

    def __init__(self, db: Database, clock: Callable[[], datetime]) -> None:
        self._db = db
        self._clock = clock

    async def is_trusted(self, email: str, fingerprint: DeviceFingerprint) -> bool:
        return await self._db.has_device(email, fingerprint)

    async def trust(self, email: str, fingerprint: DeviceFingerprint) -> None:
        """Remember ``fingerprint`` for ``email``. Trusting a known device is a no-op."""
        added = await self._db.add_device(email, fingerprint, self._clock())
        if added:
            logger.info(
                "Trusted new device for %s: %s / %s / %s from %s",
                email,
                fingerprint.browser,
                fingerprint.os,
                fingerprint.device_class.value,
                fingerprint.ip,
            )

    async def list_devices(self, email: str) -> list[DeviceFingerprint]:
        return await self._db.list_devices(email)
