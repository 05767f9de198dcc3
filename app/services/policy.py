"""
Supplementary access restrictions for devices that are already trusted.

Trusted mobile devices may only sign in during a daytime window
(server-local hours, half-open). Every other device class is allowed at
any time.
"""

from __future__ import annotations

import logging
from datetime import datetime

from app.config import MOBILE_ACCESS_END_HOUR, MOBILE_ACCESS_START_HOUR
from app.errors import OutsideAccessWindow
from app.models import DeviceClass, DeviceFingerprint

logger = logging.getLogger(__name__)


class AccessPolicy:
    def __init__(
        self,
        start_hour: int = MOBILE_ACCESS_START_HOUR,
        end_hour: int = MOBILE_ACCESS_END_HOUR,
    ) -> None:
        if not 0 <= start_hour < end_hour <= 24:
            raise ValueError(f"Invalid mobile access window [{start_hour}, {end_hour})")
        self.start_hour = start_hour
        self.end_hour = end_hour

    def in_window(self, now: datetime) -> bool:
        return self.start_hour <= now.hour < self.end_hour

    def check(self, fingerprint: DeviceFingerprint, now: datetime) -> None:
        """Raise OutsideAccessWindow if ``fingerprint`` may not log in at ``now``."""
        if fingerprint.device_class is not DeviceClass.MOBILE:
            return
        if not self.in_window(now):
            logger.warning(
                "Mobile login denied at %02d:%02d (window %02d:00-%02d:00)",
                now.hour,
                now.minute,
                self.start_hour,
                self.end_hour,
            )
            raise OutsideAccessWindow()
