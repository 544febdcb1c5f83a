"""Utility functions for aioliveradio."""

from __future__ import annotations

import re

from aioliveradio.models.types import DeviceClass

_IOS_PATTERN = re.compile(r"iPad|iPhone|iPod")
_ANDROID_PATTERN = re.compile(r"Android", re.IGNORECASE)


def detect_device_class(user_agent: str | None) -> DeviceClass:
    """Classify a client from its user-agent string.

    Anything that is neither iOS nor Android, including a missing user agent,
    is treated as a desktop client.
    """
    if not user_agent:
        return DeviceClass.DESKTOP
    if _IOS_PATTERN.search(user_agent):
        return DeviceClass.IOS
    if _ANDROID_PATTERN.search(user_agent):
        return DeviceClass.ANDROID
    return DeviceClass.DESKTOP
