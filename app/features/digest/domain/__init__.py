"""
Domain subpackage for digests.
"""

from .models import (
    DAILY_WINDOWS,
    Digest,
    DigestNotFoundError,
    DigestPreferences,
    WeeklyAction,
    WeeklyCategory,
    WindowType,
)

__all__ = [
    "DAILY_WINDOWS",
    "Digest",
    "DigestNotFoundError",
    "DigestPreferences",
    "WeeklyAction",
    "WeeklyCategory",
    "WindowType",
]
