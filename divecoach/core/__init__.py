"""
Core module for divecoach.

Configuration and the exception hierarchy shared by every other package.
"""

from divecoach.core.config import Settings, get_settings
from divecoach.core.exceptions import (
    CacheError,
    CircuitOpenError,
    CoachError,
    ErrorCode,
    MonitoringError,
    StoreError,
    UpstreamError,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Exceptions
    "ErrorCode",
    "CoachError",
    "UpstreamError",
    "CircuitOpenError",
    "StoreError",
    "CacheError",
    "MonitoringError",
]
