"""
Timestamp utilities for consistent time handling across the system.
"""

import time
from datetime import datetime, timezone
from typing import Optional


def now_iso(timestamp: Optional[float] = None) -> str:
    """Convert timestamp to an ISO-8601 UTC string.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        ISO-8601 string with millisecond precision, e.g. 2024-05-01T12:00:00.000+00:00
    """
    if timestamp is None:
        timestamp = time.time()
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(timespec='milliseconds')

