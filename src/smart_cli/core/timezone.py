"""Central clock for log timestamps and the health probe.

All timestamps written by the service should come from `now()` or
`iso_timestamp()` in this module instead of `datetime.now()` so the
history file uses one timezone throughout.

The default timezone is UTC. This can be overridden by setting the
SERVER_TIMEZONE env var.
"""

import os
from datetime import datetime
from zoneinfo import ZoneInfo

# UTC unless SERVER_TIMEZONE says otherwise
_tz_name = os.getenv("SERVER_TIMEZONE", "UTC")
SERVER_TZ = ZoneInfo(_tz_name)


def now() -> datetime:
    """Get current time in the server timezone (default: UTC)."""
    return datetime.now(SERVER_TZ)


def iso_timestamp(dt: datetime = None) -> str:
    """ISO-8601 timestamp with millisecond precision, ``Z`` suffix for UTC."""
    if dt is None:
        dt = now()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=SERVER_TZ)
    text = dt.isoformat(timespec="milliseconds")
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text
