from __future__ import annotations

from datetime import datetime, timezone

DISPLAY_FORMAT = "%Y/%m/%d %H:%M:%S"

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def from_epoch(value) -> datetime:
    """Exchange timestamps arrive as epoch seconds, sometimes as strings."""
    return datetime.fromtimestamp(int(float(value or 0)), tz=timezone.utc)

def display(dt: datetime) -> str:
    return dt.astimezone().strftime(DISPLAY_FORMAT)
