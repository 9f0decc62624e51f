"""Clock access for block timestamps."""

from datetime import datetime, timezone


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Current UTC time as ISO 8601 with a 'Z' suffix."""
    return now_utc().strftime("%Y-%m-%dT%H:%M:%S.%fZ")
