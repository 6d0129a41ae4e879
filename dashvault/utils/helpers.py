"""General-purpose utility helpers."""
import threading
import uuid
from datetime import datetime, timedelta, timezone

_clock_lock = threading.Lock()
_last_timestamp: datetime | None = None


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a new UUID4 string identifier."""
    return str(uuid.uuid4())


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp, strictly increasing within this process.

    Timestamps drive sort keys, so two captures made in the same microsecond
    are nudged apart instead of colliding.
    """
    global _last_timestamp
    with _clock_lock:
        now = utc_now()
        if _last_timestamp is not None and now <= _last_timestamp:
            now = _last_timestamp + timedelta(microseconds=1)
        _last_timestamp = now
    return now.isoformat(timespec="microseconds").replace("+00:00", "Z")


def sanitize_path_segment(value: str) -> str:
    """Make a timestamp safe as a storage path segment (``:`` and ``.`` to ``-``)."""
    return value.replace(":", "-").replace(".", "-")
