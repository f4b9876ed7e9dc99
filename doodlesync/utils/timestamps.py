from datetime import datetime, timezone
from typing import Any


_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a backend timestamp permissively.

    Fractional-second ISO-8601 is tried first, then whole-second ISO-8601.
    Values without an offset (and naive BSON datetimes) are taken as UTC.
    Anything else raises ValueError.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise ValueError(f"Invalid date: {value!r}")
    text = value.strip()
    for fmt in _FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Invalid date: {value!r}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
