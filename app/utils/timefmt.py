from datetime import datetime, timezone


def ensure_utc(value: datetime) -> datetime:
    # naive timestamps are taken to be UTC already
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    """Render a timestamp as RFC 3339 in UTC, e.g. ``2024-01-01T00:00:00Z``.

    Fractional seconds are only written when the timestamp has them.
    """
    value = ensure_utc(value)
    timespec = "microseconds" if value.microsecond else "seconds"
    return value.replace(tzinfo=None).isoformat(timespec=timespec) + "Z"


def parse_rfc3339(text: str) -> datetime:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
