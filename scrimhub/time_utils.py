from datetime import UTC, datetime


def utcnow_naive():
    """Return current UTC timestamp as naive datetime for DB timestamp columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def seconds_until(deadline, now=None):
    """Whole seconds left before ``deadline`` (never negative)."""
    if deadline is None:
        return 0
    now = now or utcnow_naive()
    return max(0, int((deadline - now).total_seconds()))


def isoformat_or_none(value):
    return value.isoformat() if value else None
