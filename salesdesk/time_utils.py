from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Server-side 'now' in UTC."""
    return datetime.now(timezone.utc)


def today() -> date:
    return utcnow().date()
