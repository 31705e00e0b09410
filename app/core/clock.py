from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """
    Attach UTC to naive datetimes.

    Some backends (SQLite) hand timestamps back without tzinfo even though
    we always store UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def money(value) -> Decimal:
    """Quantize an amount to cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
