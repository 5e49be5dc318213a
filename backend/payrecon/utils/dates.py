"""
Date helpers shared by the ledger and the gateway adapters.
"""
from datetime import datetime, timezone
from typing import Optional


def format_payment_date(value: datetime) -> str:
    """Ledger payment dates are stored as YYYYMMDD strings."""
    return value.strftime("%Y%m%d")


def from_epoch_seconds(value) -> Optional[datetime]:
    if value in (None, "", 0):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def parse_iso_datetime(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into naive UTC; None when unreadable."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
