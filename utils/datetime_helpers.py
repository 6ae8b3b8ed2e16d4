"""
Datetime helper utilities to ensure consistent timezone handling across the application.

All payment tables store timezone-naive UTC datetimes (DateTime(timezone=False)).
Provider timestamps arrive as ISO-8601 strings with a "Z" suffix and must be
normalised before they are compared with stored values.
"""

from datetime import datetime, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def ensure_naive_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert timezone-aware datetime to naive UTC datetime.

    Args:
        dt: Datetime that may be timezone-aware or naive

    Returns:
        Naive datetime in UTC, or None if input is None

    Example:
        >>> aware_dt = datetime.now(timezone.utc)
        >>> naive_dt = ensure_naive_datetime(aware_dt)
        >>> assert naive_dt.tzinfo is None
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        # Convert to UTC and remove timezone info
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.replace(tzinfo=None)

    return dt


def get_naive_utc_now() -> datetime:
    """
    Get current UTC time as naive datetime.

    Returns:
        Current UTC time without timezone info

    Example:
        >>> now = get_naive_utc_now()
        >>> assert now.tzinfo is None
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_provider_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 provider timestamp into a naive UTC datetime.

    Example:
        >>> parse_provider_timestamp("2024-05-01T12:00:00.000Z")
        datetime.datetime(2024, 5, 1, 12, 0)
    """
    if not value:
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"⚠️ TIMESTAMP_PARSE: Unrecognised provider timestamp {value!r}")
        return None

    return ensure_naive_datetime(parsed)
