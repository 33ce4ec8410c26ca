"""
Utility functions shared by the store and the projection code.
"""

import logging
import re
from datetime import date, datetime, timezone

logger = logging.getLogger(__name__)

CALENDAR_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def utc_now_iso() -> str:
    """Server timestamp in ISO-8601 UTC with a Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_calendar_date(value: str) -> date:
    """
    Parse a YYYY-MM-DD calendar date.

    Args:
        value: Date string as stored in the diaries/anniversaries tables

    Returns:
        The parsed date

    Raises:
        ValueError: if the string is not a valid calendar date
    """
    if not isinstance(value, str):
        raise ValueError(f"date must be a string, got {type(value).__name__}")
    # Stored dates are compared as strings, so only the zero-padded form is accepted
    if not CALENDAR_DATE_RE.fullmatch(value):
        raise ValueError(f"date must be YYYY-MM-DD, got {value!r}")
    return date.fromisoformat(value)
