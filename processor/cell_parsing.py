"""Parsing of date and time cells as entered by the intake form."""
import logging
from datetime import date, datetime, time
from typing import Any, Optional

logger = logging.getLogger(__name__)

DATE_FORMATS = [
    '%Y-%m-%d',      # ISO 8601
    '%m/%d/%Y',      # US format
    '%m-%d-%Y',      # US format with dashes
    '%B %d, %Y',     # Full month name
    '%b %d, %Y',     # Abbreviated month name
    '%Y/%m/%d',      # Alternative ISO format
]

TIME_FORMATS = [
    '%H:%M',         # 24-hour format
    '%I:%M %p',      # 12-hour format with AM/PM
    '%I:%M%p',       # 12-hour format without space
    '%H:%M:%S',      # 24-hour with seconds
    '%I:%M:%S %p',   # 12-hour with seconds and AM/PM
    '%I %p',         # Hour only, e.g. "6 PM"
]


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a date cell.

    Args:
        value: Date string in one of DATE_FORMATS

    Returns:
        date object or None if parsing fails
    """
    if not value:
        return None
    text = str(value).strip()

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    logger.debug(f"Unparseable date cell: {text!r}")
    return None


def parse_time(value: Any) -> Optional[time]:
    """
    Parse a time-of-day cell.

    Args:
        value: Time string in one of TIME_FORMATS

    Returns:
        time object or None if parsing fails
    """
    if not value:
        return None
    text = str(value).strip().upper()

    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue

    logger.debug(f"Unparseable time cell: {text!r}")
    return None


def combine(day: Optional[date], time_value: Any) -> Optional[datetime]:
    """Combine a date with a time cell into a naive local datetime."""
    parsed = parse_time(time_value)
    if day is None or parsed is None:
        return None
    return datetime.combine(day, parsed)
