"""Date arithmetic for monthly weekday recurrences."""
import calendar
from datetime import date
from typing import List, Optional

MAX_ORDINAL = 4


def weekday_of(day: date) -> int:
    """Return the weekday index of a date with Sunday=0 .. Saturday=6."""
    return (day.weekday() + 1) % 7


def occurrences_in_month(
    year: int,
    month0: int,
    weekday_index: int,
    ordinal: Optional[int] = None
) -> List[date]:
    """
    Compute the dates in a month that fall on a given weekday.

    Args:
        year: Four digit year
        month0: Zero-indexed month (0 = January)
        weekday_index: Target weekday, Sunday=0 .. Saturday=6
        ordinal: 1-4 for the Nth occurrence, None for every occurrence

    Returns:
        Ascending list of dates. Empty when the month has fewer than
        ``ordinal`` occurrences of the weekday.
    """
    if not 0 <= month0 <= 11:
        raise ValueError(f"month0 must be in 0..11, got {month0}")
    if not 0 <= weekday_index <= 6:
        raise ValueError(f"weekday_index must be in 0..6, got {weekday_index}")
    if ordinal is not None and not 1 <= ordinal <= MAX_ORDINAL:
        raise ValueError(f"ordinal must be in 1..{MAX_ORDINAL} or None, got {ordinal}")

    month = month0 + 1
    first_weekday = weekday_of(date(year, month, 1))
    days_in_month = calendar.monthrange(year, month)[1]

    delta = (weekday_index - first_weekday + 7) % 7
    first_match = 1 + delta

    if ordinal is None:
        return [
            date(year, month, day)
            for day in range(first_match, days_in_month + 1, 7)
        ]

    day = first_match + (ordinal - 1) * 7
    if day > days_in_month:
        return []
    return [date(year, month, day)]


def first_occurrence_in_year(
    year: int,
    weekday_index: int,
    ordinal: Optional[int] = None
) -> Optional[date]:
    """
    Find the first date in a year matching a weekday/ordinal combination.

    Args:
        year: Four digit year
        weekday_index: Target weekday, Sunday=0 .. Saturday=6
        ordinal: 1-4 for the Nth occurrence, None for every occurrence

    Returns:
        The earliest matching date, or None if no month has one
    """
    for month0 in range(12):
        dates = occurrences_in_month(year, month0, weekday_index, ordinal)
        if dates:
            return dates[0]
    return None
