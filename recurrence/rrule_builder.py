"""Serialization of monthly weekday recurrences into RRULE strings."""
from datetime import datetime, timezone
from typing import Optional

from processor.errors import ValidationError

WEEKDAY_TOKENS = {
    'sunday': 'SU',
    'monday': 'MO',
    'tuesday': 'TU',
    'wednesday': 'WE',
    'thursday': 'TH',
    'friday': 'FR',
    'saturday': 'SA',
}

# Sunday=0 .. Saturday=6, matching recurrence.date_math
WEEKDAY_INDEXES = {name: index for index, name in enumerate(WEEKDAY_TOKENS)}

ORDINAL_POSITIONS = {
    'every': None,
    'first': 1,
    'second': 2,
    'third': 3,
    'fourth': 4,
}

UNTIL_FORMAT = '%Y%m%dT%H%M%SZ'


def _normalize_label(label) -> str:
    return str(label or '').strip().lower()


def weekday_to_token(weekday_name: str) -> str:
    """
    Map a weekday name to its two letter RRULE token.

    Args:
        weekday_name: Full weekday name, case-insensitive (e.g. "Tuesday")

    Returns:
        Token such as "TU"

    Raises:
        ValidationError: If the name is not a weekday
    """
    token = WEEKDAY_TOKENS.get(_normalize_label(weekday_name))
    if token is None:
        raise ValidationError(f"Unknown weekday: '{weekday_name}'")
    return token


def weekday_to_index(weekday_name: str) -> int:
    """Map a weekday name to Sunday=0 .. Saturday=6, or raise ValidationError."""
    index = WEEKDAY_INDEXES.get(_normalize_label(weekday_name))
    if index is None:
        raise ValidationError(f"Unknown weekday: '{weekday_name}'")
    return index


def ordinal_to_position(ordinal_label: str) -> Optional[int]:
    """
    Map an ordinal selection to a BYSETPOS value.

    Args:
        ordinal_label: One of Every, First, Second, Third, Fourth

    Returns:
        1-4, or None for "Every"

    Raises:
        ValidationError: If the label is not recognized
    """
    normalized = _normalize_label(ordinal_label)
    if normalized not in ORDINAL_POSITIONS:
        raise ValidationError(f"Unknown ordinal: '{ordinal_label}'")
    return ORDINAL_POSITIONS[normalized]


def until_for_year(year: int) -> datetime:
    """Return 23:59:59 UTC on December 31 of the given year."""
    return datetime(year, 12, 31, 23, 59, 59, tzinfo=timezone.utc)


def build_rule(
    weekday_token: str,
    position: Optional[int],
    until: datetime
) -> str:
    """
    Build a monthly RRULE body (without the "RRULE:" prefix).

    BYSETPOS, when present, is emitted before BYDAY.

    Args:
        weekday_token: Two letter weekday token (e.g. "TU")
        position: 1-4, or None for every occurrence of the weekday
        until: Aware datetime for the UNTIL bound

    Returns:
        Rule such as "FREQ=MONTHLY;BYSETPOS=2;BYDAY=TU;WKST=SU;UNTIL=20261231T235959Z"
    """
    if weekday_token not in WEEKDAY_TOKENS.values():
        raise ValidationError(f"Unknown weekday token: '{weekday_token}'")
    if until.tzinfo is None:
        raise ValueError("until must be timezone-aware")

    parts = ['FREQ=MONTHLY']
    if position is not None:
        parts.append(f"BYSETPOS={int(position)}")
    parts.append(f"BYDAY={weekday_token}")
    parts.append('WKST=SU')
    parts.append(f"UNTIL={until.astimezone(timezone.utc).strftime(UNTIL_FORMAT)}")
    return ';'.join(parts)
