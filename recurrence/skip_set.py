"""Parsing of the free-text "skip months" column."""
import logging
from typing import FrozenSet, Optional

logger = logging.getLogger(__name__)


def parse_skip_months(raw_text: Optional[str]) -> FrozenSet[int]:
    """
    Parse a comma separated list of month numbers into zero-indexed months.

    Tokens that are not integers in 1..12 are dropped rather than rejected,
    so "3, 7, 13, abc" skips March and July only.

    Args:
        raw_text: Text such as "3, 7" (1 = January)

    Returns:
        Frozen set of zero-indexed months (0 = January)
    """
    if raw_text is None:
        return frozenset()

    months = set()
    for token in str(raw_text).split(','):
        token = token.strip()
        if not token:
            continue
        try:
            month = int(token)
        except ValueError:
            logger.debug(f"Ignoring unparseable skip month token: {token!r}")
            continue
        if 1 <= month <= 12:
            months.add(month - 1)
        else:
            logger.debug(f"Ignoring out of range skip month: {month}")

    return frozenset(months)
