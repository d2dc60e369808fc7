"""Classification of free-text audience and space fields into calendars."""
import logging
from typing import Any, List, Tuple

from processor.errors import RoutingAmbiguity
from processor.models import Destination

logger = logging.getLogger(__name__)

# Checked in order; the first keyword found in the audience text wins.
# "private" comes first so a private event is never published.
AUDIENCE_RULES: List[Tuple[str, Destination]] = [
    ('private', Destination.NONE),
    ('members', Destination.MEMBER),
    ('general public', Destination.PUBLIC),
    ('public', Destination.PUBLIC),
]


def _normalize(text: Any) -> str:
    return str(text or '').strip().lower()


def is_private(audience_text: str) -> bool:
    """Return True if the audience text marks the event as private."""
    return 'private' in _normalize(audience_text)


def resolve_destination(audience_text: str) -> Destination:
    """
    Map audience text to the calendar it should be published on.

    Args:
        audience_text: Free text such as "General Public" or "Members and Friends"

    Returns:
        Destination.MEMBER, Destination.PUBLIC, or Destination.NONE
    """
    normalized = _normalize(audience_text)
    for keyword, destination in AUDIENCE_RULES:
        if keyword in normalized:
            return destination
    return Destination.NONE


def route(audience_text: str) -> Destination:
    """
    Like resolve_destination, but complain about unclassifiable text.

    Raises:
        RoutingAmbiguity: If nothing matched and the text is not private
    """
    destination = resolve_destination(audience_text)
    if destination is Destination.NONE and not is_private(audience_text):
        raise RoutingAmbiguity(str(audience_text or ''))
    return destination


def resolve_facility_destination(space_request: str) -> Destination:
    """Return Destination.BUILDING if any building space was requested."""
    if _normalize(space_request):
        return Destination.BUILDING
    return Destination.NONE
