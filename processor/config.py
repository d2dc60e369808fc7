"""Configuration read once per invocation from a key/value source."""
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from processor.models import Destination

logger = logging.getLogger(__name__)

DEFAULT_TIME_ZONE = 'America/New_York'


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class SyncConfig:
    """Calendar IDs and the target year for one invocation.

    A missing value means the related destination or feature is unavailable.
    """
    member_calendar_id: Optional[str] = None
    public_calendar_id: Optional[str] = None
    building_calendar_id: Optional[str] = None
    target_year: Optional[int] = None
    time_zone: str = DEFAULT_TIME_ZONE

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> 'SyncConfig':
        """
        Build a SyncConfig from environment-style keys.

        Args:
            values: Mapping such as os.environ

        Returns:
            SyncConfig with unavailable entries set to None
        """
        target_year = None
        raw_year = _clean(values.get('TARGET_YEAR'))
        if raw_year:
            try:
                target_year = int(raw_year)
            except ValueError:
                logger.warning(f"Ignoring invalid TARGET_YEAR: {raw_year!r}")

        return cls(
            member_calendar_id=_clean(values.get('MEMBER_CALENDAR_ID')),
            public_calendar_id=_clean(values.get('PUBLIC_CALENDAR_ID')),
            building_calendar_id=_clean(values.get('BUILDING_CALENDAR_ID')),
            target_year=target_year,
            time_zone=_clean(values.get('TIME_ZONE')) or DEFAULT_TIME_ZONE
        )

    def calendar_id_for(self, destination: Destination) -> Optional[str]:
        """Return the configured calendar ID for a destination, if any."""
        return {
            Destination.MEMBER: self.member_calendar_id,
            Destination.PUBLIC: self.public_calendar_id,
            Destination.BUILDING: self.building_calendar_id,
        }.get(destination)
