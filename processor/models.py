"""Data models for event records and synchronization."""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


class RecordKind(str, Enum):
    """Which table a record lives in."""
    EVENT = 'event'
    RECURRING = 'recurring'


class ApprovalState(str, Enum):
    """Approval column values."""
    PENDING = 'Pending'
    APPROVED = 'Approved'
    REJECTED = 'Rejected'

    @classmethod
    def parse(cls, value: Any) -> 'ApprovalState':
        """Match a cell value case-insensitively; anything unknown is Pending."""
        text = str(value or '').strip().lower()
        for state in cls:
            if state.value.lower() == text:
                return state
        return cls.PENDING


class Destination(str, Enum):
    """Calendars an event can be published to."""
    NONE = 'none'
    MEMBER = 'member'
    PUBLIC = 'public'
    BUILDING = 'building'


class Padding(int, Enum):
    """Setup/teardown time added around facility bookings, in minutes."""
    NONE = 0
    THIRTY_MINUTES = 30
    ONE_HOUR = 60
    TWO_HOURS = 120

    @classmethod
    def from_label(cls, label: Any) -> 'Padding':
        """
        Resolve the padding selection cell to a Padding.

        Args:
            label: Cell text such as "30min", "1 hr" or "2 Hours"

        Returns:
            Matching Padding, or Padding.NONE for blank or unknown text
        """
        key = ''.join(str(label or '').lower().split())
        if key in PADDING_LABELS:
            return PADDING_LABELS[key]
        logger.warning(f"Unknown padding selection '{label}', using no padding")
        return cls.NONE


MINUTE_UNITS = ('min', 'mins', 'minute', 'minutes')
HOUR_UNITS = ('hr', 'hrs', 'hour', 'hours')

# Keys are lowercased with whitespace removed
PADDING_LABELS = {
    '': Padding.NONE,
    'none': Padding.NONE,
    '0': Padding.NONE,
    **{f'30{unit}': Padding.THIRTY_MINUTES for unit in MINUTE_UNITS},
    **{f'60{unit}': Padding.ONE_HOUR for unit in MINUTE_UNITS},
    **{f'1{unit}': Padding.ONE_HOUR for unit in HOUR_UNITS},
    **{f'120{unit}': Padding.TWO_HOURS for unit in MINUTE_UNITS},
    **{f'2{unit}': Padding.TWO_HOURS for unit in HOUR_UNITS},
}


@dataclass
class EventRecord:
    """One-shot event row."""
    key: str
    approval_state: ApprovalState
    title: str
    description: str
    calendar_date: str
    start_time: str
    end_time: str
    space_request: str
    audience: str
    padding: Padding
    approver: Optional[str] = None
    facility_event_id: Optional[str] = None
    public_event_id: Optional[str] = None


@dataclass
class RecurringEventRecord:
    """Monthly recurring event row."""
    key: str
    approval_state: ApprovalState
    title: str
    description: str
    ordinal: str
    weekday: str
    start_time: str
    end_time: str
    space_request: str
    audience: str
    padding: Padding
    skip_months: str
    approver: Optional[str] = None
    facility_series_id: Optional[str] = None
    public_series_id: Optional[str] = None


@dataclass
class InstanceRow:
    """One dated occurrence of an approved recurring event, for reporting."""
    record_key: str
    occurrence_date: str
    start: str
    end: str
    title: str
    description: str
    audience: str
    space_request: str
    facility_series_id: Optional[str]
    public_series_id: Optional[str]

    @property
    def instance_id(self) -> str:
        return f"{self.record_key}#{self.occurrence_date}"


@dataclass
class EditEvent:
    """A single field change on a record, as delivered by the trigger."""
    kind: RecordKind
    key: str
    field: str
    old_value: Any
    new_value: Any
    actor: Optional[str] = None


@dataclass
class SyncResult:
    """Result of handling one edit."""
    created: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    instances_rebuilt: Optional[int] = None

    def merge(self, other: 'SyncResult') -> None:
        """Fold another result into this one."""
        self.created += other.created
        self.skipped += other.skipped
        self.errors.extend(other.errors)
        if other.instances_rebuilt is not None:
            self.instances_rebuilt = other.instances_rebuilt
