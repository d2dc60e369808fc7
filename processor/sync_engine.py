"""Approval-triggered publication of event records to calendars.

Each record has two independent slots, facility (building calendar) and
public/member, each tracked by a write-once identifier attribute. A slot
moves from UNSYNCED to SYNCED exactly once, when a calendar entry has been
created and its identifier stored. Slots whose destination resolves to
nothing are NOT_APPLICABLE and stay that way.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Tuple, Union

from processor import audience_router
from processor.cell_parsing import combine, parse_date
from processor.config import SyncConfig
from processor.errors import (
    CollaboratorError,
    MissingDataError,
    RoutingAmbiguity,
    ValidationError,
)
from processor.instance_expander import expand_instances
from processor.models import (
    ApprovalState,
    Destination,
    EditEvent,
    EventRecord,
    RecordKind,
    RecurringEventRecord,
    SyncResult,
)
from recurrence.date_math import first_occurrence_in_year
from recurrence.rrule_builder import (
    build_rule,
    ordinal_to_position,
    until_for_year,
    weekday_to_index,
    weekday_to_token,
)

logger = logging.getLogger(__name__)

APPROVAL_FIELD = 'approval_state'
APPROVER_FIELD = 'approver'

# Edits to these fields of an approved recurring record change its instances
EXPANSION_FIELDS = frozenset({
    'title',
    'description',
    'ordinal',
    'weekday',
    'start_time',
    'end_time',
    'audience',
    'space_request',
    'skip_months',
})

SLOT_FIELDS = {
    RecordKind.EVENT: ('facility_event_id', 'public_event_id'),
    RecordKind.RECURRING: ('facility_series_id', 'public_series_id'),
}

# Creates an entry on a calendar for a start/end window and returns its ID
Creator = Callable[[str, datetime, datetime], str]


class SlotState(str, Enum):
    """Synchronization state of one destination slot."""
    NOT_APPLICABLE = 'not_applicable'
    UNSYNCED = 'unsynced'
    SYNCED = 'synced'


@dataclass
class Slot:
    """One destination slot of a record."""
    name: str
    id_field: str
    destination: Destination
    calendar_id: Optional[str]
    current_id: Optional[str]
    padding_minutes: int = 0

    @property
    def state(self) -> SlotState:
        if self.destination is Destination.NONE or not self.calendar_id:
            return SlotState.NOT_APPLICABLE
        if self.current_id:
            return SlotState.SYNCED
        return SlotState.UNSYNCED

    def window(self, start: datetime, end: datetime) -> Tuple[datetime, datetime]:
        """Apply this slot's setup/teardown padding to a start/end window."""
        pad = timedelta(minutes=self.padding_minutes)
        return start - pad, end + pad


class SyncEngine:
    """Handles record edits: publishes approved events and rebuilds instances."""

    def __init__(self, store, calendar, config: SyncConfig):
        """
        Initialize the engine with its collaborators.

        Args:
            store: Record store (see storage.record_store.RecordStore)
            calendar: Calendar client (see calendar_client.google_calendar)
            config: Configuration for this invocation
        """
        self.store = store
        self.calendar = calendar
        self.config = config

    def handle_edit(self, edit: EditEvent) -> SyncResult:
        """
        Handle a single field change on a record.

        Args:
            edit: The triggering change

        Returns:
            SyncResult describing what was created, skipped or failed
        """
        if edit.field == APPROVAL_FIELD:
            return self._handle_approval_change(edit)

        if edit.kind is RecordKind.RECURRING and edit.field in EXPANSION_FIELDS:
            record = self.store.get_recurring_event(edit.key)
            if record and record.approval_state is ApprovalState.APPROVED:
                result = SyncResult()
                result.instances_rebuilt = self.rebuild_instances()
                return result

        logger.debug(f"Ignoring edit of {edit.field} on {edit.kind.value} record {edit.key}")
        return SyncResult()

    def _handle_approval_change(self, edit: EditEvent) -> SyncResult:
        old_state = ApprovalState.parse(edit.old_value)
        new_state = ApprovalState.parse(edit.new_value)
        result = SyncResult()

        if old_state is new_state:
            logger.info(
                f"Approval of {edit.kind.value} record {edit.key} unchanged "
                f"({new_state.value}); nothing to do"
            )
            return result

        logger.info(
            f"{edit.kind.value} record {edit.key} moved from "
            f"{old_state.value} to {new_state.value}"
        )
        if edit.actor:
            self.store.write_field(edit.kind, edit.key, APPROVER_FIELD, edit.actor)

        if new_state is ApprovalState.APPROVED:
            result.merge(self.sync_record(edit.kind, edit.key))

        # Leaving Approved does not delete calendar entries, it only drops the
        # record's instances from the expansion.
        if edit.kind is RecordKind.RECURRING and ApprovalState.APPROVED in (old_state, new_state):
            result.instances_rebuilt = self.rebuild_instances()

        return result

    def sync_record(self, kind: RecordKind, key: str) -> SyncResult:
        """
        Create any missing calendar entries for an approved record.

        Args:
            kind: Record table
            key: Record key

        Returns:
            SyncResult for this record
        """
        if kind is RecordKind.EVENT:
            record = self.store.get_event(key)
        else:
            record = self.store.get_recurring_event(key)

        if record is None:
            logger.warning(f"{kind.value} record {key} not found")
            return SyncResult()

        result = SyncResult()
        try:
            if kind is RecordKind.EVENT:
                self._sync_event(record, result)
            else:
                self._sync_recurring_event(record, result)
        except MissingDataError as e:
            logger.info(f"Not syncing {kind.value} record {key}: {e}")
        except ValidationError as e:
            logger.warning(f"Invalid recurrence on record {key}: {e}")
            result.errors.append(str(e))
            self.store.annotate(kind, key, f"Not published: {e}")

        return result

    def rebuild_instances(self) -> Optional[int]:
        """
        Re-expand all approved recurring records into the instance table.

        Returns:
            Number of instance rows, or None if no target year is configured
        """
        year = self.config.target_year
        if year is None:
            logger.warning("TARGET_YEAR is not configured; skipping instance rebuild")
            return None

        rows = expand_instances(self.store.list_recurring_events(), year)
        self.store.replace_instances(rows)
        return len(rows)

    def _sync_event(self, record: EventRecord, result: SyncResult) -> None:
        self._require_title(record)
        day = parse_date(record.calendar_date)
        start, end = self._window(record, day)

        def create(calendar_id, entry_start, entry_end):
            return self.calendar.create_entry(
                calendar_id,
                record.title,
                entry_start,
                entry_end,
                description=record.description,
                location=record.space_request
            )

        facility_id, public_id = record.facility_event_id, record.public_event_id
        for slot in self._slots(RecordKind.EVENT, record, facility_id, public_id, result):
            self._sync_slot(RecordKind.EVENT, record.key, slot, start, end, create, result)

    def _sync_recurring_event(
        self,
        record: RecurringEventRecord,
        result: SyncResult
    ) -> None:
        year = self.config.target_year
        if year is None:
            logger.warning(
                f"TARGET_YEAR is not configured; recurring record {record.key} not synced"
            )
            return

        weekday_token = weekday_to_token(record.weekday)
        weekday_index = weekday_to_index(record.weekday)
        position = ordinal_to_position(record.ordinal)

        self._require_title(record)
        first = first_occurrence_in_year(year, weekday_index, position)
        start, end = self._window(record, first)
        rule = build_rule(weekday_token, position, until_for_year(year))

        def create(calendar_id, entry_start, entry_end):
            return self.calendar.create_series(
                calendar_id,
                record.title,
                entry_start,
                entry_end,
                rule,
                description=record.description,
                location=record.space_request
            )

        facility_id, public_id = record.facility_series_id, record.public_series_id
        for slot in self._slots(RecordKind.RECURRING, record, facility_id, public_id, result):
            self._sync_slot(RecordKind.RECURRING, record.key, slot, start, end, create, result)

    def _slots(
        self,
        kind: RecordKind,
        record: Union[EventRecord, RecurringEventRecord],
        facility_id: Optional[str],
        public_id: Optional[str],
        result: SyncResult
    ) -> Tuple[Slot, Slot]:
        facility_field, public_field = SLOT_FIELDS[kind]

        facility_destination = audience_router.resolve_facility_destination(
            record.space_request
        )
        try:
            public_destination = audience_router.route(record.audience)
        except RoutingAmbiguity as e:
            public_destination = Destination.NONE
            result.errors.append(str(e))
            self.store.annotate(kind, record.key, str(e))

        slots = (
            Slot(
                name='facility',
                id_field=facility_field,
                destination=facility_destination,
                calendar_id=self.config.calendar_id_for(facility_destination),
                current_id=facility_id,
                padding_minutes=int(record.padding)
            ),
            Slot(
                name='public',
                id_field=public_field,
                destination=public_destination,
                calendar_id=self.config.calendar_id_for(public_destination),
                current_id=public_id
            ),
        )

        for slot in slots:
            if slot.destination is not Destination.NONE and not slot.calendar_id:
                logger.warning(
                    f"No calendar configured for {slot.destination.value}; "
                    f"{slot.name} slot of record {record.key} unavailable"
                )
        return slots

    def _sync_slot(
        self,
        kind: RecordKind,
        key: str,
        slot: Slot,
        start: datetime,
        end: datetime,
        create: Creator,
        result: SyncResult
    ) -> None:
        state = slot.state
        if state is SlotState.NOT_APPLICABLE:
            return
        if state is SlotState.SYNCED:
            logger.info(f"{slot.name} slot of record {key} already synced as {slot.current_id}")
            result.skipped += 1
            return

        entry_start, entry_end = slot.window(start, end)
        try:
            entry_id = create(slot.calendar_id, entry_start, entry_end)
        except CollaboratorError as e:
            message = f"Could not create {slot.destination.value} calendar entry: {e}"
            logger.error(message, extra={'record_key': key, 'slot': slot.name})
            result.errors.append(message)
            self.store.annotate(kind, key, message)
            return

        if self.store.write_identifier(kind, key, slot.id_field, entry_id):
            slot.current_id = entry_id
            result.created += 1
        else:
            message = (
                f"{slot.id_field} was set by another run; "
                f"calendar entry {entry_id} is a duplicate"
            )
            result.errors.append(message)
            self.store.annotate(kind, key, message)

    def _require_title(self, record) -> None:
        if not record.title.strip():
            raise MissingDataError(f"record {record.key} has no title")

    def _window(self, record, day) -> Tuple[datetime, datetime]:
        start = combine(day, record.start_time)
        end = combine(day, record.end_time)
        if start is None or end is None:
            raise MissingDataError(f"record {record.key} has no resolvable start/end")
        return start, end
