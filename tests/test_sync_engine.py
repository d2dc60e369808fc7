"""Unit tests for SyncEngine."""
import copy
from datetime import datetime
from unittest.mock import Mock

import pytest

from processor.config import SyncConfig
from processor.errors import CollaboratorError
from processor.models import (
    ApprovalState,
    Destination,
    EditEvent,
    EventRecord,
    Padding,
    RecordKind,
    RecurringEventRecord,
)
from processor.sync_engine import Slot, SlotState, SyncEngine


class FakeRecordStore:
    """In-memory stand-in for RecordStore that records every write."""

    def __init__(self, events=(), recurring=()):
        self.records = {
            RecordKind.EVENT: {record.key: record for record in events},
            RecordKind.RECURRING: {record.key: record for record in recurring},
        }
        self.writes = []
        self.notes = []
        self.instances = None

    def get_event(self, key):
        return copy.deepcopy(self.records[RecordKind.EVENT].get(key))

    def get_recurring_event(self, key):
        return copy.deepcopy(self.records[RecordKind.RECURRING].get(key))

    def list_recurring_events(self):
        return [copy.deepcopy(r) for r in self.records[RecordKind.RECURRING].values()]

    def write_field(self, kind, key, field, value):
        self.writes.append((kind, key, field, value))
        setattr(self.records[kind][key], field, value)

    def write_identifier(self, kind, key, field, value):
        record = self.records[kind][key]
        if getattr(record, field):
            return False
        self.writes.append((kind, key, field, value))
        setattr(record, field, value)
        return True

    def annotate(self, kind, key, message):
        self.notes.append((kind, key, message))

    def replace_instances(self, rows):
        self.instances = list(rows)
        return len(self.instances)


@pytest.fixture
def config():
    """Configuration with all calendars and the 2026 target year."""
    return SyncConfig(
        member_calendar_id='member-cal',
        public_calendar_id='public-cal',
        building_calendar_id='building-cal',
        target_year=2026
    )


@pytest.fixture
def calendar():
    """Mock calendar client returning predictable IDs."""
    client = Mock()
    client.create_entry.return_value = 'entry-1'
    client.create_series.return_value = 'series-1'
    return client


def make_event(**overrides):
    values = dict(
        key='E1',
        approval_state=ApprovalState.APPROVED,
        title='Spring Concert',
        description='Choir and band',
        calendar_date='2026-05-03',
        start_time='18:00',
        end_time='20:00',
        space_request='',
        audience='General Public',
        padding=Padding.NONE,
    )
    values.update(overrides)
    return EventRecord(**values)


def make_recurring(**overrides):
    values = dict(
        key='R1',
        approval_state=ApprovalState.APPROVED,
        title='Book Group',
        description='Monthly discussion',
        ordinal='Second',
        weekday='Tuesday',
        start_time='18:00',
        end_time='20:00',
        space_request='',
        audience='Members',
        padding=Padding.NONE,
        skip_months='3,7',
    )
    values.update(overrides)
    return RecurringEventRecord(**values)


def approval(kind, key, old='Pending', new='Approved', actor=None):
    return EditEvent(
        kind=kind,
        key=key,
        field='approval_state',
        old_value=old,
        new_value=new,
        actor=actor
    )


class TestSlot:
    """Test cases for the slot state machine."""

    def test_no_destination_is_not_applicable(self):
        """Test that a slot without destination never syncs."""
        slot = Slot('public', 'public_event_id', Destination.NONE, None, None)
        assert slot.state is SlotState.NOT_APPLICABLE

    def test_unconfigured_calendar_is_not_applicable(self):
        """Test that a destination without a calendar ID is unavailable."""
        slot = Slot('public', 'public_event_id', Destination.PUBLIC, None, None)
        assert slot.state is SlotState.NOT_APPLICABLE

    def test_unsynced_and_synced(self):
        """Test the transition from unsynced to synced."""
        slot = Slot('public', 'public_event_id', Destination.PUBLIC, 'cal', None)
        assert slot.state is SlotState.UNSYNCED

        slot.current_id = 'entry-1'
        assert slot.state is SlotState.SYNCED

    def test_padding_window(self):
        """Test that padding widens the window on both sides."""
        slot = Slot('facility', 'facility_event_id', Destination.BUILDING, 'cal', None, 30)
        start, end = slot.window(datetime(2026, 5, 3, 18), datetime(2026, 5, 3, 20))

        assert start == datetime(2026, 5, 3, 17, 30)
        assert end == datetime(2026, 5, 3, 20, 30)


class TestOneShotSync:
    """Test cases for approving one-shot events."""

    def test_public_event_without_space(self, config, calendar):
        """Test that only the public slot is created when no space is booked."""
        store = FakeRecordStore(events=[make_event()])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(approval(RecordKind.EVENT, 'E1'))

        calendar.create_entry.assert_called_once_with(
            'public-cal',
            'Spring Concert',
            datetime(2026, 5, 3, 18, 0),
            datetime(2026, 5, 3, 20, 0),
            description='Choir and band',
            location=''
        )
        record = store.records[RecordKind.EVENT]['E1']
        assert record.facility_event_id is None
        assert record.public_event_id == 'entry-1'
        assert result.created == 1
        assert result.errors == []
        assert store.instances is None

    def test_reapproval_is_a_no_op(self, config, calendar):
        """Test that Approved -> Approved makes no calls and no writes."""
        store = FakeRecordStore(events=[make_event()])
        engine = SyncEngine(store, calendar, config)
        engine.handle_edit(approval(RecordKind.EVENT, 'E1', actor='pat@example.org'))
        calendar.reset_mock()
        writes_before = list(store.writes)

        result = engine.handle_edit(
            approval(RecordKind.EVENT, 'E1', old='Approved', actor='pat@example.org')
        )

        assert calendar.method_calls == []
        assert store.writes == writes_before
        assert store.notes == []
        assert result.created == 0

    def test_facility_slot_is_padded(self, config, calendar):
        """Test that building bookings include setup/teardown padding."""
        store = FakeRecordStore(events=[make_event(
            space_request='Fellowship Hall',
            audience='Private',
            padding=Padding.ONE_HOUR
        )])
        engine = SyncEngine(store, calendar, config)

        engine.handle_edit(approval(RecordKind.EVENT, 'E1'))

        calendar.create_entry.assert_called_once_with(
            'building-cal',
            'Spring Concert',
            datetime(2026, 5, 3, 17, 0),
            datetime(2026, 5, 3, 21, 0),
            description='Choir and band',
            location='Fellowship Hall'
        )
        record = store.records[RecordKind.EVENT]['E1']
        assert record.facility_event_id == 'entry-1'
        assert record.public_event_id is None
        assert store.notes == []

    def test_both_slots(self, config, calendar):
        """Test a members event with a space request creates two entries."""
        calendar.create_entry.side_effect = ['fac-1', 'mem-1']
        store = FakeRecordStore(events=[make_event(
            space_request='Sanctuary',
            audience='Members',
            padding=Padding.THIRTY_MINUTES
        )])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(approval(RecordKind.EVENT, 'E1'))

        calls = calendar.create_entry.call_args_list
        assert calls[0].args[0] == 'building-cal'
        assert calls[0].args[2] == datetime(2026, 5, 3, 17, 30)
        assert calls[1].args[0] == 'member-cal'
        assert calls[1].args[2] == datetime(2026, 5, 3, 18, 0)
        record = store.records[RecordKind.EVENT]['E1']
        assert record.facility_event_id == 'fac-1'
        assert record.public_event_id == 'mem-1'
        assert result.created == 2

    def test_partial_failure_keeps_other_slot(self, config, calendar):
        """Test that a failing facility call does not block the public slot."""
        calendar.create_entry.side_effect = [
            CollaboratorError('Calendar API error (403): Forbidden', status_code=403),
            'pub-1'
        ]
        store = FakeRecordStore(events=[make_event(space_request='Sanctuary')])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(approval(RecordKind.EVENT, 'E1'))

        record = store.records[RecordKind.EVENT]['E1']
        assert record.facility_event_id is None
        assert record.public_event_id == 'pub-1'
        assert result.created == 1
        assert len(result.errors) == 1
        assert len(store.notes) == 1
        assert 'Forbidden' in store.notes[0][2]

    def test_existing_identifier_is_not_recreated(self, config, calendar):
        """Test that a slot with an identifier is skipped."""
        store = FakeRecordStore(events=[make_event(
            space_request='Sanctuary',
            facility_event_id='existing'
        )])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(approval(RecordKind.EVENT, 'E1', old='Rejected'))

        calendar.create_entry.assert_called_once()
        assert calendar.create_entry.call_args.args[0] == 'public-cal'
        record = store.records[RecordKind.EVENT]['E1']
        assert record.facility_event_id == 'existing'
        assert result.skipped == 1

    def test_retry_after_round_trip(self, config, calendar):
        """Test that a failed slot is retried after leaving and re-entering Approved."""
        calendar.create_entry.side_effect = [CollaboratorError('timeout'), 'pub-1']
        store = FakeRecordStore(events=[make_event()])
        engine = SyncEngine(store, calendar, config)

        engine.handle_edit(approval(RecordKind.EVENT, 'E1'))
        assert store.records[RecordKind.EVENT]['E1'].public_event_id is None

        engine.handle_edit(approval(RecordKind.EVENT, 'E1', old='Approved', new='Pending'))
        engine.handle_edit(approval(RecordKind.EVENT, 'E1'))

        assert store.records[RecordKind.EVENT]['E1'].public_event_id == 'pub-1'
        assert calendar.create_entry.call_count == 2

    def test_missing_title_is_silent(self, config, calendar):
        """Test that incomplete records are skipped without annotation."""
        store = FakeRecordStore(events=[make_event(title='  ')])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(approval(RecordKind.EVENT, 'E1'))

        assert calendar.method_calls == []
        assert store.writes == []
        assert store.notes == []
        assert result.errors == []

    def test_unresolvable_times_are_silent(self, config, calendar):
        """Test that unparseable dates or times are skipped silently."""
        store = FakeRecordStore(events=[make_event(calendar_date='someday')])
        engine = SyncEngine(store, calendar, config)

        engine.handle_edit(approval(RecordKind.EVENT, 'E1'))

        assert calendar.method_calls == []
        assert store.notes == []

    def test_unclassified_audience_is_annotated(self, config, calendar):
        """Test that ambiguous audience text is noted and not published."""
        store = FakeRecordStore(events=[make_event(
            audience='Staff only',
            space_request='Office'
        )])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(approval(RecordKind.EVENT, 'E1'))

        calendar.create_entry.assert_called_once()
        assert calendar.create_entry.call_args.args[0] == 'building-cal'
        assert len(store.notes) == 1
        assert 'Staff only' in store.notes[0][2]
        assert store.records[RecordKind.EVENT]['E1'].public_event_id is None
        assert len(result.errors) == 1

    def test_private_audience_is_not_annotated(self, config, calendar):
        """Test that private events are silently not published."""
        store = FakeRecordStore(events=[make_event(audience='Private Event for Members')])
        engine = SyncEngine(store, calendar, config)

        engine.handle_edit(approval(RecordKind.EVENT, 'E1'))

        assert calendar.method_calls == []
        assert store.notes == []

    def test_unconfigured_calendar_is_skipped(self, calendar):
        """Test that a missing calendar ID makes the slot unavailable."""
        store = FakeRecordStore(events=[make_event()])
        engine = SyncEngine(store, calendar, SyncConfig(target_year=2026))

        result = engine.handle_edit(approval(RecordKind.EVENT, 'E1'))

        assert calendar.method_calls == []
        assert result.created == 0

    def test_approver_identity_recorded(self, config, calendar):
        """Test that the editing user is stored as approver."""
        store = FakeRecordStore(events=[make_event()])
        engine = SyncEngine(store, calendar, config)

        engine.handle_edit(approval(RecordKind.EVENT, 'E1', actor='pat@example.org'))

        assert (RecordKind.EVENT, 'E1', 'approver', 'pat@example.org') in store.writes

    def test_rejection_creates_nothing(self, config, calendar):
        """Test that rejecting a pending event only records the approver."""
        store = FakeRecordStore(events=[make_event(approval_state=ApprovalState.REJECTED)])
        engine = SyncEngine(store, calendar, config)

        engine.handle_edit(approval(
            RecordKind.EVENT, 'E1', new='Rejected', actor='pat@example.org'
        ))

        assert calendar.method_calls == []
        assert store.writes == [(RecordKind.EVENT, 'E1', 'approver', 'pat@example.org')]

    def test_other_field_edit_ignored(self, config, calendar):
        """Test that non-approval edits on one-shot events do nothing."""
        store = FakeRecordStore(events=[make_event()])
        engine = SyncEngine(store, calendar, config)

        engine.handle_edit(EditEvent(RecordKind.EVENT, 'E1', 'title', 'Old', 'New'))

        assert calendar.method_calls == []
        assert store.writes == []

    def test_missing_record(self, config, calendar):
        """Test that an edit for an unknown record does nothing."""
        store = FakeRecordStore()
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(approval(RecordKind.EVENT, 'nope'))

        assert calendar.method_calls == []
        assert result.created == 0


class TestRecurringSync:
    """Test cases for approving recurring events."""

    def test_series_created_and_instances_rebuilt(self, config, calendar):
        """Test series creation for a second-Tuesday event."""
        store = FakeRecordStore(recurring=[make_recurring()])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(approval(RecordKind.RECURRING, 'R1'))

        calendar.create_series.assert_called_once_with(
            'member-cal',
            'Book Group',
            datetime(2026, 1, 13, 18, 0),
            datetime(2026, 1, 13, 20, 0),
            'FREQ=MONTHLY;BYSETPOS=2;BYDAY=TU;WKST=SU;UNTIL=20261231T235959Z',
            description='Monthly discussion',
            location=''
        )
        calendar.create_entry.assert_not_called()
        assert store.records[RecordKind.RECURRING]['R1'].public_series_id == 'series-1'
        assert result.created == 1
        assert result.instances_rebuilt == 10
        assert len(store.instances) == 10
        assert all(row.public_series_id == 'series-1' for row in store.instances)
        assert all(row.start.endswith('T18:00:00') for row in store.instances)

    def test_every_weekday_rule(self, config, calendar):
        """Test that "Every" creates a rule without BYSETPOS."""
        store = FakeRecordStore(recurring=[make_recurring(ordinal='Every', weekday='Friday')])
        engine = SyncEngine(store, calendar, config)

        engine.handle_edit(approval(RecordKind.RECURRING, 'R1'))

        args = calendar.create_series.call_args.args
        assert args[2] == datetime(2026, 1, 2, 18, 0)
        assert args[4] == 'FREQ=MONTHLY;BYDAY=FR;WKST=SU;UNTIL=20261231T235959Z'

    def test_invalid_weekday_is_inert(self, config, calendar):
        """Test that unknown recurrence labels block sync and are annotated."""
        store = FakeRecordStore(recurring=[make_recurring(weekday='Caturday')])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(approval(RecordKind.RECURRING, 'R1'))

        assert calendar.method_calls == []
        assert len(store.notes) == 1
        assert 'Caturday' in store.notes[0][2]
        assert len(result.errors) == 1
        assert store.instances == []

    def test_leaving_approved_rebuilds_without_delete(self, config, calendar):
        """Test that rejection drops instances but leaves the series alone."""
        record = make_recurring(
            approval_state=ApprovalState.REJECTED,
            public_series_id='series-1'
        )
        store = FakeRecordStore(recurring=[record])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(
            approval(RecordKind.RECURRING, 'R1', old='Approved', new='Rejected')
        )

        assert calendar.method_calls == []
        assert store.instances == []
        assert result.instances_rebuilt == 0
        assert store.records[RecordKind.RECURRING]['R1'].public_series_id == 'series-1'

    def test_skip_months_edit_rebuilds_only(self, config, calendar):
        """Test that editing skip months re-expands without touching series IDs."""
        store = FakeRecordStore(recurring=[make_recurring(
            skip_months='1,2,3',
            public_series_id='series-1'
        )])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(
            EditEvent(RecordKind.RECURRING, 'R1', 'skip_months', '3,7', '1,2,3')
        )

        assert calendar.method_calls == []
        assert store.writes == []
        assert result.instances_rebuilt == 9

    def test_skip_months_edit_on_pending_record(self, config, calendar):
        """Test that edits to unapproved records do not rebuild."""
        store = FakeRecordStore(recurring=[make_recurring(
            approval_state=ApprovalState.PENDING
        )])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(
            EditEvent(RecordKind.RECURRING, 'R1', 'skip_months', '', '5')
        )

        assert store.instances is None
        assert result.instances_rebuilt is None

    def test_missing_target_year(self, calendar):
        """Test that recurring sync is unavailable without a target year."""
        store = FakeRecordStore(recurring=[make_recurring()])
        engine = SyncEngine(store, calendar, SyncConfig(member_calendar_id='member-cal'))

        result = engine.handle_edit(approval(RecordKind.RECURRING, 'R1'))

        assert calendar.method_calls == []
        assert store.instances is None
        assert result.instances_rebuilt is None

    def test_reapproval_does_not_rebuild(self, config, calendar):
        """Test that re-approving a recurring record does nothing."""
        store = FakeRecordStore(recurring=[make_recurring(public_series_id='series-1')])
        engine = SyncEngine(store, calendar, config)

        result = engine.handle_edit(
            approval(RecordKind.RECURRING, 'R1', old='Approved', new='approved')
        )

        assert calendar.method_calls == []
        assert store.writes == []
        assert store.instances is None
        assert result.instances_rebuilt is None
