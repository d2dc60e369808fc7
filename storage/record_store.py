"""DynamoDB-backed store for event records and recurring instances."""
import logging
import time
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import (
    ApprovalState,
    EventRecord,
    InstanceRow,
    Padding,
    RecordKind,
    RecurringEventRecord,
)

logger = logging.getLogger(__name__)

KEY_ATTRIBUTE = 'record_id'


class RecordStore:
    """Row-level access to the event, recurring event and instance tables."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    KEY_ATTRIBUTE = KEY_ATTRIBUTE
    INSTANCE_KEY_ATTRIBUTE = 'instance_id'
    NOTES_ATTRIBUTE = 'sync_notes'

    def __init__(
        self,
        events_table: str,
        recurring_table: str,
        instances_table: str,
        dynamodb=None
    ):
        """
        Initialize DynamoDB table references.

        Args:
            events_table: Table holding one-shot event records
            recurring_table: Table holding recurring event records
            instances_table: Table rebuilt with expanded recurring instances
            dynamodb: Optional boto3 DynamoDB resource
        """
        if dynamodb is None:
            dynamodb = boto3.resource('dynamodb')
        self.dynamodb = dynamodb
        self.tables = {
            RecordKind.EVENT: self.dynamodb.Table(events_table),
            RecordKind.RECURRING: self.dynamodb.Table(recurring_table),
        }
        self.instances = self.dynamodb.Table(instances_table)
        logger.info(
            f"Initialized RecordStore for tables: {events_table}, "
            f"{recurring_table}, {instances_table}"
        )

    def get_event(self, key: str) -> Optional[EventRecord]:
        """Read a one-shot event record, or None if it does not exist."""
        item = self._get_item(RecordKind.EVENT, key)
        return self._item_to_event(item) if item else None

    def get_recurring_event(self, key: str) -> Optional[RecurringEventRecord]:
        """Read a recurring event record, or None if it does not exist."""
        item = self._get_item(RecordKind.RECURRING, key)
        return self._item_to_recurring_event(item) if item else None

    def list_recurring_events(self) -> List[RecurringEventRecord]:
        """
        Retrieve all recurring event records using a Scan operation.

        Returns:
            Records ordered by record_id
        """
        items = self._scan_all(self.tables[RecordKind.RECURRING])
        records = [self._item_to_recurring_event(item) for item in items]
        records.sort(key=lambda record: record.key)
        logger.info(f"Retrieved {len(records)} recurring events from DynamoDB")
        return records

    def write_field(self, kind: RecordKind, key: str, field: str, value) -> None:
        """Set a single attribute on a record."""
        self.tables[kind].update_item(
            Key={self.KEY_ATTRIBUTE: key},
            UpdateExpression='SET #f = :v',
            ExpressionAttributeNames={'#f': field},
            ExpressionAttributeValues={':v': value}
        )
        logger.debug(f"Wrote {field} on {kind.value} record {key}")

    def write_identifier(
        self,
        kind: RecordKind,
        key: str,
        field: str,
        value: str
    ) -> bool:
        """
        Set a calendar identifier attribute only if it is absent or empty.

        Args:
            kind: Record table
            key: Record key
            field: Identifier attribute name
            value: Identifier returned by the calendar service

        Returns:
            True if written, False if the attribute already held a value
        """
        try:
            self.tables[kind].update_item(
                Key={self.KEY_ATTRIBUTE: key},
                UpdateExpression='SET #f = :v',
                ConditionExpression='attribute_not_exists(#f) OR #f = :empty',
                ExpressionAttributeNames={'#f': field},
                ExpressionAttributeValues={':v': value, ':empty': ''}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.warning(
                    f"{field} on {kind.value} record {key} was already set; "
                    f"not overwriting with {value}"
                )
                return False
            raise

        logger.info(f"Recorded {field}={value} on {kind.value} record {key}")
        return True

    def annotate(self, kind: RecordKind, key: str, message: str) -> None:
        """Append a human-readable note to a record's sync_notes list."""
        stamp = time.strftime('%Y-%m-%d %H:%M:%S')
        self.tables[kind].update_item(
            Key={self.KEY_ATTRIBUTE: key},
            UpdateExpression=(
                'SET #n = list_append(if_not_exists(#n, :empty_list), :note)'
            ),
            ExpressionAttributeNames={'#n': self.NOTES_ATTRIBUTE},
            ExpressionAttributeValues={
                ':empty_list': [],
                ':note': [f"{stamp} {message}"]
            }
        )
        logger.info(f"Annotated {kind.value} record {key}: {message}")

    def replace_instances(self, rows: List[InstanceRow]) -> int:
        """
        Replace the contents of the instance table with a fresh expansion.

        New rows are written first, then rows from earlier expansions that
        are not part of the new set are deleted.

        Args:
            rows: Complete list of instance rows

        Returns:
            Count of rows written
        """
        existing_ids = {
            item[self.INSTANCE_KEY_ATTRIBUTE]
            for item in self._scan_all(
                self.instances,
                ProjectionExpression=self.INSTANCE_KEY_ATTRIBUTE
            )
        }
        new_items = [self._instance_to_item(row) for row in rows]
        new_ids = {item[self.INSTANCE_KEY_ATTRIBUTE] for item in new_items}

        written = self._batch_put(new_items)
        stale_ids = sorted(existing_ids - new_ids)
        deleted = self._batch_delete(stale_ids)

        logger.info(
            f"Instance table rebuilt: {written} written, {deleted} stale deleted"
        )
        return written

    def _get_item(self, kind: RecordKind, key: str) -> Optional[dict]:
        response = self.tables[kind].get_item(Key={self.KEY_ATTRIBUTE: key})
        return response.get('Item')

    def _scan_all(self, table, **kwargs) -> List[dict]:
        # Scan is paginated by DynamoDB; follow LastEvaluatedKey
        response = table.scan(**kwargs)
        items = response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = table.scan(
                ExclusiveStartKey=response['LastEvaluatedKey'],
                **kwargs
            )
            items.extend(response.get('Items', []))

        return items

    def _batch_put(self, items: List[dict]) -> int:
        # Write errors propagate; stale rows are only deleted after a full write
        count = 0
        for i in range(0, len(items), self.BATCH_SIZE):
            batch = items[i:i + self.BATCH_SIZE]
            with self.instances.batch_writer() as writer:
                for item in batch:
                    writer.put_item(Item=item)
                    count += 1
        return count

    def _batch_delete(self, instance_ids: List[str]) -> int:
        count = 0
        for i in range(0, len(instance_ids), self.BATCH_SIZE):
            batch = instance_ids[i:i + self.BATCH_SIZE]

            try:
                with self.instances.batch_writer() as writer:
                    for instance_id in batch:
                        writer.delete_item(
                            Key={self.INSTANCE_KEY_ATTRIBUTE: instance_id}
                        )
                        count += 1
            except ClientError as e:
                logger.error(
                    f"Error deleting stale instance batch "
                    f"{i // self.BATCH_SIZE + 1}: {e}"
                )
                continue

        return count

    def _item_to_event(self, item: Dict) -> EventRecord:
        return EventRecord(
            key=item[self.KEY_ATTRIBUTE],
            approval_state=ApprovalState.parse(item.get('approval_state')),
            approver=_text_or_none(item.get('approver')),
            title=_text(item.get('title')),
            description=_text(item.get('description')),
            calendar_date=_text(item.get('calendar_date')),
            start_time=_text(item.get('start_time')),
            end_time=_text(item.get('end_time')),
            space_request=_text(item.get('space_request')),
            audience=_text(item.get('audience')),
            padding=Padding.from_label(item.get('padding')),
            facility_event_id=_text_or_none(item.get('facility_event_id')),
            public_event_id=_text_or_none(item.get('public_event_id'))
        )

    def _item_to_recurring_event(self, item: Dict) -> RecurringEventRecord:
        return RecurringEventRecord(
            key=item[self.KEY_ATTRIBUTE],
            approval_state=ApprovalState.parse(item.get('approval_state')),
            approver=_text_or_none(item.get('approver')),
            title=_text(item.get('title')),
            description=_text(item.get('description')),
            ordinal=_text(item.get('ordinal')),
            weekday=_text(item.get('weekday')),
            start_time=_text(item.get('start_time')),
            end_time=_text(item.get('end_time')),
            space_request=_text(item.get('space_request')),
            audience=_text(item.get('audience')),
            padding=Padding.from_label(item.get('padding')),
            skip_months=_text(item.get('skip_months')),
            facility_series_id=_text_or_none(item.get('facility_series_id')),
            public_series_id=_text_or_none(item.get('public_series_id'))
        )

    def _instance_to_item(self, row: InstanceRow) -> dict:
        item = {
            self.INSTANCE_KEY_ATTRIBUTE: row.instance_id,
            'record_id': row.record_key,
            'occurrence_date': row.occurrence_date,
            'start': row.start,
            'end': row.end,
            'title': row.title,
            'description': row.description,
            'audience': row.audience,
            'space_request': row.space_request,
        }

        # Add optional fields if present
        if row.facility_series_id:
            item['facility_series_id'] = row.facility_series_id
        if row.public_series_id:
            item['public_series_id'] = row.public_series_id

        return item


def _text(value) -> str:
    if value is None:
        return ''
    return str(value).strip()


def _text_or_none(value) -> Optional[str]:
    return _text(value) or None
