"""AWS Lambda handler for approval-triggered event calendar sync."""
import json
import logging
import os
import time
from typing import Any, Dict, Mapping, Optional

from boto3.dynamodb.types import TypeDeserializer

from calendar_client.google_calendar import GoogleCalendarClient
from processor.config import SyncConfig
from processor.models import EditEvent, RecordKind, SyncResult
from processor.sync_engine import APPROVAL_FIELD, EXPANSION_FIELDS, SyncEngine
from storage.record_store import KEY_ATTRIBUTE, RecordStore

_deserializer = TypeDeserializer()

DEFAULT_TIMEOUT_SECONDS = 30


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _image(record: Dict[str, Any], name: str) -> Dict[str, Any]:
    raw = record.get('dynamodb', {}).get(name) or {}
    return {key: _deserializer.deserialize(value) for key, value in raw.items()}


def _table_name(record: Dict[str, Any]) -> str:
    # arn:aws:dynamodb:<region>:<account>:table/<name>/stream/<label>
    arn = record.get('eventSourceARN', '')
    parts = arn.split('/')
    return parts[1] if len(parts) > 1 else ''


def edit_from_stream_record(
    record: Dict[str, Any],
    table_kinds: Dict[str, RecordKind]
) -> Optional[EditEvent]:
    """
    Convert a DynamoDB stream record into the edit it represents.

    A change to the approval column wins over other changed columns;
    otherwise the first changed column that affects recurring instances
    is reported.

    Args:
        record: One entry of the stream event's Records list
        table_kinds: Table name to record kind

    Returns:
        EditEvent, or None for removals, unknown tables and irrelevant changes
    """
    if record.get('eventName') not in ('INSERT', 'MODIFY'):
        return None

    kind = table_kinds.get(_table_name(record))
    if kind is None:
        return None

    old_image = _image(record, 'OldImage')
    new_image = _image(record, 'NewImage')
    key = new_image.get(KEY_ATTRIBUTE)
    if not key:
        return None

    changed = [
        field for field in sorted(set(old_image) | set(new_image))
        if old_image.get(field) != new_image.get(field)
    ]
    if APPROVAL_FIELD in changed:
        field = APPROVAL_FIELD
    else:
        field = next((name for name in changed if name in EXPANSION_FIELDS), None)
    if field is None:
        return None

    return EditEvent(
        kind=kind,
        key=str(key),
        field=field,
        old_value=old_image.get(field),
        new_value=new_image.get(field),
        actor=new_image.get('edited_by')
    )


def _int_setting(values: Mapping[str, str], name: str, default: int) -> int:
    raw = (values.get(name) or '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Ignoring invalid {name}: {raw!r}, using {default}"
        )
        return default


def _sequence_number(record: Dict[str, Any]) -> Optional[str]:
    return record.get('dynamodb', {}).get('SequenceNumber')


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler, invoked by DynamoDB Streams on record edits.

    Records are handled independently. A record whose edit raises is
    reported in batchItemFailures (the event source mapping must enable
    ReportBatchItemFailures) so Lambda redelivers it; the remaining
    records are still handled. Failures while building collaborators are
    raised so the whole batch is retried.

    Args:
        event: DynamoDB stream event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode, summary body and batchItemFailures
    """
    # Read configuration from environment variables
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    events_table = os.environ.get('EVENTS_TABLE', 'events')
    recurring_table = os.environ.get('RECURRING_TABLE', 'recurring-events')
    instances_table = os.environ.get('INSTANCES_TABLE', 'recurring-instances')
    timeout_seconds = _int_setting(os.environ, 'TIMEOUT_SECONDS', DEFAULT_TIMEOUT_SECONDS)
    config = SyncConfig.from_mapping(os.environ)

    start_time = time.time()
    records = event.get('Records', [])
    logger.info(
        "Lambda execution started",
        extra={
            'record_count': len(records),
            'target_year': config.target_year
        }
    )

    try:
        store = RecordStore(
            events_table=events_table,
            recurring_table=recurring_table,
            instances_table=instances_table
        )
        calendar = GoogleCalendarClient(
            client_id=os.environ.get('GOOGLE_CLIENT_ID'),
            client_secret=os.environ.get('GOOGLE_CLIENT_SECRET'),
            refresh_token=os.environ.get('GOOGLE_REFRESH_TOKEN'),
            time_zone=config.time_zone,
            timeout=timeout_seconds
        )
        engine = SyncEngine(store=store, calendar=calendar, config=config)
    except Exception as e:
        logger.error(
            f"Lambda initialization failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        raise

    table_kinds = {
        events_table: RecordKind.EVENT,
        recurring_table: RecordKind.RECURRING,
    }
    totals = SyncResult()
    handled = 0
    failures = []
    unreportable = None

    for record in records:
        try:
            edit = edit_from_stream_record(record, table_kinds)
            if edit is None:
                continue
            logger.info(f"Handling edit of {edit.field} on {edit.kind.value} record {edit.key}")
            totals.merge(engine.handle_edit(edit))
            handled += 1
        except Exception as e:
            sequence_number = _sequence_number(record)
            logger.error(
                f"Failed to handle stream record {sequence_number}: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            totals.errors.append(f"{type(e).__name__}: {e}")
            if sequence_number:
                failures.append({'itemIdentifier': sequence_number})
            else:
                unreportable = e

    duration = time.time() - start_time

    if unreportable is not None:
        # Without a sequence number the failure can only be retried as a batch
        raise unreportable

    statistics = {
        'records_received': len(records),
        'edits_handled': handled,
        'records_failed': len(failures),
        'entries_created': totals.created,
        'slots_skipped': totals.skipped,
        'instances_rebuilt': totals.instances_rebuilt,
        'duration_seconds': round(duration, 2)
    }

    if failures:
        logger.error(
            f"Lambda execution finished with {len(failures)} failed records",
            extra={'duration_seconds': round(duration, 2)}
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Sync failed',
                'statistics': statistics,
                'errors': totals.errors
            }),
            'batchItemFailures': failures
        }

    logger.info(
        "Lambda execution completed successfully",
        extra={
            'duration_seconds': round(duration, 2),
            'entries_created': totals.created,
            'slots_skipped': totals.skipped,
            'errors': totals.errors
        }
    )

    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': 'Sync completed successfully',
            'statistics': statistics,
            'errors': totals.errors
        }),
        'batchItemFailures': []
    }
