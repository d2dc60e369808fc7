"""Expansion of approved recurring events into dated instance rows."""
import logging
from typing import Iterable, List

from processor.cell_parsing import combine
from processor.errors import ValidationError
from processor.models import ApprovalState, InstanceRow, RecurringEventRecord
from recurrence.date_math import occurrences_in_month
from recurrence.rrule_builder import ordinal_to_position, weekday_to_index
from recurrence.skip_set import parse_skip_months

logger = logging.getLogger(__name__)


def expand_instances(
    records: Iterable[RecurringEventRecord],
    year: int
) -> List[InstanceRow]:
    """
    Expand every approved recurring record across the months of a year.

    Output is ordered by record, then month, then date. Records whose
    ordinal/weekday cannot be resolved are skipped.

    Args:
        records: Recurring records in store order
        year: Year to expand

    Returns:
        Complete list of instance rows for the year
    """
    rows = []

    for record in records:
        if record.approval_state is not ApprovalState.APPROVED:
            continue

        try:
            weekday_index = weekday_to_index(record.weekday)
            position = ordinal_to_position(record.ordinal)
        except ValidationError as e:
            logger.warning(f"Not expanding recurring event '{record.key}': {e}")
            continue

        skip_months = parse_skip_months(record.skip_months)

        for month0 in range(12):
            if month0 in skip_months:
                continue
            for day in occurrences_in_month(year, month0, weekday_index, position):
                rows.append(_instance_row(record, day))

    logger.info(f"Expanded {len(rows)} recurring event instances for {year}")
    return rows


def _instance_row(record: RecurringEventRecord, day) -> InstanceRow:
    start = combine(day, record.start_time)
    end = combine(day, record.end_time)
    return InstanceRow(
        record_key=record.key,
        occurrence_date=day.isoformat(),
        start=start.isoformat() if start else '',
        end=end.isoformat() if end else '',
        title=record.title,
        description=record.description,
        audience=record.audience,
        space_request=record.space_request,
        facility_series_id=record.facility_series_id,
        public_series_id=record.public_series_id
    )
