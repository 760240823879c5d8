"""
Imports visitor interest reports: visits by visit number, by days since the
last visit and by visit duration.
"""
import logging
from datetime import date
from typing import Callable, List, Sequence

from .data_table import add_row_to_table
from .gap_labels import create_table_from_gap, get_gap_label, seconds_gap_from_minutes, validate_gap
from .metrics import get_conversion_aware_visit_metrics
from .record_importer import ImporterContext, NamedBlob

logger = logging.getLogger(__name__)

TIME_SPENT_RECORD_NAME = 'VisitorInterest_timeGap'
VISITS_COUNT_RECORD_NAME = 'VisitorInterest_visitsByVisitCount'
DAYS_SINCE_LAST_RECORD_NAME = 'VisitorInterest_daysSinceLastVisit'

# minutes, unless tagged 's' (seconds)
TIME_GAP = [
    [0, 10, 's'],
    [11, 30, 's'],
    [31, 60, 's'],
    [1, 2],
    [2, 4],
    [4, 7],
    [7, 10],
    [10, 15],
    [15, 30],
    [30],
]

VISIT_NUMBER_GAP = [
    [1, 1], [2, 2], [3, 3], [4, 4], [5, 5], [6, 6], [7, 7], [8, 8],
    [9, 14], [15, 25], [26, 50], [51, 100], [101, 200], [200],
]

DAYS_SINCE_LAST_VISIT_GAP = [
    [0, 0], [1, 1], [2, 2], [3, 3], [4, 4], [5, 5], [6, 6], [7, 7],
    [8, 14], [15, 30], [31, 60], [61, 120], [121, 364], [364],
]


class VisitorInterestRecordImporter:
    plugin_name = 'VisitorInterest'

    def __init__(self, context: ImporterContext,
                 visit_number_gap: Sequence = VISIT_NUMBER_GAP,
                 days_since_last_visit_gap: Sequence = DAYS_SINCE_LAST_VISIT_GAP,
                 seconds_gap: Sequence = None):
        self.context = context
        self.visit_number_gap = visit_number_gap
        self.days_since_last_visit_gap = days_since_last_visit_gap
        self.seconds_gap = seconds_gap or seconds_gap_from_minutes(TIME_GAP)
        for gap in (self.visit_number_gap, self.days_since_last_visit_gap, self.seconds_gap):
            validate_gap(gap)

    def import_records(self, day: date) -> List[NamedBlob]:
        return [
            self.query_dimension(day, 'ga:sessionCount', self.visit_number_gap, VISITS_COUNT_RECORD_NAME),
            self.query_dimension(day, 'ga:daysSinceLastSession', self.days_since_last_visit_gap,
                                 DAYS_SINCE_LAST_RECORD_NAME),
            self.query_dimension(day, 'ga:sessionDurationBucket', self.seconds_gap, TIME_SPENT_RECORD_NAME),
        ]

    def query_dimension(self, day: date, dimension: str, gap: Sequence, record_name: str,
                        label_mapper: Callable = None) -> NamedBlob:
        """
        Query one numeric dimension and bucket its rows by gap label.
        """
        label_mapper = label_mapper or (lambda value: get_gap_label(gap, value))
        metrics = get_conversion_aware_visit_metrics()
        record = create_table_from_gap(gap, metrics)

        table = self.context.query_service.query(day, [dimension], metrics)
        for row in table:
            value = row.get_metadata(dimension)
            try:
                label = label_mapper(value)
            except (TypeError, ValueError):
                logger.warning(f"Skipping row with non-numeric {dimension} value: {value!r}")
                continue
            add_row_to_table(record, row, label)
        table.clear()

        blob = record.get_serialized()
        record.clear()
        return record_name, blob
