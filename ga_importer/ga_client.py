"""
Google Analytics Reporting API (v4) client using a service account.
"""
import os
import json
import time
import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import get_config
from .data_table import DataTable, Row
from .metrics import MILLISECOND_METRICS, map_to_ga_metrics
from .query_factory import get_order_by_metric, make_request

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/analytics.readonly']

# Per-100-seconds quotas: worth retrying after a pause
RATE_LIMIT_REASONS = {'rateLimitExceeded', 'userRateLimitExceeded', 'quotaExceeded'}
# Daily quota: nothing to do but stop until tomorrow
DAILY_LIMIT_REASONS = {'dailyLimitExceeded'}

INTEGER_TYPES = {'INTEGER'}
FLOAT_TYPES = {'FLOAT', 'CURRENCY', 'PERCENT', 'TIME'}


class DailyRateLimitReached(Exception):
    """The GA API quota is used up; the import has to be resumed later."""


def init_ga_service(credentials_path: Optional[str] = None):
    """
    Build a Reporting API v4 service object.
    Uses GA_CREDENTIALS_JSON (via config) when no key file path is given.
    """
    creds_path = credentials_path or get_config().get('credentials_json')
    if not creds_path or not os.path.isfile(creds_path):
        raise EnvironmentError('GA_CREDENTIALS_JSON not set or file does not exist')
    credentials = service_account.Credentials.from_service_account_file(creds_path, scopes=SCOPES)
    return build('analyticsreporting', 'v4', credentials=credentials, cache_discovery=False)


def get_error_reason(error: HttpError) -> Optional[str]:
    """First 'reason' of a Google API error payload, if there is one."""
    try:
        content = json.loads(error.content.decode('utf-8'))
        return content['error']['errors'][0]['reason']
    except (ValueError, KeyError, IndexError, TypeError, AttributeError):
        return None


def parse_metric_value(value: str, metric_type: Optional[str], metric_id: int):
    try:
        if metric_type in INTEGER_TYPES:
            parsed = int(value)
        else:
            parsed = float(value)
    except (ValueError, TypeError):
        logger.debug(f"Could not parse metric value {value!r} for metric {metric_id}")
        return 0

    if metric_id in MILLISECOND_METRICS:
        parsed = parsed / 1000.0
    return parsed


class GoogleAnalyticsQueryService:
    """
    Runs single-day report queries for one GA view and returns flat tables:
    one row per API result row, dimension values as row metadata and metric
    values keyed by host metric id.
    """

    def __init__(self, service, view_id: str, config: Optional[Dict[str, Any]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        config = config or get_config()
        self.service = service
        self.view_id = view_id
        self.page_size = config.get('page_size', 10000)
        self.max_retries = config.get('max_retries', 3)
        self._sleep = sleep

    def query(self, day: date, dimensions: List[str], metrics: List[int],
              options: Optional[Dict[str, Any]] = None) -> DataTable:
        """
        Query GA for one day.

        Args:
            day: Day to import.
            dimensions: GA dimension names, e.g. ['ga:source', 'ga:medium'].
            metrics: Host metric ids; mapped to GA metric expressions.
            options: 'segment' and/or 'orderBys' as accepted by make_request.
        Returns:
            DataTable of flat result rows.
        """
        metric_mapping = map_to_ga_metrics(metrics)
        ga_metrics = list(metric_mapping)

        options = dict(options or {})
        options['dimensions'] = list(dimensions)
        if not options.get('orderBys'):
            options['orderBys'] = [{'field': get_order_by_metric(ga_metrics, options), 'order': 'desc'}]
        options['pageSize'] = self.page_size

        table = DataTable()
        page_token = None
        while True:
            options['pageToken'] = page_token
            body, warnings = make_request(self.view_id, day, ga_metrics, options)
            if page_token is None:
                for warning in warnings:
                    logger.error(f"Unexpected error: {warning}")

            response = self._execute(body)
            reports = response.get('reports') or [{}]
            report = reports[0]
            self._add_report_rows(table, report, metric_mapping)

            page_token = report.get('nextPageToken')
            if not page_token:
                break

        logger.debug(f"GA query for {day} {dimensions} returned {table.get_row_count()} rows")
        return table

    def _add_report_rows(self, table: DataTable, report: Dict[str, Any], metric_mapping: Dict[str, List[int]]):
        header = report.get('columnHeader', {})
        dimension_names = header.get('dimensions', [])
        metric_entries = header.get('metricHeader', {}).get('metricHeaderEntries', [])

        for api_row in report.get('data', {}).get('rows', []) or []:
            metadata = dict(zip(dimension_names, api_row.get('dimensions', [])))
            date_range_values = api_row.get('metrics') or [{}]
            values = date_range_values[0].get('values', [])

            columns = {}
            for entry, value in zip(metric_entries, values):
                for metric_id in metric_mapping.get(entry.get('name'), []):
                    columns[metric_id] = parse_metric_value(value, entry.get('type'), metric_id)

            table.add_row(Row(columns=columns, metadata=metadata))

    def _execute(self, body: Dict[str, Any]) -> Dict[str, Any]:
        attempt = 0
        while True:
            try:
                return self.service.reports().batchGet(body=body).execute()
            except HttpError as e:
                status = int(e.resp.status)
                reason = get_error_reason(e)

                if reason in DAILY_LIMIT_REASONS:
                    logger.warning(f"GA daily quota reached for view {self.view_id}")
                    raise DailyRateLimitReached(str(e)) from e

                is_rate_limited = status == 429 or reason in RATE_LIMIT_REASONS
                if not is_rate_limited and not 500 <= status < 600:
                    logger.error(f"GA API error {status} ({reason}): {e}")
                    raise

                if attempt >= self.max_retries:
                    logger.error(f"GA API error {status} ({reason}) after {self.max_retries} retries")
                    if is_rate_limited:
                        raise DailyRateLimitReached(str(e)) from e
                    raise

                wait_time = 2 ** attempt
                logger.warning(f"GA API error {status} ({reason}), retrying in {wait_time} seconds")
                self._sleep(wait_time)
                attempt += 1


def create_query_service(view_id: str, config: Optional[Dict[str, Any]] = None) -> GoogleAnalyticsQueryService:
    config = config or get_config()
    service = init_ga_service(config.get('credentials_json'))
    return GoogleAnalyticsQueryService(service, view_id, config)
