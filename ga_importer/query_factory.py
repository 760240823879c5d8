"""
Builds GA Reporting API (v4) request bodies for a single day.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

SEGMENT_DIMENSION = 'ga:segment'

# Fallback order when the caller did not ask to sort by a queried metric
ORDER_BY_METRIC_PRIORITY = [
    'ga:uniquePageviews',
    'ga:uniqueScreenviews',
    'ga:pageviews',
    'ga:screenviews',
    'ga:sessions',
    'ga:goalCompletionsAll',
]


class OrderByMetricNotFound(Exception):
    """None of the known sort metrics is part of the query."""


def make_request(view_id: str, day: date, metric_names: List[str],
                 options: Optional[Dict[str, Any]] = None) -> Tuple[Dict[str, Any], List[str]]:
    """
    Build a batchGet body holding one report request for a single day.

    Args:
        view_id: GA view the report is read from.
        day: The day to query; used as both start and end of the date range.
        metric_names: GA metric expressions, e.g. ['ga:sessions'].
        options: Optional 'dimensions' (list of names), 'segment'
                 ({'segmentId': ...} or {'dynamicSegment': ...}),
                 'orderBys' (list of {'field', 'order'}), 'pageSize', 'pageToken'.
    Returns:
        (body, warnings). Warnings describe order-by fields that are not
        among the queried metrics/dimensions; the request is built anyway.
    """
    options = options or {}
    dimension_names = list(options.get('dimensions') or [])
    metric_names = list(metric_names)

    dimensions = [{'name': name} for name in dimension_names]

    segments = []
    if options.get('segment'):
        segments.append(_make_segment(options['segment']))
        dimensions.append({'name': SEGMENT_DIMENSION})

    day_str = day.strftime('%Y-%m-%d')
    request = {
        'viewId': view_id,
        'dateRanges': [{'startDate': day_str, 'endDate': day_str}],
        'dimensions': dimensions,
        'segments': segments,
        'metrics': [{'expression': name} for name in metric_names],
    }

    warnings = []
    if options.get('orderBys'):
        warnings = check_order_bys(options['orderBys'], metric_names, dimension_names)
        request['orderBys'] = _make_order_bys(options['orderBys'])

    if options.get('pageSize'):
        request['pageSize'] = options['pageSize']
    if options.get('pageToken'):
        request['pageToken'] = options['pageToken']

    return {'reportRequests': [request]}, warnings


def get_order_by_metric(metrics_to_query: List[str], options: Optional[Dict[str, Any]] = None) -> str:
    """
    Pick the single metric results are sorted by.

    A requested order-by field that is also queried wins (first match);
    otherwise the first metric of ORDER_BY_METRIC_PRIORITY that is queried.
    Only one metric is ever returned, multi-key sorting is not supported.
    """
    options = options or {}
    for entry in options.get('orderBys') or []:
        if entry['field'] in metrics_to_query:
            return entry['field']

    for metric in ORDER_BY_METRIC_PRIORITY:
        if metric in metrics_to_query:
            return metric

    raise OrderByMetricNotFound(
        "Not sure what metric to use to order results, got: " + ', '.join(metrics_to_query))


def check_order_bys(order_bys: List[Dict[str, str]], metrics_queried: List[str],
                    dimensions: List[str]) -> List[str]:
    warnings = []
    for entry in order_bys:
        field = entry['field']
        if field not in metrics_queried and field not in dimensions:
            warnings.append(
                f"trying to order by {field}, but field is not in list of metrics/dimensions "
                f"being queried: {', '.join(metrics_queried)}/{', '.join(dimensions)}")
    return warnings


def _make_segment(segment: Dict[str, Any]) -> Dict[str, Any]:
    if 'segmentId' in segment:
        return {'segmentId': segment['segmentId']}
    return {'dynamicSegment': segment['dynamicSegment']}


def _make_order_bys(order_bys: List[Dict[str, str]]) -> List[Dict[str, str]]:
    result = []
    for entry in order_bys:
        order = entry['order']
        if order.upper() == 'DESC':
            order = 'DESCENDING'
        elif order.upper() == 'ASC':
            order = 'ASCENDING'
        result.append({
            'fieldName': entry['field'],
            'orderType': 'VALUE',
            'sortOrder': order,
        })
    return result
