"""
Host metric ids and the metric sets shared by record importers.

Aggregation tables store metric values under these integer ids, the same
ids the host's reporting UI reads back.
"""
from typing import Dict, List

INDEX_NB_UNIQ_VISITORS = 1
INDEX_NB_VISITS = 2
INDEX_NB_ACTIONS = 3
INDEX_MAX_ACTIONS = 4
INDEX_SUM_VISIT_LENGTH = 5
INDEX_BOUNCE_COUNT = 6
INDEX_NB_VISITS_CONVERTED = 7
INDEX_NB_CONVERSIONS = 8
INDEX_REVENUE = 9
INDEX_GOALS = 10
INDEX_SUM_DAILY_NB_UNIQ_VISITORS = 11
INDEX_PAGE_NB_HITS = 12
INDEX_PAGE_SUM_TIME_GENERATION = 30
INDEX_PAGE_NB_HITS_WITH_TIME_GENERATION = 31

READABLE_COLUMN_NAMES = {
    INDEX_NB_UNIQ_VISITORS: 'nb_uniq_visitors',
    INDEX_NB_VISITS: 'nb_visits',
    INDEX_NB_ACTIONS: 'nb_actions',
    INDEX_MAX_ACTIONS: 'max_actions',
    INDEX_SUM_VISIT_LENGTH: 'sum_visit_length',
    INDEX_BOUNCE_COUNT: 'bounce_count',
    INDEX_NB_VISITS_CONVERTED: 'nb_visits_converted',
    INDEX_NB_CONVERSIONS: 'nb_conversions',
    INDEX_REVENUE: 'revenue',
    INDEX_GOALS: 'goals',
    INDEX_SUM_DAILY_NB_UNIQ_VISITORS: 'sum_daily_nb_uniq_visitors',
    INDEX_PAGE_NB_HITS: 'nb_hits',
    INDEX_PAGE_SUM_TIME_GENERATION: 'sum_time_generation',
    INDEX_PAGE_NB_HITS_WITH_TIME_GENERATION: 'nb_hits_with_time_generation',
}

# Host metric id -> GA Reporting API metric expression.
# INDEX_GOALS (per-goal breakdown) has no single GA expression and is not queried.
GA_METRIC_EXPRESSIONS = {
    INDEX_NB_UNIQ_VISITORS: 'ga:users',
    INDEX_NB_VISITS: 'ga:sessions',
    INDEX_NB_ACTIONS: 'ga:hits',
    INDEX_SUM_VISIT_LENGTH: 'ga:sessionDuration',
    INDEX_BOUNCE_COUNT: 'ga:bounces',
    INDEX_NB_VISITS_CONVERTED: 'ga:goalCompletionsAll',
    INDEX_NB_CONVERSIONS: 'ga:goalCompletionsAll',
    INDEX_REVENUE: 'ga:goalValueAll',
    INDEX_PAGE_NB_HITS: 'ga:pageviews',
    INDEX_PAGE_SUM_TIME_GENERATION: 'ga:pageLoadTime',
    INDEX_PAGE_NB_HITS_WITH_TIME_GENERATION: 'ga:pageLoadSample',
}

# GA reports these in milliseconds, the host stores seconds
MILLISECOND_METRICS = {INDEX_PAGE_SUM_TIME_GENERATION}


def get_readable_column_name(metric_id) -> str:
    return READABLE_COLUMN_NAMES.get(metric_id, str(metric_id))


def get_visit_metrics() -> List[int]:
    return [
        INDEX_NB_UNIQ_VISITORS,
        INDEX_NB_VISITS,
        INDEX_NB_ACTIONS,
        INDEX_SUM_VISIT_LENGTH,
        INDEX_BOUNCE_COUNT,
        INDEX_NB_VISITS_CONVERTED,
    ]


def get_conversion_aware_visit_metrics() -> List[int]:
    return get_visit_metrics() + [
        INDEX_NB_CONVERSIONS,
        INDEX_REVENUE,
        INDEX_GOALS,
    ]


def get_actions_metrics() -> List[int]:
    return [
        INDEX_NB_VISITS,
        INDEX_NB_UNIQ_VISITORS,
        INDEX_PAGE_NB_HITS,
        INDEX_PAGE_SUM_TIME_GENERATION,
        INDEX_PAGE_NB_HITS_WITH_TIME_GENERATION,
    ]


def map_to_ga_metrics(metric_ids: List[int]) -> Dict[str, List[int]]:
    """
    Map host metric ids to GA metric expressions.

    Several host metrics can be fed by the same GA metric, so the result maps
    each GA expression (in first-seen order) to the host ids it fills.
    Ids with no GA counterpart are left out.
    """
    mapping: Dict[str, List[int]] = {}
    for metric_id in metric_ids:
        expression = GA_METRIC_EXPRESSIONS.get(metric_id)
        if expression is None:
            continue
        mapping.setdefault(expression, []).append(metric_id)
    return mapping
