"""
Bucketing of numeric dimension values into labelled ranges.

A gap definition is an ascending list of bounds: [lower, upper] pairs, and
optionally a final [lower] entry meaning "above lower".
"""
from typing import Iterable, List, Sequence, Union
from urllib.parse import quote

from .data_table import DataTable, Row

Number = Union[int, float]

# the host UI expects the plus sign URL-encoded in "and above" labels
ENCODED_PLUS = quote('+', safe='')


class InvalidGapDefinition(ValueError):
    pass


def validate_gap(gap: Sequence[Sequence[Number]]):
    """
    Reject empty, unsorted or overlapping gap definitions.
    Adjacent buckets may share a boundary value (e.g. [31, 60], [60, 120]).
    """
    if not gap:
        raise InvalidGapDefinition("Gap definition is empty")

    previous_upper = None
    for index, bounds in enumerate(gap):
        if len(bounds) not in (1, 2):
            raise InvalidGapDefinition(f"Bucket {index} must have one or two bounds, got {list(bounds)}")
        if len(bounds) == 1 and index != len(gap) - 1:
            raise InvalidGapDefinition(f"Open-ended bucket {list(bounds)} must be the last one")
        lower, upper = bounds[0], bounds[-1]
        if upper < lower:
            raise InvalidGapDefinition(f"Bucket {list(bounds)} has its upper bound below its lower bound")
        if previous_upper is not None and lower < previous_upper:
            raise InvalidGapDefinition(
                f"Bucket {list(bounds)} overlaps or precedes the previous bucket ending at {previous_upper}")
        previous_upper = upper


def get_bucket_label(bounds: Sequence[Number]) -> str:
    if len(bounds) == 1:
        return get_above_label(bounds[0])
    return f"{bounds[0]} - {bounds[1]}"


def get_above_label(lower_bound: Number) -> str:
    return f"{lower_bound + 1}{ENCODED_PLUS}"


def get_gap_label(gap: Sequence[Sequence[Number]], value: Number) -> str:
    """
    Label of the first closed bucket whose upper bound is >= value.

    Values beyond every closed bucket get "<lower + 1>%2B", computed from the
    last bucket of the definition.
    """
    validate_gap(gap)
    value = to_number(value)

    for bounds in gap:
        if len(bounds) == 2 and value <= bounds[1]:
            return get_bucket_label(bounds)

    return get_above_label(gap[-1][0])


def create_table_from_gap(gap: Sequence[Sequence[Number]], metrics: Iterable[int] = ()) -> DataTable:
    """
    Table with one row per bucket, metrics preset to zero, so buckets nobody
    fell into still show up in the report.
    """
    validate_gap(gap)
    metrics = list(metrics)
    table = DataTable()
    for bounds in gap:
        table.add_row(Row(label=get_bucket_label(bounds), columns={metric: 0 for metric in metrics}))
    return table


def to_number(value) -> Number:
    if isinstance(value, (int, float)):
        return value
    value = str(value).strip()
    try:
        return int(value)
    except ValueError:
        return float(value)


def seconds_gap_from_minutes(time_gap: List[Sequence]) -> List[List[Number]]:
    """
    Convert a time gap expressed in minutes into seconds.
    Entries tagged with a trailing 's' are already in seconds.
    """
    seconds_gap = []
    for gap in time_gap:
        if len(gap) == 3 and gap[2] == 's':
            seconds_gap.append([gap[0], gap[1]])
        elif len(gap) == 2:
            seconds_gap.append([gap[0] * 60, gap[1] * 60])
        else:
            seconds_gap.append([gap[0] * 60])
    return seconds_gap
