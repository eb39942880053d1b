from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple, TypeVar

from glucoloop.api.types import ScheduleSegment
from glucoloop.core.errors import IncompleteSchedules

T = TypeVar("T")


def _epoch_for(date: datetime) -> datetime:
    return datetime(1970, 1, 1, tzinfo=date.tzinfo)


def date_floored(date: datetime, interval: timedelta) -> datetime:
    epoch = _epoch_for(date)
    return epoch + ((date - epoch) // interval) * interval


def date_ceiled(date: datetime, interval: timedelta) -> datetime:
    epoch = _epoch_for(date)
    return epoch - ((epoch - date) // interval) * interval


def resolve_segment_ends(segments: Sequence[ScheduleSegment[T]]) -> Tuple[ScheduleSegment[T], ...]:
    """Fill missing segment ends with the following segment's start."""
    resolved: List[ScheduleSegment[T]] = []
    for index, segment in enumerate(segments):
        end = segment.end
        if end is None and index + 1 < len(segments):
            end = segments[index + 1].start
        resolved.append(ScheduleSegment(start=segment.start, end=end, value=segment.value))
    return tuple(resolved)


def validate_segments(segments: Sequence[ScheduleSegment[T]], name: str) -> Tuple[ScheduleSegment[T], ...]:
    ordered = tuple(segments)
    for previous, current in zip(ordered, ordered[1:]):
        if current.start < previous.start:
            raise ValueError(f"{name} schedule segments are not sorted by start")
        if previous.end is None or previous.end > current.start:
            raise ValueError(
                f"{name} schedule segments overlap at {current.start.isoformat()}"
            )
    return ordered


def _last_index_starting_at_or_before(segments: Sequence[ScheduleSegment[T]], date: datetime) -> int:
    low, high = 0, len(segments)
    while low < high:
        middle = (low + high) // 2
        if segments[middle].start <= date:
            low = middle + 1
        else:
            high = middle
    return low - 1


def segment_at(segments: Sequence[ScheduleSegment[T]], date: datetime) -> Optional[ScheduleSegment[T]]:
    index = _last_index_starting_at_or_before(segments, date)
    if index < 0:
        return None
    segment = segments[index]
    if not segment.contains(date):
        return None
    return segment


def value_at(segments: Sequence[ScheduleSegment[T]], date: datetime, name: str) -> T:
    segment = segment_at(segments, date)
    if segment is None:
        raise IncompleteSchedules(name, f"no value at {date.isoformat()}")
    return segment.value


def overlapping(
    segments: Sequence[ScheduleSegment[T]], start: datetime, end: datetime
) -> List[ScheduleSegment[T]]:
    """Segments intersecting [start, end], found by bisecting on segment starts."""
    index = max(_last_index_starting_at_or_before(segments, start), 0)
    result: List[ScheduleSegment[T]] = []
    for segment in segments[index:]:
        if segment.start > end:
            break
        if segment.end is not None and segment.end <= start and segment.start != start:
            continue
        result.append(segment)
    return result


def covers(segments: Sequence[ScheduleSegment[T]], start: datetime, end: datetime) -> bool:
    matched = overlapping(segments, start, end)
    if not matched or matched[0].start > start:
        return False
    for previous, current in zip(matched, matched[1:]):
        if previous.end != current.start:
            return False
    last_end = matched[-1].end
    return last_end is None or last_end >= end
