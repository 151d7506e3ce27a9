"""Civil-time calendar arithmetic for specialist schedules.

Working hours are defined in the specialist's civil timezone, everything
stored or compared is a UTC instant. Nothing here reads the clock.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from typing import NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.rrule import rrulestr


class CivilInterval(NamedTuple):
    opens_at: datetime
    closes_at: datetime


@dataclass(frozen=True)
class Schedule:
    tzid: str
    slot_duration_min: int
    buffer_min_default: int
    min_lead_min: int
    # weekday (0 = Monday) -> civil (opens, closes) pairs
    working_hours: Mapping[int, Sequence[tuple[time, time]]] = field(default_factory=dict)

    @classmethod
    def from_specialist(cls, specialist) -> "Schedule":
        hours: dict[int, list[tuple[time, time]]] = {}
        for row in specialist.working_hours:
            hours.setdefault(row.weekday, []).append((row.opens_at, row.closes_at))
        return cls(
            tzid=specialist.tzid,
            slot_duration_min=specialist.slot_duration_min,
            buffer_min_default=specialist.buffer_min_default,
            min_lead_min=specialist.min_lead_min,
            working_hours=hours,
        )


def get_zone(tzid: str) -> ZoneInfo:
    try:
        return ZoneInfo(tzid)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {tzid}") from exc


def require_aware(value: datetime, name: str = "instant") -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware")
    return value


def to_utc(tzid: str, civil: datetime) -> datetime:
    if civil.tzinfo is not None:
        raise ValueError("civil datetime must be naive")
    return civil.replace(tzinfo=get_zone(tzid)).astimezone(UTC)


def to_civil(tzid: str, instant: datetime) -> datetime:
    require_aware(instant)
    return instant.astimezone(get_zone(tzid)).replace(tzinfo=None)


def merge_intervals(intervals: Iterable[CivilInterval]) -> list[CivilInterval]:
    merged: list[CivilInterval] = []
    for interval in sorted(intervals):
        if interval.closes_at <= interval.opens_at:
            continue
        if merged and interval.opens_at <= merged[-1].closes_at:
            last = merged[-1]
            merged[-1] = CivilInterval(last.opens_at, max(last.closes_at, interval.closes_at))
        else:
            merged.append(interval)
    return merged


def working_intervals(schedule: Schedule, civil_date: date) -> list[CivilInterval]:
    """Open civil intervals on ``civil_date``, sorted and non-overlapping.

    Touching or overlapping definitions are merged, empty ones dropped. An
    empty list means the specialist does not work that day.
    """
    definitions = schedule.working_hours.get(civil_date.weekday(), ())
    return merge_intervals(
        CivilInterval(datetime.combine(civil_date, opens), datetime.combine(civil_date, closes))
        for opens, closes in definitions
    )


def earliest_bookable_instant(schedule: Schedule, now: datetime) -> datetime:
    require_aware(now, "now")
    return now + timedelta(minutes=schedule.min_lead_min)


def civil_day_bounds(tzid: str, civil_date: date) -> tuple[datetime, datetime]:
    start = to_utc(tzid, datetime.combine(civil_date, time.min))
    end = to_utc(tzid, datetime.combine(civil_date + timedelta(days=1), time.min))
    return start, end


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def covering_interval(schedule: Schedule, start_at: datetime, end_at: datetime) -> CivilInterval | None:
    """The working interval that fully contains ``[start_at, end_at)``, if any."""
    require_aware(start_at, "start_at")
    civil_start = to_civil(schedule.tzid, start_at)
    for interval in working_intervals(schedule, civil_start.date()):
        opens_at = to_utc(schedule.tzid, interval.opens_at)
        closes_at = to_utc(schedule.tzid, interval.closes_at)
        if opens_at <= start_at and end_at <= closes_at:
            return interval
    return None


def recurring_occurrences(
    rule: str,
    start_at: datetime,
    end_at: datetime,
    tzid: str,
    window_start: datetime,
    window_end: datetime,
    until: datetime | None = None,
) -> list[tuple[datetime, datetime]]:
    """UTC occurrences of a repeating ``[start_at, end_at)`` block that touch the window.

    The rule is expanded in the ``tzid`` civil calendar, so a weekly 13:00
    block stays at 13:00 local time across DST changes.
    """
    require_aware(start_at, "start_at")
    require_aware(end_at, "end_at")
    zone = get_zone(tzid)
    duration = end_at - start_at
    rule_set = rrulestr(rule, dtstart=start_at.astimezone(zone), forceset=True)

    blocks = []
    for occurrence in rule_set.between(window_start - duration, window_end, inc=True):
        if until is not None and occurrence > until:
            break
        block_start = occurrence.astimezone(UTC)
        block_end = (occurrence + duration).astimezone(UTC)
        if intervals_overlap(block_start, block_end, window_start, window_end):
            blocks.append((block_start, block_end))
    return blocks
