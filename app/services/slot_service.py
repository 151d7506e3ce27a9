"""Bookable start times for one specialist on one civil date.

Candidates sit on the specialist's ``slot_duration_min`` grid measured from
each working interval's opening. A candidate survives when it respects the
lead time and its buffered window ``[start, start + duration + buffer)``
misses every active booking's ``[start, end + buffer)`` and every time-off
block.
"""

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from app.db.models.booking import BookingStatus
from app.services.booking_states import ACTIVE_STATUSES
from app.services.calendar_service import (
    Schedule,
    earliest_bookable_instant,
    intervals_overlap,
    require_aware,
    to_utc,
    working_intervals,
)


@dataclass(frozen=True)
class ServiceSpec:
    service_id: int
    duration_min: int
    buffer_min_override: int | None = None

    @classmethod
    def from_service(cls, service) -> "ServiceSpec":
        return cls(
            service_id=service.id,
            duration_min=service.duration_min,
            buffer_min_override=service.buffer_min_override,
        )


@dataclass(frozen=True)
class BookedInterval:
    start_at: datetime
    end_at: datetime
    buffer_min: int = 0
    status: BookingStatus | str = BookingStatus.CONFIRMED

    @property
    def blocked_until(self) -> datetime:
        return self.end_at + timedelta(minutes=self.buffer_min)

    @property
    def is_active(self) -> bool:
        return BookingStatus(self.status) in ACTIVE_STATUSES


@dataclass(frozen=True)
class Slot:
    start_at: datetime
    end_at: datetime
    specialist_id: int | None
    service_id: int | None


def required_duration(services: Sequence[ServiceSpec]) -> int:
    return sum(service.duration_min for service in services)


def required_buffer(schedule: Schedule, services: Sequence[ServiceSpec]) -> int:
    # several overrides: the longest one wins
    overrides = [s.buffer_min_override for s in services if s.buffer_min_override is not None]
    if overrides:
        return max(overrides)
    return schedule.buffer_min_default


def _busy_windows(
    existing_bookings: Iterable[BookedInterval],
    blocked: Iterable[tuple[datetime, datetime]],
) -> list[tuple[datetime, datetime]]:
    windows = [(b.start_at, b.blocked_until) for b in existing_bookings if b.is_active]
    windows.extend(blocked)
    return sorted(windows)


def iter_slots(
    schedule: Schedule,
    services: Sequence[ServiceSpec],
    civil_date: date,
    existing_bookings: Iterable[BookedInterval],
    now: datetime,
    blocked: Iterable[tuple[datetime, datetime]] = (),
    specialist_id: int | None = None,
) -> Iterator[Slot]:
    if not services:
        raise ValueError("at least one service is required")
    require_aware(now, "now")

    duration = timedelta(minutes=required_duration(services))
    buffer = timedelta(minutes=required_buffer(schedule, services))
    step = timedelta(minutes=schedule.slot_duration_min)
    earliest = earliest_bookable_instant(schedule, now)
    busy = _busy_windows(existing_bookings, blocked)
    first_service_id = services[0].service_id

    for interval in working_intervals(schedule, civil_date):
        opens_at = to_utc(schedule.tzid, interval.opens_at)
        closes_at = to_utc(schedule.tzid, interval.closes_at)
        start = opens_at
        while start + duration <= closes_at:
            if start >= earliest and not any(
                intervals_overlap(start, start + duration + buffer, busy_start, busy_end)
                for busy_start, busy_end in busy
            ):
                yield Slot(
                    start_at=start,
                    end_at=start + duration,
                    specialist_id=specialist_id,
                    service_id=first_service_id,
                )
            start += step


def generate_slots(
    schedule: Schedule,
    services: Sequence[ServiceSpec],
    civil_date: date,
    existing_bookings: Iterable[BookedInterval],
    now: datetime,
    blocked: Iterable[tuple[datetime, datetime]] = (),
    specialist_id: int | None = None,
) -> list[Slot]:
    slots = iter_slots(
        schedule=schedule,
        services=services,
        civil_date=civil_date,
        existing_bookings=existing_bookings,
        now=now,
        blocked=blocked,
        specialist_id=specialist_id,
    )
    return sorted(slots, key=lambda slot: slot.start_at)
