from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

from app.db.models import BookingStatus
from app.services.calendar_service import Schedule
from app.services.slot_service import (
    BookedInterval,
    ServiceSpec,
    generate_slots,
    required_buffer,
    required_duration,
)

MOSCOW = ZoneInfo("Europe/Moscow")
MONDAY = date(2026, 11, 2)
HAIRCUT = ServiceSpec(service_id=1, duration_min=30)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=MOSCOW)


def _schedule(hours=None, **overrides) -> Schedule:
    values = {
        "tzid": "Europe/Moscow",
        "slot_duration_min": 30,
        "buffer_min_default": 15,
        "min_lead_min": 60,
        "working_hours": hours if hours is not None else {0: [(time(9), time(18))]},
    }
    values.update(overrides)
    return Schedule(**values)


def _starts(slots) -> list[datetime]:
    return [slot.start_at for slot in slots]


def _booked(start: datetime, duration_min: int = 30, buffer_min: int = 15, status=BookingStatus.CONFIRMED):
    return BookedInterval(
        start_at=start.astimezone(UTC),
        end_at=(start + timedelta(minutes=duration_min)).astimezone(UTC),
        buffer_min=buffer_min,
        status=status,
    )


def test_first_slot_of_the_day_respects_lead_time():
    slots = generate_slots(_schedule(), [HAIRCUT], MONDAY, existing_bookings=[], now=at(8))

    assert slots[0].start_at == at(9)
    assert slots[0].end_at == at(9, 30)
    assert slots[-1].start_at == at(17, 30)
    assert len(slots) == 18
    assert all(slot.start_at.tzinfo is not None for slot in slots)


def test_buffered_booking_hides_following_candidate():
    # 09:00 booked, blocked until 09:45: 09:30 would overlap, 10:00 is free
    slots = generate_slots(_schedule(), [HAIRCUT], MONDAY, existing_bookings=[_booked(at(9))], now=at(8))
    starts = _starts(slots)

    assert at(9) not in starts
    assert at(9, 30) not in starts
    assert at(10) in starts


def test_candidate_own_buffer_must_not_reach_next_booking():
    slots = generate_slots(_schedule(), [HAIRCUT], MONDAY, existing_bookings=[_booked(at(11))], now=at(8))
    starts = _starts(slots)

    assert at(10) in starts
    assert at(10, 30) not in starts


def test_zero_buffer_override_replaces_specialist_default():
    no_buffer = ServiceSpec(service_id=2, duration_min=30, buffer_min_override=0)

    slots = generate_slots(
        _schedule(),
        [no_buffer],
        MONDAY,
        existing_bookings=[_booked(at(11), buffer_min=0)],
        now=at(8),
    )

    assert at(10, 30) in _starts(slots)


def test_canceled_and_no_show_bookings_do_not_block():
    existing = [
        _booked(at(9), status=BookingStatus.CANCELED),
        _booked(at(10), status=BookingStatus.NO_SHOW),
    ]

    slots = generate_slots(_schedule(), [HAIRCUT], MONDAY, existing_bookings=existing, now=at(8))
    starts = _starts(slots)

    assert at(9) in starts
    assert at(10) in starts


def test_pending_booking_blocks_like_confirmed():
    slots = generate_slots(
        _schedule(),
        [HAIRCUT],
        MONDAY,
        existing_bookings=[_booked(at(9), status=BookingStatus.PENDING)],
        now=at(8),
    )

    assert at(9) not in _starts(slots)


def test_multi_service_selection_uses_aggregate_duration():
    services = [HAIRCUT, ServiceSpec(service_id=2, duration_min=45)]

    slots = generate_slots(_schedule(), services, MONDAY, existing_bookings=[], now=at(8))

    assert required_duration(services) == 75
    assert slots[0].end_at - slots[0].start_at == timedelta(minutes=75)
    assert slots[-1].start_at == at(16, 30)
    assert slots[0].service_id == 1


def test_lead_time_boundary_is_inclusive():
    exactly = generate_slots(_schedule(), [HAIRCUT], MONDAY, existing_bookings=[], now=at(8))
    one_minute_late = generate_slots(_schedule(), [HAIRCUT], MONDAY, existing_bookings=[], now=at(8, 1))

    assert exactly[0].start_at == at(9)
    assert one_minute_late[0].start_at == at(9, 30)


def test_day_off_has_no_slots():
    sunday = date(2026, 11, 1)

    assert generate_slots(_schedule(), [HAIRCUT], sunday, existing_bookings=[], now=at(8, day=sunday)) == []


def test_long_service_must_fit_inside_one_working_interval():
    hours = {0: [(time(9), time(12)), (time(13), time(18))]}
    long_service = ServiceSpec(service_id=3, duration_min=240)

    slots = generate_slots(_schedule(hours), [long_service], MONDAY, existing_bookings=[], now=at(8))

    assert _starts(slots) == [at(13), at(13, 30), at(14)]


def test_grid_starts_at_each_interval_opening():
    hours = {0: [(time(9), time(11)), (time(13, 15), time(15))]}

    slots = generate_slots(_schedule(hours), [HAIRCUT], MONDAY, existing_bookings=[], now=at(8))

    assert _starts(slots) == [at(9), at(9, 30), at(10), at(10, 30), at(13, 15), at(13, 45), at(14, 15)]


def test_time_off_blocks_overlapping_candidates():
    blocked = [(at(12).astimezone(UTC), at(13).astimezone(UTC))]

    slots = generate_slots(_schedule(), [HAIRCUT], MONDAY, existing_bookings=[], now=at(8), blocked=blocked)
    starts = _starts(slots)

    assert at(11) in starts
    assert at(11, 30) not in starts
    assert at(12, 30) not in starts
    assert at(13) in starts


def test_longest_buffer_override_wins():
    services = [
        ServiceSpec(service_id=1, duration_min=30, buffer_min_override=5),
        ServiceSpec(service_id=2, duration_min=30, buffer_min_override=25),
        ServiceSpec(service_id=3, duration_min=30),
    ]

    assert required_buffer(_schedule(), services) == 25
    assert required_buffer(_schedule(), [HAIRCUT]) == 15


def test_naive_now_is_rejected():
    with pytest.raises(ValueError):
        generate_slots(_schedule(), [HAIRCUT], MONDAY, existing_bookings=[], now=datetime(2026, 11, 2, 8, 0))


def test_slots_are_sorted_and_non_overlapping():
    hours = {0: [(time(14), time(18)), (time(9), time(12))]}

    slots = generate_slots(_schedule(hours), [HAIRCUT], MONDAY, existing_bookings=[_booked(at(10))], now=at(8))

    starts = _starts(slots)
    assert starts == sorted(starts)
    assert len(set(starts)) == len(starts)
