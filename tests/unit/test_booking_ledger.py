from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import func, select

from app.db.models import Booking, BookingEvent, BookingStatus, PaymentStatus, TimeOff, WorkingHours
from app.services import booking_service
from app.services.booking_service import ClientInfo, cancel, reserve, set_payment_status, transition
from app.services.outcomes import (
    IdempotencyConflict,
    InvalidTransition,
    NotFound,
    SlotUnavailable,
    SpecialistNotLinked,
    ValidationFailure,
)

MOSCOW = ZoneInfo("Europe/Moscow")
GUEST = ClientInfo(name="Irina Smirnova", email="Irina@Example.com ", phone="+7 900 000-00-00")


def at(hour: int, minute: int = 0, day: int = 2) -> datetime:
    return datetime(2026, 11, day, hour, minute, tzinfo=MOSCOW)


def _count_bookings(db) -> int:
    return db.scalar(select(func.count()).select_from(Booking))


def _book(db, clinic, now, start=None, service_ids=None, **kwargs):
    return reserve(
        db=db,
        specialist_id=kwargs.pop("specialist_id", clinic.anna),
        service_ids=service_ids or [clinic.haircut],
        start_at=start or at(9),
        client=kwargs.pop("client", GUEST),
        now=now,
        **kwargs,
    )


def test_reserve_creates_confirmed_booking_with_items_and_audit(db_session, clinic, now):
    booking = _book(db_session, clinic, now)

    assert isinstance(booking, Booking)
    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.payment_status == PaymentStatus.REQUIRES_PAYMENT.value
    assert booking.start_at == at(9)
    assert booking.end_at == at(9, 30)
    assert booking.buffer_min == 15
    assert booking.blocked_until == at(9, 45)
    assert booking.price_cents == 150000
    assert booking.currency == "RUB"
    assert booking.client_email == "irina@example.com"
    assert booking.service_ids == [clinic.haircut]
    assert [(event.field, event.from_value, event.to_value, event.actor) for event in booking.events] == [
        ("status", None, "confirmed", "guest"),
        ("payment_status", None, "requires_payment", "guest"),
    ]


def test_service_requiring_confirmation_makes_booking_pending(db_session, clinic, now):
    booking = _book(db_session, clinic, now, service_ids=[clinic.haircut, clinic.manicure])

    assert booking.status == BookingStatus.PENDING.value
    assert booking.service_id == clinic.haircut
    assert booking.service_ids == [clinic.haircut, clinic.manicure]
    assert booking.duration_min == 90
    assert booking.end_at == at(10, 30)
    assert booking.price_cents == 350000


def test_specialist_policy_applies_without_service_override(db_session, clinic, now):
    booking = _book(db_session, clinic, now, specialist_id=clinic.boris, start=at(10))

    assert booking.status == BookingStatus.PENDING.value
    assert booking.buffer_min == 10


def test_buffer_override_is_stored_on_booking(db_session, clinic, now):
    booking = _book(db_session, clinic, now, service_ids=[clinic.coloring])

    assert booking.buffer_min == 30
    assert booking.blocked_until == at(10, 15)


def test_reserve_rejects_specialist_not_providing_service(db_session, clinic, now):
    outcome = _book(db_session, clinic, now, specialist_id=clinic.boris, start=at(10), service_ids=[clinic.coloring])

    assert isinstance(outcome, SpecialistNotLinked)
    assert outcome.service_ids == (clinic.coloring,)
    assert _count_bookings(db_session) == 0


def test_reserve_rejects_overlap_with_buffered_booking(db_session, clinic, now):
    first = _book(db_session, clinic, now, start=at(9))
    overlapping = _book(db_session, clinic, now, start=at(9, 30), client=ClientInfo("Oleg", "oleg@example.com"))
    after_buffer = _book(db_session, clinic, now, start=at(10), client=ClientInfo("Oleg", "oleg@example.com"))

    assert isinstance(first, Booking)
    assert isinstance(overlapping, SlotUnavailable)
    assert isinstance(after_buffer, Booking)
    assert _count_bookings(db_session) == 2


def test_new_booking_buffer_must_clear_next_booking(db_session, clinic, now):
    _book(db_session, clinic, now, start=at(11))

    outcome = _book(db_session, clinic, now, start=at(10, 30), client=ClientInfo("Oleg", "oleg@example.com"))

    assert isinstance(outcome, SlotUnavailable)


def test_reserve_rejects_start_outside_working_hours(db_session, clinic, now):
    too_late = _book(db_session, clinic, now, start=at(17, 45))
    sunday = _book(db_session, clinic, now, start=at(10, day=8))

    assert isinstance(too_late, SlotUnavailable)
    assert isinstance(sunday, SlotUnavailable)


def test_reserve_rejects_start_inside_lead_time(db_session, clinic):
    outcome = _book(db_session, clinic, at(8, 30), start=at(9))

    assert isinstance(outcome, SlotUnavailable)


def test_reserve_rejects_naive_start(db_session, clinic, now):
    outcome = _book(db_session, clinic, now, start=datetime(2026, 11, 2, 9, 0))

    assert isinstance(outcome, ValidationFailure)


def test_reserve_rejects_mixed_currencies(db_session, clinic, now):
    outcome = _book(db_session, clinic, now, service_ids=[clinic.haircut, clinic.massage])

    assert isinstance(outcome, ValidationFailure)


def test_reserve_unknown_specialist_or_service(db_session, clinic, now):
    assert isinstance(_book(db_session, clinic, now, specialist_id=999), NotFound)
    assert isinstance(_book(db_session, clinic, now, service_ids=[999]), NotFound)


def test_reserve_rejects_overlap_with_time_off(db_session, clinic, now):
    db_session.add(TimeOff(specialist_id=clinic.anna, start_at=at(12), end_at=at(13), reason="training"))
    db_session.commit()

    assert isinstance(_book(db_session, clinic, now, start=at(11, 30)), SlotUnavailable)
    assert isinstance(_book(db_session, clinic, now, start=at(13)), Booking)


def test_weekly_time_off_blocks_every_occurrence(db_session, clinic, now):
    db_session.add(
        TimeOff(
            specialist_id=clinic.anna,
            start_at=datetime(2026, 10, 26, 13, 0, tzinfo=MOSCOW),
            end_at=datetime(2026, 10, 26, 14, 0, tzinfo=MOSCOW),
            reason="lunch",
            rrule="FREQ=WEEKLY;BYDAY=MO",
        )
    )
    db_session.commit()

    assert isinstance(_book(db_session, clinic, now, start=at(13, 30)), SlotUnavailable)
    assert isinstance(_book(db_session, clinic, now, start=at(14)), Booking)


def test_weekly_time_off_stops_at_rrule_until(db_session, clinic, now):
    db_session.add(
        TimeOff(
            specialist_id=clinic.anna,
            start_at=datetime(2026, 10, 26, 13, 0, tzinfo=MOSCOW),
            end_at=datetime(2026, 10, 26, 14, 0, tzinfo=MOSCOW),
            reason="lunch",
            rrule="FREQ=WEEKLY;BYDAY=MO",
            rrule_until=at(0, day=1),
        )
    )
    db_session.commit()

    assert isinstance(_book(db_session, clinic, now, start=at(13, 30)), Booking)


def test_same_idempotency_key_replays_booking(db_session, clinic, now):
    first = _book(db_session, clinic, now, idempotency_key="checkout-1")
    replay = _book(db_session, clinic, now, idempotency_key="checkout-1")
    reused = _book(db_session, clinic, now, start=at(10), idempotency_key="checkout-1")

    assert replay.id == first.id
    assert isinstance(reused, IdempotencyConflict)
    assert _count_bookings(db_session) == 1


def test_retry_that_waited_on_lock_replays_original_booking(db_session, clinic, now, monkeypatch):
    first = _book(db_session, clinic, now, idempotency_key="checkout-1")
    lookup = booking_service._get_booking_by_idempotency_key
    calls = []

    def missed_before_lock(db, email, key):
        calls.append(key)
        # the original request was still in flight when the retry first looked
        return None if len(calls) == 1 else lookup(db, email, key)

    monkeypatch.setattr(booking_service, "_get_booking_by_idempotency_key", missed_before_lock)
    retry = _book(db_session, clinic, now, idempotency_key="checkout-1")

    assert isinstance(retry, Booking)
    assert retry.id == first.id
    assert len(calls) == 2
    assert _count_bookings(db_session) == 1


def test_canceled_booking_frees_its_slot(db_session, clinic, now):
    first = _book(db_session, clinic, now)
    canceled = cancel(db_session, first.id, actor="admin:frontdesk", now=now)
    again = _book(db_session, clinic, now, client=ClientInfo("Oleg", "oleg@example.com"))

    assert canceled.status == BookingStatus.CANCELED.value
    assert canceled.canceled_at == now
    assert isinstance(again, Booking)


def test_pending_booking_lifecycle_is_audited(db_session, clinic, now):
    booking = _book(db_session, clinic, now, specialist_id=clinic.boris, start=at(10))

    confirmed = transition(db_session, booking.id, BookingStatus.CONFIRMED, actor="specialist:boris")
    assert confirmed.status == BookingStatus.CONFIRMED.value

    completed = transition(db_session, booking.id, "completed", actor="specialist:boris")
    assert completed.status == BookingStatus.COMPLETED.value
    events = db_session.scalars(
        select(BookingEvent).where(BookingEvent.booking_id == booking.id, BookingEvent.field == "status")
    ).all()
    assert [(event.from_value, event.to_value) for event in events] == [
        (None, "pending"),
        ("pending", "confirmed"),
        ("confirmed", "completed"),
    ]
    assert events[-1].actor == "specialist:boris"


def test_canceled_booking_cannot_be_confirmed(db_session, clinic, now):
    booking = _book(db_session, clinic, now, specialist_id=clinic.boris, start=at(10))
    cancel(db_session, booking.id, actor="guest", now=now)

    outcome = transition(db_session, booking.id, BookingStatus.CONFIRMED, actor="admin:frontdesk")

    assert isinstance(outcome, InvalidTransition)
    assert db_session.get(Booking, booking.id).status == BookingStatus.CANCELED.value


def test_transition_to_current_status_changes_nothing(db_session, clinic, now):
    booking = _book(db_session, clinic, now)
    events_before = len(booking.events)

    same = transition(db_session, booking.id, BookingStatus.CONFIRMED, actor="admin:frontdesk")

    assert same.status == BookingStatus.CONFIRMED.value
    assert db_session.scalar(
        select(func.count()).select_from(BookingEvent).where(BookingEvent.booking_id == booking.id)
    ) == events_before


def test_cancel_is_idempotent_but_not_after_completion(db_session, clinic, now):
    booking = _book(db_session, clinic, now)
    first = cancel(db_session, booking.id, actor="guest", now=now)
    second = cancel(db_session, booking.id, actor="guest", now=now + timedelta(minutes=5))

    assert second.id == first.id
    assert second.canceled_at == now

    done = _book(db_session, clinic, now, start=at(12), client=ClientInfo("Oleg", "oleg@example.com"))
    transition(db_session, done.id, BookingStatus.COMPLETED, actor="admin:frontdesk")
    assert isinstance(cancel(db_session, done.id, actor="guest", now=now), InvalidTransition)


def test_missing_booking_is_not_found(db_session, clinic):
    assert isinstance(transition(db_session, 404, BookingStatus.CONFIRMED, actor="admin:frontdesk"), NotFound)
    assert isinstance(cancel(db_session, 404, actor="admin:frontdesk"), NotFound)
    assert isinstance(set_payment_status(db_session, 404, PaymentStatus.PAID, actor="payments"), NotFound)


def test_payment_status_moves_independently(db_session, clinic, now):
    booking = _book(db_session, clinic, now)

    paid = set_payment_status(db_session, booking.id, PaymentStatus.PAID, actor="payments")
    assert paid.payment_status == PaymentStatus.PAID.value

    refunded = set_payment_status(db_session, booking.id, "refunded", actor="payments")
    assert refunded.payment_status == PaymentStatus.REFUNDED.value
    assert refunded.status == BookingStatus.CONFIRMED.value

    back_to_paid = set_payment_status(db_session, booking.id, PaymentStatus.PAID, actor="payments")
    assert isinstance(back_to_paid, InvalidTransition)


def test_payment_cancel_requires_canceled_booking(db_session, clinic, now):
    booking = _book(db_session, clinic, now)

    early = set_payment_status(db_session, booking.id, PaymentStatus.CANCELED, actor="payments")
    cancel(db_session, booking.id, actor="guest", now=now)
    after = set_payment_status(db_session, booking.id, PaymentStatus.CANCELED, actor="payments")

    assert isinstance(early, InvalidTransition)
    assert after.payment_status == PaymentStatus.CANCELED.value


def test_list_bookings_filters(db_session, clinic, now):
    _book(db_session, clinic, now, start=at(9))
    pending = _book(db_session, clinic, now, specialist_id=clinic.boris, start=at(10))
    _book(db_session, clinic, now, start=at(10, day=3), client=ClientInfo("Oleg", "oleg@example.com"))

    by_status = booking_service.list_bookings(db_session, status=BookingStatus.PENDING)
    by_specialist = booking_service.list_bookings(db_session, specialist_id=clinic.anna)
    by_day = booking_service.list_bookings(db_session, date_from=at(0, day=3).date())

    assert [booking.id for booking in by_status] == [pending.id]
    assert len(by_specialist) == 2
    assert len(by_day) == 1
    assert by_day[0].start_at == at(10, day=3).astimezone(UTC)


def test_list_bookings_date_filters_use_clinic_days(db_session, clinic, now):
    db_session.add(WorkingHours(specialist_id=clinic.anna, weekday=1, opens_at=time(0, 30), closes_at=time(2)))
    db_session.commit()
    # 01:00 Tuesday in Moscow is still Monday in UTC
    early = _book(db_session, clinic, now, start=at(1, day=3))
    assert isinstance(early, Booking)

    tuesday = booking_service.list_bookings(db_session, date_from=date(2026, 11, 3))
    monday = booking_service.list_bookings(db_session, date_to=date(2026, 11, 2))

    assert [booking.id for booking in tuesday] == [early.id]
    assert monday == []
