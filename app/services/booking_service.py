import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.metrics import RESERVATION_OUTCOMES, TRANSITION_OUTCOMES
from app.db.models import Booking, BookingEvent, BookingItem, BookingStatus, PaymentStatus, Specialist
from app.services.availability_service import (
    booked_intervals,
    get_active_specialist,
    resolve_services,
    time_off_blocks,
    unlinked_service_ids,
)
from app.services.booking_states import apply_payment_transition, apply_transition, initial_status, is_terminal
from app.services.calendar_service import Schedule, civil_day_bounds, covering_interval, earliest_bookable_instant
from app.services.outcomes import (
    IdempotencyConflict,
    InvalidTransition,
    NotFound,
    SlotUnavailable,
    SpecialistNotLinked,
    ValidationFailure,
)
from app.services.slot_service import ServiceSpec, required_buffer, required_duration

logger = logging.getLogger(__name__)

SLOT_ALREADY_BOOKED_DETAIL = "Slot is no longer available. Refresh the slot list and pick another time."
LOCK_CONFLICT_DETAIL = "Another booking for this specialist is in progress. Refresh the slot list and retry."
IDEMPOTENCY_KEY_REUSE_DETAIL = "Idempotency key already used with another booking"
PG_LOCK_NOT_AVAILABLE_SQLSTATE = "55P03"


@dataclass(frozen=True)
class ClientInfo:
    name: str
    email: str
    phone: str | None = None


def _is_postgresql_session(db: Session) -> bool:
    bind = db.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def _is_lock_not_available(exc: OperationalError) -> bool:
    original_error = getattr(exc, "orig", None)
    if original_error is None:
        return False

    sqlstate = getattr(original_error, "sqlstate", None)
    if sqlstate is None:
        sqlstate = getattr(original_error, "pgcode", None)
    if sqlstate == PG_LOCK_NOT_AVAILABLE_SQLSTATE:
        return True

    # sqlite reports an expired busy timeout this way
    return "database is locked" in str(original_error)


def _get_booking_by_idempotency_key(db: Session, client_email: str, idempotency_key: str) -> Booking | None:
    return db.scalar(
        select(Booking).where(
            Booking.client_email == client_email,
            Booking.idempotency_key == idempotency_key,
        )
    )


def _replay_idempotent(
    existing: Booking,
    specialist_id: int,
    service_ids: Sequence[int],
    start_at: datetime,
) -> Booking | IdempotencyConflict:
    same_request = (
        existing.specialist_id == specialist_id
        and existing.start_at == start_at
        and existing.service_ids == list(service_ids)
    )
    if not same_request:
        return IdempotencyConflict(detail=IDEMPOTENCY_KEY_REUSE_DETAIL)
    return existing


def _lock_specialist(db: Session, specialist_id: int) -> bool:
    """Serialize reservations for one specialist until the transaction ends."""
    if _is_postgresql_session(db):
        timeout_ms = int(settings.reservation_lock_timeout_ms)
        db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))

    locked = db.execute(
        update(Specialist)
        .where(Specialist.id == specialist_id)
        .values(reservation_seq=Specialist.reservation_seq + 1)
        .execution_options(synchronize_session=False)
    )
    return locked.rowcount == 1


def _record_event(db: Session, booking_id: int, field: str, from_value: str | None, to_value: str, actor: str) -> None:
    db.add(
        BookingEvent(
            booking_id=booking_id,
            field=field,
            from_value=from_value,
            to_value=to_value,
            actor=actor,
        )
    )


def _validate_client(client: ClientInfo) -> ClientInfo | ValidationFailure:
    name = client.name.strip()
    email = client.email.strip().lower()
    if len(name) < 2:
        return ValidationFailure(detail="Client name must have at least 2 characters")
    if "@" not in email:
        return ValidationFailure(detail="Client email is invalid")
    phone = client.phone.strip() if client.phone else None
    return ClientInfo(name=name, email=email, phone=phone or None)


def reserve(
    db: Session,
    specialist_id: int,
    service_ids: Sequence[int],
    start_at: datetime,
    client: ClientInfo,
    note: str | None = None,
    idempotency_key: str | None = None,
    now: datetime | None = None,
    actor: str = "guest",
) -> Booking | SlotUnavailable | SpecialistNotLinked | NotFound | ValidationFailure | IdempotencyConflict:
    """Turn a chosen start time into a booking, or explain why it cannot be booked.

    Everything the slot list promised is re-checked here, under the
    specialist lock, because another client may have booked in the meantime.
    """
    current_time = now or datetime.now(UTC)
    if start_at.tzinfo is None or start_at.utcoffset() is None:
        return _reservation_failed(ValidationFailure(detail="start_at must include a timezone offset"))
    start_at = start_at.astimezone(UTC)
    service_ids = list(service_ids)

    client = _validate_client(client)
    if isinstance(client, ValidationFailure):
        return _reservation_failed(client)

    if idempotency_key:
        existing = _get_booking_by_idempotency_key(db, client.email, idempotency_key)
        if existing:
            return _replay_idempotent(existing, specialist_id, service_ids, start_at)

    specialist = get_active_specialist(db, specialist_id)
    if not specialist:
        return _reservation_failed(NotFound(detail="Specialist not found"))

    services = resolve_services(db, service_ids)
    if not isinstance(services, list):
        return _reservation_failed(services)

    currencies = {service.currency for service in services}
    if len(currencies) > 1:
        return _reservation_failed(ValidationFailure(detail="Selected services use different currencies"))

    unlinked = unlinked_service_ids(db, specialist_id, service_ids)
    if unlinked:
        return _reservation_failed(
            SpecialistNotLinked(
                detail="Specialist does not provide every selected service",
                specialist_id=specialist_id,
                service_ids=tuple(unlinked),
            )
        )

    schedule = Schedule.from_specialist(specialist)
    specs = [ServiceSpec.from_service(service) for service in services]
    buffer_min = required_buffer(schedule, specs)
    end_at = start_at + timedelta(minutes=required_duration(specs))
    blocked_until = end_at + timedelta(minutes=buffer_min)

    if start_at < earliest_bookable_instant(schedule, current_time):
        return _reservation_failed(SlotUnavailable(detail="Start time is too soon or already in the past"))
    if covering_interval(schedule, start_at, end_at) is None:
        return _reservation_failed(SlotUnavailable(detail="Start time is outside working hours"))

    overrides = [service.requires_confirmation for service in services if service.requires_confirmation is not None]
    requires_confirmation = any(overrides) if overrides else specialist.requires_confirmation
    status = initial_status(requires_confirmation)

    try:
        if not _lock_specialist(db, specialist_id):
            db.rollback()
            return _reservation_failed(NotFound(detail="Specialist not found"))

        if idempotency_key:
            # a retry that waited on the lock behind its own original request
            existing = _get_booking_by_idempotency_key(db, client.email, idempotency_key)
            if existing:
                replayed = _replay_idempotent(existing, specialist_id, service_ids, start_at)
                db.rollback()
                return replayed

        conflicts = booked_intervals(db, specialist_id, start_at, blocked_until)
        blocks = time_off_blocks(db, specialist_id, start_at, blocked_until, tzid=specialist.tzid)
        if conflicts or blocks:
            db.rollback()
            logger.info(
                "reservation_conflict specialist_id=%s start_at=%s bookings=%s time_off=%s",
                specialist_id,
                start_at.isoformat(),
                len(conflicts),
                len(blocks),
            )
            return _reservation_failed(SlotUnavailable(detail=SLOT_ALREADY_BOOKED_DETAIL))

        booking = Booking(
            specialist_id=specialist_id,
            service_id=service_ids[0],
            start_at=start_at,
            end_at=end_at,
            buffer_min=buffer_min,
            blocked_until=blocked_until,
            status=status.value,
            payment_status=PaymentStatus.REQUIRES_PAYMENT.value,
            price_cents=sum(service.price_cents for service in services),
            currency=services[0].currency,
            client_name=client.name,
            client_email=client.email,
            client_phone=client.phone,
            note=note,
            idempotency_key=idempotency_key,
            items=[
                BookingItem(
                    position=position,
                    service_id=service.id,
                    duration_min=service.duration_min,
                    price_cents=service.price_cents,
                )
                for position, service in enumerate(services)
            ],
        )
        db.add(booking)
        db.flush()
        _record_event(db, booking.id, "status", None, status.value, actor)
        _record_event(db, booking.id, "payment_status", None, PaymentStatus.REQUIRES_PAYMENT.value, actor)
        db.commit()
    except OperationalError as exc:
        db.rollback()
        if _is_lock_not_available(exc):
            return _reservation_failed(SlotUnavailable(detail=LOCK_CONFLICT_DETAIL))
        raise
    except IntegrityError:
        db.rollback()
        if idempotency_key:
            existing = _get_booking_by_idempotency_key(db, client.email, idempotency_key)
            if existing:
                return _replay_idempotent(existing, specialist_id, service_ids, start_at)
        raise

    db.refresh(booking)
    RESERVATION_OUTCOMES.labels(outcome="created").inc()
    logger.info(
        "booking_reserved booking_id=%s specialist_id=%s start_at=%s status=%s",
        booking.id,
        specialist_id,
        start_at.isoformat(),
        booking.status,
    )
    return booking


def _reservation_failed(outcome):
    RESERVATION_OUTCOMES.labels(outcome=outcome.code).inc()
    logger.info("reservation_rejected code=%s detail=%s", outcome.code, outcome.detail)
    return outcome


def get_booking(db: Session, booking_id: int) -> Booking | NotFound:
    booking = db.scalar(
        select(Booking)
        .options(selectinload(Booking.items), selectinload(Booking.events))
        .where(Booking.id == booking_id)
    )
    if not booking:
        return NotFound(detail="Booking not found")
    return booking


def _compare_and_set(
    db: Session,
    booking: Booking,
    field: str,
    new_value: str,
    actor: str,
    extra_values: dict | None = None,
) -> bool:
    column = getattr(Booking, field)
    current_value = getattr(booking, field)
    values = {field: new_value, **(extra_values or {})}
    updated = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, column == current_value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if updated.rowcount != 1:
        db.rollback()
        return False

    _record_event(db, booking.id, field, current_value, new_value, actor)
    db.commit()
    return True


def transition_applied(
    db: Session,
    booking_id: int,
    requested: BookingStatus | str,
    actor: str,
    now: datetime | None = None,
) -> tuple[Booking | InvalidTransition | NotFound, bool]:
    """Like ``transition``, also telling whether this call made the change."""
    requested = BookingStatus(requested)
    booking = db.get(Booking, booking_id)
    if not booking:
        return NotFound(detail="Booking not found"), False
    if booking.status == requested.value:
        return booking, False

    outcome = apply_transition(booking.status, requested)
    if isinstance(outcome, InvalidTransition):
        TRANSITION_OUTCOMES.labels(field="status", target=requested.value, outcome=outcome.code).inc()
        return outcome, False

    extra_values = {}
    if requested == BookingStatus.CANCELED:
        extra_values["canceled_at"] = now or datetime.now(UTC)

    previous = booking.status
    if not _compare_and_set(db, booking, "status", requested.value, actor, extra_values):
        # lost the race: accept it only if the winner already did what we asked
        db.refresh(booking)
        if booking.status == requested.value:
            return booking, False
        TRANSITION_OUTCOMES.labels(field="status", target=requested.value, outcome="invalid_transition").inc()
        return (
            InvalidTransition(
                detail=f"Booking changed to {booking.status} concurrently",
                current=booking.status,
                requested=requested.value,
            ),
            False,
        )

    db.refresh(booking)
    TRANSITION_OUTCOMES.labels(field="status", target=requested.value, outcome="applied").inc()
    logger.info(
        "booking_transition booking_id=%s from=%s to=%s actor=%s",
        booking.id,
        previous,
        requested.value,
        actor,
    )
    return booking, True


def transition(
    db: Session,
    booking_id: int,
    requested: BookingStatus | str,
    actor: str,
    now: datetime | None = None,
) -> Booking | InvalidTransition | NotFound:
    outcome, _ = transition_applied(db, booking_id, requested, actor=actor, now=now)
    return outcome


def cancel(
    db: Session,
    booking_id: int,
    actor: str,
    now: datetime | None = None,
) -> Booking | InvalidTransition | NotFound:
    booking = db.get(Booking, booking_id)
    if not booking:
        return NotFound(detail="Booking not found")
    if booking.status == BookingStatus.CANCELED.value:
        return booking
    if is_terminal(booking.status):
        return InvalidTransition(
            detail=f"Booking is already {booking.status} and cannot be canceled",
            current=booking.status,
            requested=BookingStatus.CANCELED.value,
        )
    return transition(db, booking_id, BookingStatus.CANCELED, actor=actor, now=now)


def set_payment_status(
    db: Session,
    booking_id: int,
    requested: PaymentStatus | str,
    actor: str,
) -> Booking | InvalidTransition | NotFound:
    """Apply a payment gateway callback or a staff override."""
    requested = PaymentStatus(requested)
    booking = db.get(Booking, booking_id)
    if not booking:
        return NotFound(detail="Booking not found")
    if booking.payment_status == requested.value:
        return booking

    outcome = apply_payment_transition(booking.payment_status, requested)
    if isinstance(outcome, InvalidTransition):
        TRANSITION_OUTCOMES.labels(field="payment_status", target=requested.value, outcome=outcome.code).inc()
        return outcome
    if requested == PaymentStatus.CANCELED and booking.status != BookingStatus.CANCELED.value:
        return InvalidTransition(
            detail="Payment can be canceled only after the booking is canceled",
            current=booking.payment_status,
            requested=requested.value,
        )

    if not _compare_and_set(db, booking, "payment_status", requested.value, actor):
        db.refresh(booking)
        if booking.payment_status == requested.value:
            return booking
        return InvalidTransition(
            detail=f"Payment changed to {booking.payment_status} concurrently",
            current=booking.payment_status,
            requested=requested.value,
        )

    db.refresh(booking)
    TRANSITION_OUTCOMES.labels(field="payment_status", target=requested.value, outcome="applied").inc()
    logger.info(
        "payment_transition booking_id=%s to=%s actor=%s",
        booking.id,
        requested.value,
        actor,
    )
    return booking


def list_bookings(
    db: Session,
    specialist_id: int | None = None,
    status: BookingStatus | None = None,
    payment_status: PaymentStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Booking]:
    query = select(Booking).options(selectinload(Booking.items))
    if specialist_id is not None:
        query = query.where(Booking.specialist_id == specialist_id)
    if status:
        query = query.where(Booking.status == status.value)
    if payment_status:
        query = query.where(Booking.payment_status == payment_status.value)
    if date_from:
        # clinic civil dates, not UTC ones
        query = query.where(Booking.start_at >= civil_day_bounds(settings.default_tzid, date_from)[0])
    if date_to:
        query = query.where(Booking.start_at < civil_day_bounds(settings.default_tzid, date_to)[1])

    return list(db.scalars(query.order_by(Booking.start_at, Booking.id).limit(limit).offset(offset)).all())
