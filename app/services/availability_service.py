from collections.abc import Sequence
from datetime import date, datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from app.db.models import Booking, Service, Specialist, SpecialistService, TimeOff
from app.services.booking_states import ACTIVE_STATUSES
from app.services.calendar_service import Schedule, civil_day_bounds, recurring_occurrences
from app.services.outcomes import NotFound, SpecialistNotLinked, ValidationFailure
from app.services.slot_service import BookedInterval, ServiceSpec, Slot, generate_slots

ACTIVE_STATUS_VALUES = tuple(status.value for status in ACTIVE_STATUSES)


def get_active_specialist(db: Session, specialist_id: int) -> Specialist | None:
    return db.scalar(
        select(Specialist)
        .options(selectinload(Specialist.working_hours))
        .where(Specialist.id == specialist_id, Specialist.is_active.is_(True))
    )


def resolve_services(
    db: Session, service_ids: Sequence[int]
) -> list[Service] | NotFound | ValidationFailure:
    """Load active services in the order they were selected."""
    if not service_ids:
        return ValidationFailure(detail="At least one service must be selected")
    if len(set(service_ids)) != len(service_ids):
        return ValidationFailure(detail="Each service can be selected only once")

    found = {
        service.id: service
        for service in db.scalars(
            select(Service).where(Service.id.in_(service_ids), Service.is_active.is_(True))
        )
    }
    missing = [service_id for service_id in service_ids if service_id not in found]
    if missing:
        return NotFound(detail=f"Services not found: {', '.join(str(i) for i in missing)}")
    return [found[service_id] for service_id in service_ids]


def unlinked_service_ids(db: Session, specialist_id: int, service_ids: Sequence[int]) -> list[int]:
    linked = set(
        db.scalars(
            select(SpecialistService.service_id).where(
                SpecialistService.specialist_id == specialist_id,
                SpecialistService.service_id.in_(service_ids),
                SpecialistService.is_active.is_(True),
            )
        )
    )
    return [service_id for service_id in service_ids if service_id not in linked]


def booked_intervals(
    db: Session,
    specialist_id: int,
    window_start: datetime,
    window_end: datetime,
    exclude_booking_id: int | None = None,
) -> list[BookedInterval]:
    query = select(Booking.start_at, Booking.end_at, Booking.buffer_min, Booking.status).where(
        Booking.specialist_id == specialist_id,
        Booking.status.in_(ACTIVE_STATUS_VALUES),
        Booking.start_at < window_end,
        Booking.blocked_until > window_start,
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)

    return [
        BookedInterval(start_at=start_at, end_at=end_at, buffer_min=buffer_min, status=status)
        for start_at, end_at, buffer_min, status in db.execute(query.order_by(Booking.start_at))
    ]


def time_off_blocks(
    db: Session,
    specialist_id: int,
    window_start: datetime,
    window_end: datetime,
    tzid: str,
) -> list[tuple[datetime, datetime]]:
    rows = db.scalars(
        select(TimeOff).where(
            TimeOff.specialist_id == specialist_id,
            TimeOff.start_at < window_end,
            or_(TimeOff.rrule.is_not(None), TimeOff.end_at > window_start),
        )
    ).all()

    blocks = []
    for row in rows:
        if row.rrule:
            blocks.extend(
                recurring_occurrences(
                    row.rrule,
                    row.start_at,
                    row.end_at,
                    tzid,
                    window_start,
                    window_end,
                    until=row.rrule_until,
                )
            )
        else:
            blocks.append((row.start_at, row.end_at))
    return sorted(blocks)


def list_available_slots(
    db: Session,
    specialist_id: int,
    service_ids: Sequence[int],
    civil_date: date,
    now: datetime,
) -> list[Slot] | NotFound | SpecialistNotLinked | ValidationFailure:
    specialist = get_active_specialist(db, specialist_id)
    if not specialist:
        return NotFound(detail="Specialist not found")

    services = resolve_services(db, service_ids)
    if not isinstance(services, list):
        return services

    unlinked = unlinked_service_ids(db, specialist_id, service_ids)
    if unlinked:
        return SpecialistNotLinked(
            detail="Specialist does not provide every selected service",
            specialist_id=specialist_id,
            service_ids=tuple(unlinked),
        )

    day_start, day_end = civil_day_bounds(specialist.tzid, civil_date)
    # a late candidate's buffered window may reach into the next day
    window_end = day_end + timedelta(days=1)
    return generate_slots(
        schedule=Schedule.from_specialist(specialist),
        services=[ServiceSpec.from_service(service) for service in services],
        civil_date=civil_date,
        existing_bookings=booked_intervals(db, specialist_id, day_start, window_end),
        blocked=time_off_blocks(db, specialist_id, day_start, window_end, tzid=specialist.tzid),
        now=now,
        specialist_id=specialist_id,
    )
