"""Guest booking flow: categories -> services -> specialist -> slot -> booking.

A multi-service selection is one appointment with one specialist, services
back-to-back, so the specialist must provide every selected service.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.db.models import Booking, Service, Specialist, SpecialistService
from app.services import booking_service
from app.services.availability_service import list_available_slots, resolve_services
from app.services.booking_service import ClientInfo
from app.services.outcomes import (
    IdempotencyConflict,
    NotFound,
    SlotUnavailable,
    SpecialistNotLinked,
    ValidationFailure,
)
from app.services.slot_service import ServiceSpec, Slot, required_duration


@dataclass(frozen=True)
class QuoteLine:
    service_id: int
    title: str
    duration_min: int
    price_cents: int


@dataclass(frozen=True)
class Quote:
    service_ids: tuple[int, ...]
    total_price_cents: int
    currency: str
    total_duration_min: int
    buffer_min_override: int | None
    lines: tuple[QuoteLine, ...]


def services_for_categories(db: Session, categories: Sequence[str] | None = None) -> list[Service]:
    query = select(Service).where(Service.is_active.is_(True))
    if categories:
        query = query.where(Service.category.in_(list(categories)))
    return list(db.scalars(query.order_by(Service.category, Service.title, Service.id)).all())


def resolve_specialists(db: Session, service_ids: Sequence[int]) -> list[Specialist]:
    """Specialists linked to every one of ``service_ids``, not to any of them."""
    unique_ids = set(service_ids)
    if not unique_ids:
        return []

    linked_to_all = (
        select(SpecialistService.specialist_id)
        .join(Service, Service.id == SpecialistService.service_id)
        .where(
            SpecialistService.service_id.in_(unique_ids),
            SpecialistService.is_active.is_(True),
            Service.is_active.is_(True),
        )
        .group_by(SpecialistService.specialist_id)
        .having(func.count(func.distinct(SpecialistService.service_id)) == len(unique_ids))
    )
    return list(
        db.scalars(
            select(Specialist)
            .where(Specialist.id.in_(linked_to_all), Specialist.is_active.is_(True))
            .order_by(Specialist.display_name, Specialist.id)
        ).all()
    )


def build_quote(db: Session, service_ids: Sequence[int]) -> Quote | NotFound | ValidationFailure:
    services = resolve_services(db, service_ids)
    if not isinstance(services, list):
        return services

    currencies = {service.currency for service in services}
    if len(currencies) > 1:
        return ValidationFailure(detail="Selected services use different currencies")

    overrides = [s.buffer_min_override for s in services if s.buffer_min_override is not None]
    return Quote(
        service_ids=tuple(service.id for service in services),
        total_price_cents=sum(service.price_cents for service in services),
        currency=services[0].currency,
        total_duration_min=required_duration([ServiceSpec.from_service(s) for s in services]),
        buffer_min_override=max(overrides) if overrides else None,
        lines=tuple(
            QuoteLine(
                service_id=service.id,
                title=service.title,
                duration_min=service.duration_min,
                price_cents=service.price_cents,
            )
            for service in services
        ),
    )


def list_slots(
    db: Session,
    specialist_id: int,
    service_ids: Sequence[int],
    civil_date: date,
    now: datetime,
) -> list[Slot] | NotFound | SpecialistNotLinked | ValidationFailure:
    return list_available_slots(
        db=db,
        specialist_id=specialist_id,
        service_ids=service_ids,
        civil_date=civil_date,
        now=now,
    )


def confirm_selection(
    db: Session,
    specialist_id: int,
    service_ids: Sequence[int],
    start_at: datetime,
    client: ClientInfo,
    note: str | None = None,
    idempotency_key: str | None = None,
    now: datetime | None = None,
) -> Booking | SlotUnavailable | SpecialistNotLinked | NotFound | ValidationFailure | IdempotencyConflict:
    # the first selected service becomes Booking.service_id, the rest live in its items
    return booking_service.reserve(
        db=db,
        specialist_id=specialist_id,
        service_ids=service_ids,
        start_at=start_at,
        client=client,
        note=note,
        idempotency_key=idempotency_key,
        now=now,
        actor="guest",
    )
