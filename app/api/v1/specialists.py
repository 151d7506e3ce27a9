from datetime import date, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_now
from app.api.errors import raise_for_outcome
from app.core.metrics import SLOT_LISTING_SIZE
from app.db.session import get_db
from app.schemas.slot import (
    SlotResponse,
    SpecialistResponse,
    SpecialistScheduleResponse,
    WorkingHoursResponse,
)
from app.services.availability_service import get_active_specialist
from app.services.outcomes import NotFound
from app.services.selection_service import list_slots, resolve_specialists

router = APIRouter(prefix="/specialists", tags=["specialists"])

ServiceIdsParam = Annotated[list[int], Query(alias="service_id", min_length=1, max_length=10)]


@router.get("", response_model=list[SpecialistResponse], status_code=status.HTTP_200_OK)
def list_specialists_for_services(
    service_ids: ServiceIdsParam,
    db: Session = Depends(get_db),
) -> list[SpecialistResponse]:
    specialists = resolve_specialists(db=db, service_ids=service_ids)
    return [SpecialistResponse.model_validate(specialist) for specialist in specialists]


@router.get("/{specialist_id}/schedule", response_model=SpecialistScheduleResponse, status_code=status.HTTP_200_OK)
def get_specialist_schedule(
    specialist_id: int,
    db: Session = Depends(get_db),
) -> SpecialistScheduleResponse:
    specialist = get_active_specialist(db, specialist_id)
    if not specialist:
        raise_for_outcome(NotFound(detail="Specialist not found"))

    return SpecialistScheduleResponse(
        specialist_id=specialist.id,
        slot_duration_min=specialist.slot_duration_min,
        buffer_min_default=specialist.buffer_min_default,
        min_lead_min=specialist.min_lead_min,
        tzid=specialist.tzid,
        requires_confirmation=specialist.requires_confirmation,
        working_hours=[WorkingHoursResponse.model_validate(row) for row in specialist.working_hours],
    )


@router.get("/{specialist_id}/slots", response_model=list[SlotResponse], status_code=status.HTTP_200_OK)
def list_specialist_slots(
    specialist_id: int,
    service_ids: ServiceIdsParam,
    civil_date: date = Query(alias="date"),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
) -> list[SlotResponse]:
    slots = raise_for_outcome(
        list_slots(
            db=db,
            specialist_id=specialist_id,
            service_ids=service_ids,
            civil_date=civil_date,
            now=now,
        )
    )
    SLOT_LISTING_SIZE.observe(len(slots))
    return [SlotResponse.model_validate(slot) for slot in slots]
