from datetime import date, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import StaffPrincipal, get_now, require_roles
from app.api.errors import raise_for_outcome
from app.core.security import StaffRole
from app.db.models import BookingStatus, PaymentStatus
from app.db.session import get_db
from app.schemas.booking import (
    BookingDetailResponse,
    BookingEventResponse,
    BookingResponse,
    BookingStatusUpdateRequest,
    PaymentStatusUpdateRequest,
)
from app.services import booking_service
from app.services.booking_states import allowed_transitions

router = APIRouter(prefix="/admin/bookings", tags=["admin"])

staff_only = require_roles(StaffRole.ADMIN, StaffRole.SPECIALIST)

PageLimit = Annotated[int, Query(ge=1, le=100)]
PageOffset = Annotated[int, Query(ge=0)]


def _detail(booking) -> BookingDetailResponse:
    response = BookingResponse.model_validate(booking)
    return BookingDetailResponse(
        **response.model_dump(),
        allowed_statuses=sorted(allowed_transitions(booking.status), key=lambda s: s.value),
        events=[BookingEventResponse.model_validate(event) for event in booking.events],
    )


@router.get("", response_model=list[BookingResponse], status_code=status.HTTP_200_OK)
def list_bookings(
    specialist_id: int | None = Query(default=None),
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    payment_status: PaymentStatus | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    limit: PageLimit = 20,
    offset: PageOffset = 0,
    _: StaffPrincipal = Depends(staff_only),
    db: Session = Depends(get_db),
) -> list[BookingResponse]:
    bookings = booking_service.list_bookings(
        db=db,
        specialist_id=specialist_id,
        status=status_filter,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return [BookingResponse.model_validate(booking) for booking in bookings]


@router.get("/{booking_id}", response_model=BookingDetailResponse, status_code=status.HTTP_200_OK)
def get_booking(
    booking_id: int,
    _: StaffPrincipal = Depends(staff_only),
    db: Session = Depends(get_db),
) -> BookingDetailResponse:
    booking = raise_for_outcome(booking_service.get_booking(db=db, booking_id=booking_id))
    return _detail(booking)


@router.patch("/{booking_id}/status", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def update_booking_status(
    booking_id: int,
    payload: BookingStatusUpdateRequest,
    now: datetime = Depends(get_now),
    current_staff: StaffPrincipal = Depends(staff_only),
    db: Session = Depends(get_db),
) -> BookingResponse:
    booking = raise_for_outcome(
        booking_service.transition(
            db=db,
            booking_id=booking_id,
            requested=payload.status,
            actor=current_staff.actor,
            now=now,
        )
    )
    return BookingResponse.model_validate(booking)


@router.patch("/{booking_id}/payment", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def update_payment_status(
    booking_id: int,
    payload: PaymentStatusUpdateRequest,
    current_staff: StaffPrincipal = Depends(staff_only),
    db: Session = Depends(get_db),
) -> BookingResponse:
    booking = raise_for_outcome(
        booking_service.set_payment_status(
            db=db,
            booking_id=booking_id,
            requested=payload.payment_status,
            actor=current_staff.actor,
        )
    )
    return BookingResponse.model_validate(booking)


@router.delete("/{booking_id}", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def cancel_booking(
    booking_id: int,
    now: datetime = Depends(get_now),
    current_staff: StaffPrincipal = Depends(staff_only),
    db: Session = Depends(get_db),
) -> BookingResponse:
    booking = raise_for_outcome(
        booking_service.cancel(db=db, booking_id=booking_id, actor=current_staff.actor, now=now)
    )
    return BookingResponse.model_validate(booking)
