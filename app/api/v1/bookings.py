from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_now
from app.api.errors import raise_for_outcome
from app.core.config import settings
from app.core.rate_limiter import rate_limiter
from app.db.session import get_db
from app.schemas.booking import BookingCreatedResponse, GuestBookingCreateRequest
from app.schemas.service import QuoteResponse, QuoteRequest
from app.services.booking_service import ClientInfo
from app.services.selection_service import build_quote, confirm_selection

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _rate_limit_or_raise(request: Request, response: Response) -> None:
    client_ip = request.client.host if request.client else "unknown"
    allowed, retry_after = rate_limiter.allow(
        key=f"guest-booking:{client_ip}",
        limit=settings.guest_booking_max_attempts,
        window_seconds=settings.guest_booking_rate_limit_window_seconds,
    )
    if not allowed:
        response.headers["Retry-After"] = str(retry_after)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )


def _normalize_idempotency_key(idempotency_key: str | None) -> str | None:
    if idempotency_key is None:
        return None
    normalized = idempotency_key.strip()
    if not normalized:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Idempotency-Key header must not be empty",
        )
    if len(normalized) > 128:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Idempotency-Key header is too long (max 128 characters)",
        )
    return normalized


@router.post("/quote", response_model=QuoteResponse, status_code=status.HTTP_200_OK)
def quote_selection(
    payload: QuoteRequest,
    db: Session = Depends(get_db),
) -> QuoteResponse:
    quote = raise_for_outcome(build_quote(db=db, service_ids=payload.service_ids))
    return QuoteResponse.model_validate(quote)


@router.post("/guest", response_model=BookingCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_guest_booking(
    payload: GuestBookingCreateRequest,
    request: Request,
    response: Response,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
) -> BookingCreatedResponse:
    _rate_limit_or_raise(request=request, response=response)
    booking = raise_for_outcome(
        confirm_selection(
            db=db,
            specialist_id=payload.specialist_id,
            service_ids=payload.service_ids,
            start_at=payload.start_at,
            client=ClientInfo(
                name=payload.client_name,
                email=payload.client_email,
                phone=payload.client_phone,
            ),
            note=payload.note,
            idempotency_key=_normalize_idempotency_key(idempotency_key),
            now=now,
        )
    )
    return BookingCreatedResponse.model_validate(booking)
