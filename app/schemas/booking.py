from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from app.db.models.booking import BookingStatus, PaymentStatus

PHONE_PATTERN = r"^\+?[0-9 ()\-]{7,20}$"


class GuestBookingCreateRequest(BaseModel):
    specialist_id: int
    service_id: int | None = None
    service_ids: list[int] | None = Field(default=None, min_length=1, max_length=10)
    start_at: datetime
    client_name: str = Field(min_length=2, max_length=100)
    client_email: EmailStr
    client_phone: str | None = Field(default=None, pattern=PHONE_PATTERN)
    note: str | None = Field(default=None, max_length=500)

    @field_validator("client_phone", "note", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("start_at")
    @classmethod
    def require_offset(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("start_at must include a timezone offset")
        return value

    @model_validator(mode="after")
    def require_services(self) -> "GuestBookingCreateRequest":
        if self.service_ids is None:
            if self.service_id is None:
                raise ValueError("service_id or service_ids is required")
            self.service_ids = [self.service_id]
        elif self.service_id is not None and self.service_ids[0] != self.service_id:
            raise ValueError("service_id must be the first of service_ids")
        return self


class BookingStatusUpdateRequest(BaseModel):
    status: BookingStatus


class PaymentStatusUpdateRequest(BaseModel):
    payment_status: PaymentStatus


class BookingItemResponse(BaseModel):
    position: int
    service_id: int
    duration_min: int
    price_cents: int

    model_config = {"from_attributes": True}


class BookingCreatedResponse(BaseModel):
    id: int
    status: BookingStatus
    payment_status: PaymentStatus
    specialist_id: int
    service_id: int
    start_at: datetime
    end_at: datetime
    price_cents: int
    currency: str

    model_config = {"from_attributes": True}


class BookingResponse(BookingCreatedResponse):
    buffer_min: int
    client_name: str
    client_email: str
    client_phone: str | None
    note: str | None
    items: list[BookingItemResponse]
    created_at: datetime
    canceled_at: datetime | None


class BookingEventResponse(BaseModel):
    field: str
    from_value: str | None
    to_value: str
    actor: str
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingDetailResponse(BookingResponse):
    allowed_statuses: list[BookingStatus]
    events: list[BookingEventResponse]
