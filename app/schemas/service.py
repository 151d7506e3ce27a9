from pydantic import BaseModel, Field


class ServiceResponse(BaseModel):
    id: int
    title: str
    category: str | None
    duration_min: int
    buffer_min_override: int | None
    price_cents: int
    currency: str

    model_config = {"from_attributes": True}


class QuoteRequest(BaseModel):
    service_ids: list[int] = Field(min_length=1, max_length=10)


class QuoteLineResponse(BaseModel):
    service_id: int
    title: str
    duration_min: int
    price_cents: int

    model_config = {"from_attributes": True}


class QuoteResponse(BaseModel):
    service_ids: list[int]
    total_price_cents: int
    currency: str
    total_duration_min: int
    buffer_min_override: int | None
    lines: list[QuoteLineResponse]

    model_config = {"from_attributes": True}
