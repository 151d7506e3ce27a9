from datetime import datetime, time

from pydantic import BaseModel


class SlotResponse(BaseModel):
    start_at: datetime
    end_at: datetime

    model_config = {"from_attributes": True}


class WorkingHoursResponse(BaseModel):
    weekday: int
    opens_at: time
    closes_at: time

    model_config = {"from_attributes": True}


class SpecialistResponse(BaseModel):
    id: int
    display_name: str
    title: str | None

    model_config = {"from_attributes": True}


class SpecialistScheduleResponse(BaseModel):
    specialist_id: int
    slot_duration_min: int
    buffer_min_default: int
    min_lead_min: int
    tzid: str
    requires_confirmation: bool
    working_hours: list[WorkingHoursResponse]
