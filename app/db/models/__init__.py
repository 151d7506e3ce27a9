from app.db.models.booking import Booking, BookingEvent, BookingItem, BookingStatus, PaymentStatus
from app.db.models.service import Service, SpecialistService
from app.db.models.specialist import Specialist, WorkingHours
from app.db.models.time_off import TimeOff

__all__ = [
    "Specialist",
    "WorkingHours",
    "Service",
    "SpecialistService",
    "TimeOff",
    "Booking",
    "BookingItem",
    "BookingEvent",
    "BookingStatus",
    "PaymentStatus",
]
