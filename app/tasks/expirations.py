import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models import Booking, BookingStatus
from app.db.session import SessionLocal
from app.services.booking_service import transition_applied
from app.services.outcomes import is_failure
from app.tasks.celery_app import EXPIRY_TASK_NAME, celery_app

logger = logging.getLogger(__name__)

EXPIRY_ACTOR = "system:pending-expiry"


def cancel_stale_pending_bookings(db: Session, now: datetime | None = None) -> int:
    """Cancel PENDING bookings nobody confirmed before they were due to start."""
    current_time = now or datetime.now(UTC)
    expire_before = current_time - timedelta(minutes=settings.pending_booking_expire_after_start_minutes)

    stale_ids = db.scalars(
        select(Booking.id).where(
            Booking.status == BookingStatus.PENDING.value,
            Booking.start_at <= expire_before,
        )
    ).all()

    canceled = 0
    for booking_id in stale_ids:
        outcome, applied = transition_applied(
            db=db,
            booking_id=booking_id,
            requested=BookingStatus.CANCELED,
            actor=EXPIRY_ACTOR,
            now=current_time,
        )
        if is_failure(outcome):
            # confirmed by staff in the meantime
            logger.info("pending_expiry_skipped booking_id=%s reason=%s", booking_id, outcome.detail)
            continue
        if not applied:
            logger.info("pending_expiry_skipped booking_id=%s reason=already_canceled", booking_id)
            continue
        canceled += 1

    if canceled:
        logger.info("pending_expiry_done canceled=%s", canceled)
    return canceled


@celery_app.task(name=EXPIRY_TASK_NAME)
def cancel_stale_pending_bookings_task() -> dict[str, int]:
    db = SessionLocal()
    try:
        canceled_count = cancel_stale_pending_bookings(db=db)
        return {"canceled": canceled_count}
    finally:
        db.close()
