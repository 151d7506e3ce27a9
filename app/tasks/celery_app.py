from datetime import timedelta

from celery import Celery

from app.core.config import settings

EXPIRY_TASK_NAME = "bookings.cancel_stale_pending"

celery_app = Celery(
    "clinic_booking",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.tasks.expirations"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=timedelta(hours=1),
    timezone="UTC",
    enable_utc=True,
    # one sweep must finish before the next one is due
    task_time_limit=settings.celery_expiration_interval_minutes * 60,
    beat_schedule={
        "cancel-stale-pending-bookings": {
            "task": EXPIRY_TASK_NAME,
            "schedule": timedelta(minutes=settings.celery_expiration_interval_minutes),
        },
    },
)
