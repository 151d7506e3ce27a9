from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.types import UTCDateTime


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    REQUIRES_PAYMENT = "requires_payment"
    PAID = "paid"
    REFUNDED = "refunded"
    CANCELED = "canceled"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_bookings_interval"),
        CheckConstraint("blocked_until >= end_at", name="ck_bookings_blocked_until"),
        UniqueConstraint("client_email", "idempotency_key", name="uq_bookings_client_idempotency_key"),
        Index("ix_bookings_specialist_start", "specialist_id", "start_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    specialist_id: Mapped[int] = mapped_column(
        ForeignKey("specialists.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="RESTRICT"), nullable=False)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    buffer_min: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    blocked_until: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.REQUIRES_PAYMENT.value
    )
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    client_name: Mapped[str] = mapped_column(String(100), nullable=False)
    client_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    client_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, onupdate=func.now())
    canceled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    specialist = relationship("Specialist")
    service = relationship("Service")
    items = relationship(
        "BookingItem",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingItem.position",
    )
    events = relationship(
        "BookingEvent",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingEvent.id",
    )

    @property
    def service_ids(self) -> list[int]:
        return [item.service_id for item in self.items]

    @property
    def duration_min(self) -> int:
        return sum(item.duration_min for item in self.items)


class BookingItem(Base):
    __tablename__ = "booking_items"
    __table_args__ = (
        UniqueConstraint("booking_id", "position", name="uq_booking_items_position"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="RESTRICT"), nullable=False)
    duration_min: Mapped[int] = mapped_column(Integer, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    booking = relationship("Booking", back_populates="items")


class BookingEvent(Base):
    """Append-only audit row for every status and payment status change."""

    __tablename__ = "booking_events"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    field: Mapped[str] = mapped_column(String(20), nullable=False)
    from_value: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_value: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(120), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, server_default=func.now())

    booking = relationship("Booking", back_populates="events")
