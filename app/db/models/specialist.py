from datetime import datetime, time

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, Time, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.config import settings
from app.db.base import Base
from app.db.types import UTCDateTime


class Specialist(Base):
    __tablename__ = "specialists"
    __table_args__ = (
        CheckConstraint("slot_duration_min > 0", name="ck_specialists_slot_duration_positive"),
        CheckConstraint("buffer_min_default >= 0", name="ck_specialists_buffer_non_negative"),
        CheckConstraint("min_lead_min >= 0", name="ck_specialists_lead_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False)
    title: Mapped[str | None] = mapped_column(String(120), nullable=True)
    slot_duration_min: Mapped[int] = mapped_column(Integer, nullable=False, default=settings.default_slot_duration_min)
    buffer_min_default: Mapped[int] = mapped_column(Integer, nullable=False, default=settings.default_buffer_min)
    min_lead_min: Mapped[int] = mapped_column(Integer, nullable=False, default=settings.default_min_lead_min)
    tzid: Mapped[str] = mapped_column(String(64), nullable=False, default=settings.default_tzid)
    requires_confirmation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # bumped by every reservation; the UPDATE doubles as the per-specialist lock
    reservation_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, server_default=func.now())

    working_hours = relationship(
        "WorkingHours",
        back_populates="specialist",
        cascade="all, delete-orphan",
        order_by="[WorkingHours.weekday, WorkingHours.opens_at]",
    )
    service_links = relationship("SpecialistService", back_populates="specialist", cascade="all, delete-orphan")
    time_off = relationship("TimeOff", back_populates="specialist", cascade="all, delete-orphan")


class WorkingHours(Base):
    __tablename__ = "working_hours"
    __table_args__ = (
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_working_hours_weekday"),
        CheckConstraint("closes_at > opens_at", name="ck_working_hours_interval"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    specialist_id: Mapped[int] = mapped_column(
        ForeignKey("specialists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    opens_at: Mapped[time] = mapped_column(Time, nullable=False)
    closes_at: Mapped[time] = mapped_column(Time, nullable=False)

    specialist = relationship("Specialist", back_populates="working_hours")
