from datetime import datetime

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.types import UTCDateTime


class TimeOff(Base):
    __tablename__ = "time_off"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    specialist_id: Mapped[int] = mapped_column(
        ForeignKey("specialists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # RFC 5545 RRULE repeating [start_at, end_at) in the specialist's civil time
    rrule: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rrule_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    specialist = relationship("Specialist", back_populates="time_off")
