"""
RecurringSeries ORM model — one recurring schedule for one client.

A user has at most one active series (partial unique index). Stopping a
series flips `active` off instead of deleting the row, so bookings that
reference it keep their back-reference for history.

day_of_week follows Python's date.weekday(): 0 = Monday … 6 = Sunday.
time_of_day is "HH:MM" in the practice timezone.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, UTCDateTime, utcnow
from models.enums import LocationType


class RecurringSeries(Base):
    __tablename__ = "recurring_series"
    __table_args__ = (
        Index(
            "uq_recurring_series_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active = 1"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # ── Schedule ────────────────────────────────────────────────
    interval: Mapped[str] = mapped_column(String(20), nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    time_of_day: Mapped[str] = mapped_column(String(5), nullable=False)
    session_length_minutes: Mapped[int] = mapped_column(Integer, default=50, nullable=False)

    # ── Location ────────────────────────────────────────────────
    location_type: Mapped[str] = mapped_column(
        String(20), default=LocationType.ONLINE.value, nullable=False
    )
    in_person_location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ── Buffer bookkeeping ──────────────────────────────────────
    next_buffer_refresh: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<RecurringSeries {self.id} {self.interval} "
            f"day={self.day_of_week} {self.time_of_day} active={self.active}>"
        )
