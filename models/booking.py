"""
BookingSlot ORM model — maps to the "bookings" table.

Invariant: no two non-cancelled bookings overlap on [start, end).

The application checks for overlap before every insert. On PostgreSQL an
exclusion constraint over tstzrange(start, end, '[)') restricted to
non-cancelled rows closes the read-then-write race between two concurrent
buffer refreshes; the insert that loses raises IntegrityError, which the
conflict checker reports as a conflict.
"""

import uuid
from datetime import datetime

from sqlalchemy import DDL, JSON, ForeignKey, Index, String, Uuid, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, UTCDateTime, utcnow
from models.enums import BookingSource, BookingStatus, LocationType

NO_OVERLAP_CONSTRAINT = "bookings_no_overlap"


class BookingSlot(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_status_start_end", "status", "event_start_time", "event_end_time"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    series_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("recurring_series.id"), nullable=True, index=True
    )

    # ── Time slot ───────────────────────────────────────────────
    event_start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    event_end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    event_name: Mapped[str] = mapped_column(String(255), default="Recurring Session", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=BookingStatus.ACTIVE.value, nullable=False
    )
    source: Mapped[str] = mapped_column(
        String(20), default=BookingSource.SYSTEM.value, nullable=False
    )

    # ── Location ────────────────────────────────────────────────
    location_type: Mapped[str] = mapped_column(
        String(20), default=LocationType.ONLINE.value, nullable=False
    )
    in_person_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meeting_link: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # ── External calendar sync ──────────────────────────────────
    # {"google": "pending", "zoom": "not_applicable", "last_sync_attempt": None}
    sync_status: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), default=dict, nullable=False
    )
    google_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    google_html_link: Mapped[str | None] = mapped_column(String(500), nullable=True)

    payment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<BookingSlot {self.id} {self.event_start_time.isoformat()} {self.status}>"


event.listen(
    BookingSlot.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE bookings ADD CONSTRAINT {NO_OVERLAP_CONSTRAINT} "
        "EXCLUDE USING gist (tstzrange(event_start_time, event_end_time, '[)') WITH &&) "
        "WHERE (status <> 'Cancelled')"
    ).execute_if(dialect="postgresql"),
)
