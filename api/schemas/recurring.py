"""
Pydantic schemas for the /recurring endpoints.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from models.enums import LocationType, RecurringInterval


class EnrollRequest(BaseModel):
    """Request body for POST /recurring/{user_id}."""

    interval: RecurringInterval
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Monday … 6 = Sunday")
    time_of_day: str = Field(
        ...,
        pattern=r"^([01]\d|2[0-3]):[0-5]\d$",
        examples=["17:00"],
        description="Session start in the practice timezone",
    )
    location_type: LocationType = LocationType.ONLINE
    in_person_location: Optional[str] = Field(default=None, max_length=255)


class BookingSummary(BaseModel):
    id: UUID
    event_start_time: datetime
    event_end_time: datetime
    status: str
    sync_status: dict

    model_config = {"from_attributes": True}


class SeriesResponse(BaseModel):
    id: UUID
    user_id: UUID
    active: bool
    interval: str
    day_of_week: int
    time_of_day: str
    session_length_minutes: int
    location_type: str
    in_person_location: Optional[str] = None
    next_buffer_refresh: Optional[datetime] = None
    created_at: datetime
    ended_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SeriesDetail(BaseModel):
    """Response body for GET /recurring/{user_id}."""

    series: SeriesResponse
    upcoming: list[BookingSummary]


class EnrollResponse(BaseModel):
    series: SeriesResponse
    created: int
    skipped: int
    next_refresh: Optional[datetime] = None


class StopResponse(BaseModel):
    series_id: UUID
    cancelled_bookings: int
    cancelled_jobs: int
    deletions_queued: int


class RefreshAllResponse(BaseModel):
    queued: int      # refresh jobs newly created or pulled forward
    skipped: int     # users whose refresh is already promoted or running
