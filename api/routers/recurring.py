"""
Recurring series endpoints.

POST   /recurring/refresh-all       → Queue a refresh for every active series (priority 1)
GET    /recurring/{user_id}         → Active series and its upcoming bookings
POST   /recurring/{user_id}         → Enroll: create the series, book the initial buffer
DELETE /recurring/{user_id}         → Stop: disable the series, cancel future sessions
POST   /recurring/{user_id}/refresh → Queue a refresh for one user now (priority 10)

SeriesService does the work on sync sessions; each call is pushed onto the
threadpool so the event loop keeps serving requests.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, get_series_service
from api.schemas.job import EnqueueResponse
from api.schemas.recurring import (
    BookingSummary,
    EnrollRequest,
    EnrollResponse,
    RefreshAllResponse,
    SeriesDetail,
    SeriesResponse,
    StopResponse,
)
from models.base import utcnow
from models.booking import BookingSlot
from models.enums import BookingStatus
from models.series import RecurringSeries
from recurrence.series import (
    SeriesAlreadyActiveError,
    SeriesError,
    SeriesNotActiveError,
    SeriesService,
    UserNotFoundError,
)

router = APIRouter(prefix="/recurring", tags=["recurring"])


# Registered before /{user_id} so "refresh-all" is not parsed as a user id
@router.post("/refresh-all", response_model=RefreshAllResponse, status_code=202)
async def refresh_all(
    service: SeriesService = Depends(get_series_service),
) -> RefreshAllResponse:
    results = await run_in_threadpool(service.request_refresh_all, 1)
    queued = sum(1 for r in results.values() if not r.skipped or r.dispatch is not None)
    return RefreshAllResponse(queued=queued, skipped=len(results) - queued)


@router.get("/{user_id}", response_model=SeriesDetail)
async def get_series(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> SeriesDetail:
    series = (
        await db.execute(
            select(RecurringSeries).where(
                RecurringSeries.user_id == user_id,
                RecurringSeries.active.is_(True),
            )
        )
    ).scalar_one_or_none()
    if series is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} has no active recurring series")

    upcoming = (
        await db.execute(
            select(BookingSlot)
            .where(
                BookingSlot.series_id == series.id,
                BookingSlot.status == BookingStatus.ACTIVE.value,
                BookingSlot.event_start_time > utcnow(),
            )
            .order_by(BookingSlot.event_start_time)
        )
    ).scalars().all()

    return SeriesDetail(
        series=SeriesResponse.model_validate(series),
        upcoming=[BookingSummary.model_validate(b) for b in upcoming],
    )


@router.post("/{user_id}", response_model=EnrollResponse, status_code=201)
async def enroll(
    user_id: UUID,
    body: EnrollRequest,
    service: SeriesService = Depends(get_series_service),
) -> EnrollResponse:
    try:
        series, result = await run_in_threadpool(
            service.enroll,
            user_id,
            body.interval.value,
            body.day_of_week,
            body.time_of_day,
            body.location_type.value,
            body.in_person_location,
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SeriesAlreadyActiveError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SeriesError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return EnrollResponse(
        series=SeriesResponse.model_validate(series),
        created=result.created,
        skipped=result.skipped,
        next_refresh=result.next_refresh,
    )


@router.delete("/{user_id}", response_model=StopResponse)
async def stop(
    user_id: UUID,
    service: SeriesService = Depends(get_series_service),
) -> StopResponse:
    try:
        result = await run_in_threadpool(service.stop, user_id)
    except SeriesNotActiveError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return StopResponse(**vars(result))


@router.post("/{user_id}/refresh", response_model=EnqueueResponse, status_code=202)
async def refresh(
    user_id: UUID,
    service: SeriesService = Depends(get_series_service),
) -> EnqueueResponse:
    try:
        result = await run_in_threadpool(service.request_refresh, user_id, 10)
    except SeriesNotActiveError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return EnqueueResponse(**vars(result))
