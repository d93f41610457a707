from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from services.common.http_errors import ValidationError
from services.common.logging_config import get_logger
from services.sessions.api.dependencies import get_scheduler, get_user_id_from_request
from services.sessions.schemas import (
    OccurrenceListResponse,
    OccurrenceSummary,
    ScheduleCreate,
    ScheduleResponse,
)
from services.sessions.services.schedule_store import as_utc
from services.sessions.services.scheduler import SessionScheduler

logger = get_logger(__name__)

router = APIRouter()


@router.post("", response_model=ScheduleResponse, status_code=201)
def create_schedule(
    body: ScheduleCreate,
    user_id: str = Depends(get_user_id_from_request),
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> ScheduleResponse:
    rule = body.to_rule()
    schedule = scheduler.create_schedule(user_id, rule)
    logger.info(
        "Session schedule created via API",
        schedule_id=str(schedule.id),
        frequency=schedule.frequency,
    )
    return ScheduleResponse.from_schedule(
        schedule, scheduler.classify(schedule.next_occurrence)
    )


@router.get("/me", response_model=Optional[ScheduleResponse])
def get_my_schedule(
    user_id: str = Depends(get_user_id_from_request),
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> Optional[ScheduleResponse]:
    schedule = scheduler.get_schedule(user_id)
    if schedule is None:
        return None
    return ScheduleResponse.from_schedule(
        schedule, scheduler.classify(schedule.next_occurrence)
    )


@router.get("/me/occurrences", response_model=OccurrenceListResponse)
def list_my_occurrences(
    start: Optional[datetime] = Query(None, description="Range start, default now"),
    end: Optional[datetime] = Query(
        None, description="Range end, default 30 days after start"
    ),
    user_id: str = Depends(get_user_id_from_request),
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> OccurrenceListResponse:
    range_start = as_utc(start) if start is not None else scheduler.clock.now()
    range_end = as_utc(end) if end is not None else range_start + timedelta(days=30)
    if range_end < range_start:
        raise ValidationError(
            "end must not be before start", field="end", value=range_end.isoformat()
        )

    listing = scheduler.enumerate_for_user(user_id, range_start, range_end)
    return OccurrenceListResponse(
        schedule_id=listing.schedule_id,
        start=range_start,
        end=range_end,
        occurrences=[
            OccurrenceSummary(id=o.id, scheduled_at=o.scheduled_at)
            for o in listing.occurrences
        ],
        truncated=listing.truncated,
    )


@router.delete("/{target}", response_model=ScheduleResponse)
def cancel_schedule(
    target: str,
    user_id: str = Depends(get_user_id_from_request),
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> ScheduleResponse:
    """Cancel by schedule id or by the id of one of its occurrences."""
    schedule = scheduler.cancel(target, user_id=user_id)
    return ScheduleResponse.from_schedule(schedule)
