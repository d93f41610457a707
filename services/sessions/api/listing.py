from typing import Optional

from fastapi import APIRouter, Depends, Query

from services.common.logging_config import get_logger
from services.sessions.api.dependencies import get_scheduler, get_user_id_from_request
from services.sessions.api.occurrences import occurrence_response
from services.sessions.schemas import (
    HistoryResponse,
    PreviewRequest,
    PreviewResponse,
    SessionContextResponse,
    UpcomingResponse,
)
from services.sessions.services.schedule_store import as_utc
from services.sessions.services.scheduler import SessionScheduler

logger = get_logger(__name__)

router = APIRouter()


@router.post("/preview", response_model=PreviewResponse)
def preview_schedule(
    body: PreviewRequest,
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> PreviewResponse:
    """Next occurrences of a rule that has not been saved yet."""
    rule = body.to_rule()
    after = as_utc(body.after) if body.after is not None else None
    return PreviewResponse(
        timezone=rule.timezone,
        occurrences=scheduler.preview(rule, count=body.count, after=after),
    )


@router.get("/upcoming", response_model=UpcomingResponse)
def list_upcoming(
    limit: Optional[int] = Query(None, ge=1, le=50),
    user_id: str = Depends(get_user_id_from_request),
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> UpcomingResponse:
    views = scheduler.upcoming(user_id, limit=limit)
    return UpcomingResponse(sessions=[occurrence_response(view) for view in views])


@router.get("/history", response_model=HistoryResponse)
def list_history(
    limit: Optional[int] = Query(None, ge=1, le=100),
    page: int = Query(1, ge=1),
    user_id: str = Depends(get_user_id_from_request),
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> HistoryResponse:
    page_size = limit or scheduler.settings.history_page_size
    contexts, total = scheduler.history(user_id, limit=page_size, page=page)
    return HistoryResponse(
        sessions=[SessionContextResponse.from_context(c) for c in contexts],
        total=total,
        page=page,
        limit=page_size,
        has_more=page * page_size < total,
    )


@router.get("/health")
def health() -> dict:
    logger.info("Health check endpoint accessed")
    return {"status": "ok", "service": "sessions"}
