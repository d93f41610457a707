from typing import Optional

from fastapi import APIRouter, Depends

from services.common.logging_config import get_logger
from services.sessions.api.dependencies import get_scheduler, get_user_id_from_request
from services.sessions.schemas import (
    ClassificationResponse,
    CompleteRequest,
    JoinRequest,
    JoinResponse,
    OccurrenceResponse,
    SessionContextResponse,
)
from services.sessions.services.scheduler import OccurrenceView, SessionScheduler

logger = get_logger(__name__)

router = APIRouter()


def occurrence_response(view: OccurrenceView) -> OccurrenceResponse:
    return OccurrenceResponse(
        occurrence_id=view.occurrence.id,
        schedule_id=view.schedule.id,
        kind=view.schedule.kind,
        scheduled_at=view.occurrence.scheduled_at,
        timezone=view.schedule.timezone,
        state=ClassificationResponse.from_classification(view.classification),
        session=(
            SessionContextResponse.from_context(view.context)
            if view.context is not None
            else None
        ),
    )


@router.get("/{occurrence_id}", response_model=OccurrenceResponse)
def get_occurrence(
    occurrence_id: str,
    user_id: str = Depends(get_user_id_from_request),
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> OccurrenceResponse:
    view = scheduler.describe_occurrence(occurrence_id, user_id=user_id)
    return occurrence_response(view)


@router.post("/{occurrence_id}/join", response_model=JoinResponse)
def join_occurrence(
    occurrence_id: str,
    body: Optional[JoinRequest] = None,
    user_id: str = Depends(get_user_id_from_request),
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> JoinResponse:
    if body is not None and body.can_join is not None:
        logger.debug(
            "Ignoring client-reported join state",
            occurrence_id=occurrence_id,
            client_can_join=body.can_join,
        )
    result = scheduler.join(occurrence_id, user_id=user_id)
    return JoinResponse(
        occurrence_id=occurrence_id,
        created=result.created,
        session=SessionContextResponse.from_context(result.context),
        next_occurrence=result.next_occurrence,
    )


@router.post("/{occurrence_id}/complete", response_model=SessionContextResponse)
def complete_occurrence(
    occurrence_id: str,
    body: CompleteRequest,
    user_id: str = Depends(get_user_id_from_request),
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> SessionContextResponse:
    context = scheduler.complete(occurrence_id, body.summary, user_id=user_id)
    return SessionContextResponse.from_context(context)
