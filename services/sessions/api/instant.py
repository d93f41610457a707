from fastapi import APIRouter, Depends

from services.common.logging_config import get_logger
from services.sessions.api.dependencies import get_scheduler, get_user_id_from_request
from services.sessions.schemas import (
    CleanupResponse,
    InstantSessionResponse,
    ScheduleResponse,
    SessionContextResponse,
)
from services.sessions.services.scheduler import SessionScheduler

logger = get_logger(__name__)

router = APIRouter()


@router.post("", response_model=InstantSessionResponse)
def start_instant_session(
    user_id: str = Depends(get_user_id_from_request),
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> InstantSessionResponse:
    instant = scheduler.start_instant(user_id)
    return InstantSessionResponse(
        schedule=ScheduleResponse.from_schedule(instant.schedule),
        session=SessionContextResponse.from_context(instant.context),
        reused=instant.reused,
    )


@router.delete("/duplicates", response_model=CleanupResponse)
def cleanup_instant_sessions(
    user_id: str = Depends(get_user_id_from_request),
    scheduler: SessionScheduler = Depends(get_scheduler),
) -> CleanupResponse:
    deleted = scheduler.cleanup_instant_duplicates(user_id)
    return CleanupResponse(deleted=deleted)
