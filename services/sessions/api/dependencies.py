from threading import Lock
from typing import Optional

from fastapi import HTTPException, Request

from services.common.logging_config import get_logger
from services.sessions.services.scheduler import SessionScheduler

logger = get_logger(__name__)

_scheduler: Optional[SessionScheduler] = None
_scheduler_lock = Lock()


def get_scheduler() -> SessionScheduler:
    """Shared scheduler for request handlers; overridden in tests."""
    global _scheduler
    if _scheduler is None:
        with _scheduler_lock:
            if _scheduler is None:
                _scheduler = SessionScheduler()
    return _scheduler


def reset_scheduler() -> None:
    global _scheduler
    with _scheduler_lock:
        _scheduler = None


def get_user_id_from_request(request: Request) -> str:
    """
    Extract user ID from request headers.

    The sessions service expects user identity via X-User-Id header and does
    not interpret it further.
    """
    user_id = request.headers.get("X-User-Id")
    if not user_id or not user_id.strip():
        logger.error(
            "Missing X-User-Id header in request",
            path=request.url.path,
        )
        raise HTTPException(status_code=400, detail="Missing X-User-Id header")
    return user_id.strip()
