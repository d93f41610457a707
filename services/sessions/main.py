from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from services.common.http_errors import register_haven_exception_handlers
from services.common.logging_config import (
    create_request_logging_middleware,
    log_service_shutdown,
    log_service_startup,
    setup_service_logging,
)
from services.sessions.api import (
    instant_router,
    listing_router,
    occurrences_router,
    schedules_router,
)
from services.sessions.models import close_db, create_all_tables
from services.sessions.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()

    setup_service_logging(
        service_name="sessions",
        log_level=settings.log_level,
        log_format=settings.log_format,
    )

    create_all_tables()

    log_service_startup(
        "sessions",
        version="0.1.0",
        join_window_minutes=settings.join_window_minutes,
        starting_soon_minutes=settings.starting_soon_minutes,
    )
    yield
    log_service_shutdown("sessions")
    close_db()


def include_routers(app: FastAPI) -> None:
    app.include_router(
        schedules_router, prefix="/api/v1/sessions/schedules", tags=["schedules"]
    )
    app.include_router(
        occurrences_router,
        prefix="/api/v1/sessions/occurrences",
        tags=["occurrences"],
    )
    app.include_router(
        instant_router, prefix="/api/v1/sessions/instant", tags=["instant"]
    )
    app.include_router(listing_router, prefix="/api/v1/sessions", tags=["sessions"])


app = FastAPI(
    title="Haven Sessions Service",
    version="0.1.0",
    description="Recurring session scheduling and join-window admission for Haven.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware
app.middleware("http")(create_request_logging_middleware())

# Register standardized exception handlers
register_haven_exception_handlers(app)

include_routers(app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.sessions.main:app",
        host="0.0.0.0",
        port=8010,
        log_level=get_settings().log_level.lower(),
        access_log=False,  # request logging is handled by the middleware
    )
