from services.sessions.api.instant import router as instant_router  # noqa: F401
from services.sessions.api.listing import router as listing_router  # noqa: F401
from services.sessions.api.occurrences import (  # noqa: F401
    router as occurrences_router,
)
from services.sessions.api.schedules import router as schedules_router  # noqa: F401
