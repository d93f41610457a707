"""
Base classes for Sessions Service tests.

Provides common setup and teardown for all sessions service tests: a
temporary SQLite database configured through environment variables, a
manually driven clock, and a FastAPI app wired like the real one.
"""

import os
import tempfile
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from services.common.http_errors import register_haven_exception_handlers
from services.common.logging_config import create_request_logging_middleware
from services.common.test_utils import BaseSelectiveHTTPIntegrationTest

# Wednesday, 10:00 UTC
DEFAULT_NOW = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)

ENV_VARS = ["DB_URL_SESSIONS", "LOG_LEVEL", "LOG_FORMAT"]


class SessionsTestBase(BaseSelectiveHTTPIntegrationTest):
    """Base class for Sessions Service tests with a fresh database per test."""

    now = DEFAULT_NOW

    def setup_method(self, method=None):
        super().setup_method(method)

        from services.sessions.api.dependencies import reset_scheduler
        from services.sessions.models import reset_db
        from services.sessions.settings import reset_settings

        reset_db()
        reset_settings()
        reset_scheduler()

        # Use a unique temp file for each test
        self._db_fd, self._db_path = tempfile.mkstemp(suffix=".sqlite3")
        os.environ["DB_URL_SESSIONS"] = f"sqlite:///{self._db_path}"
        os.environ["LOG_LEVEL"] = "INFO"
        os.environ["LOG_FORMAT"] = "json"

        from services.sessions.models import create_all_tables
        from services.sessions.services.clock import FixedClock
        from services.sessions.services.scheduler import SessionScheduler

        create_all_tables()

        self.clock = FixedClock(self.now)
        self.scheduler = SessionScheduler(clock=self.clock)

    def teardown_method(self, method=None):
        from services.sessions.api.dependencies import reset_scheduler
        from services.sessions.models import close_db
        from services.sessions.settings import reset_settings

        close_db()
        reset_settings()
        reset_scheduler()

        for var in ENV_VARS:
            if var in os.environ:
                del os.environ[var]

        # Remove the temp DB file
        if hasattr(self, "_db_fd"):
            os.close(self._db_fd)
        if hasattr(self, "_db_path") and os.path.exists(self._db_path):
            os.unlink(self._db_path)

        super().teardown_method(method)


class SessionsAPITestBase(SessionsTestBase):
    """Sessions tests that drive the HTTP surface through a TestClient."""

    user_id = "user-123"

    def setup_method(self, method=None):
        super().setup_method(method)

        from services.sessions.api.dependencies import get_scheduler
        from services.sessions.main import include_routers

        # Fresh app without the production lifespan, which would reconfigure
        # logging and the database mid-test
        self.app = FastAPI(title="Haven Sessions Service Test", version="0.1.0")
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self.app.middleware("http")(create_request_logging_middleware())
        register_haven_exception_handlers(self.app)

        include_routers(self.app)

        self.app.dependency_overrides[get_scheduler] = lambda: self.scheduler
        self.client = self.create_test_client(self.app)

    @property
    def headers(self):
        return {"X-User-Id": self.user_id}
