from contextlib import contextmanager
from threading import Lock
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from services.sessions.models.base import Base as Base
from services.sessions.models.schedule import ContextStatus as ContextStatus
from services.sessions.models.schedule import ScheduleKind as ScheduleKind
from services.sessions.models.schedule import ScheduleStatus as ScheduleStatus
from services.sessions.models.schedule import SessionContext as SessionContext
from services.sessions.models.schedule import SessionSchedule as SessionSchedule
from services.sessions.settings import get_settings

# Global engine and session factory - created once and reused
_engine: Engine | None = None
_session_maker: sessionmaker | None = None

# Thread-safe initialization locks
_engine_lock = Lock()
_session_maker_lock = Lock()


def _build_engine(db_url: str) -> Engine:
    if db_url.startswith("sqlite"):
        engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        db_url,
        echo=False,
        future=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


def get_engine() -> Engine:
    """Get or create the shared database engine in a thread-safe manner."""
    global _engine
    if _engine is None:
        with _engine_lock:
            # Double-check pattern to prevent race conditions
            if _engine is None:
                _engine = _build_engine(get_settings().db_url_sessions)
    return _engine


def get_sessionmaker() -> sessionmaker:
    """Get or create the shared session maker in a thread-safe manner.

    Acquire locks in sessionmaker -> engine order to avoid races with reset/close.
    """
    global _session_maker
    if _session_maker is None:
        with _session_maker_lock:
            if _session_maker is None:
                _session_maker = sessionmaker(
                    bind=get_engine(),
                    autoflush=False,
                    autocommit=False,
                    expire_on_commit=False,
                    future=True,
                )
    return _session_maker


@contextmanager
def get_session() -> Generator[Session, None, None]:
    SessionFactory = get_sessionmaker()
    session = SessionFactory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Create all tables. Intended for local runs and tests."""
    Base.metadata.create_all(get_engine())


def close_db() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_maker
    engine_to_dispose: Optional[Engine] = None

    with _session_maker_lock:
        _session_maker = None
        with _engine_lock:
            if _engine is not None:
                engine_to_dispose = _engine
                _engine = None

    # Dispose outside of locks
    if engine_to_dispose is not None:
        engine_to_dispose.dispose()


def reset_db() -> None:
    """Reset database connections (useful for testing) without disposing."""
    global _engine, _session_maker
    with _session_maker_lock:
        with _engine_lock:
            _session_maker = None
            _engine = None
