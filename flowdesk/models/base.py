"""
SQLAlchemy base model and local store session management.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from config import get_settings

# Base class for all local models
Base = declarative_base()

# Local store engine (initialized on first use)
_engine = None
_SessionLocal = None


def init_db():
    """Initialize local store engine and session maker."""
    global _engine, _SessionLocal

    settings = get_settings()

    if settings.local_store_path == ":memory:":
        # Single shared connection, otherwise every session sees an empty database
        _engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool
        )
    else:
        _engine = create_engine(
            f"sqlite:///{settings.local_store_path}",
            connect_args={"check_same_thread": False}
        )

    # Create session maker
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def create_tables():
    """Create all tables in the local store."""
    from flowdesk.models.preference import WorkflowPreference

    engine = get_engine()
    Base.metadata.create_all(bind=engine)


def get_engine():
    """Get local store engine, initializing if needed."""
    global _engine
    if _engine is None:
        init_db()
    return _engine


def get_session_maker():
    """Get session maker, initializing if needed."""
    global _SessionLocal
    if _SessionLocal is None:
        init_db()
    return _SessionLocal
