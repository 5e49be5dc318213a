"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from payrecon.config import get_settings

settings = get_settings()


def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}

    options = {"connect_args": {"check_same_thread": False}}  # Required for SQLite
    path = url.replace("sqlite:///", "", 1) if url.startswith("sqlite:///") else ""
    if not path or path == ":memory:":
        # One shared connection, otherwise every session sees its own empty database
        options["poolclass"] = StaticPool
    else:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
    return options


engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_options(settings.DATABASE_URL),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables. Called once at application and worker startup."""
    from payrecon.models import payment as _payment_model            # noqa: F401
    from payrecon.models import transaction as _transaction_model    # noqa: F401
    from payrecon.models import scheduled_task as _task_model        # noqa: F401
    from payrecon.models import audit as _audit_model                # noqa: F401
    from payrecon.models import notification as _notification_model  # noqa: F401

    Base.metadata.create_all(bind=engine)
