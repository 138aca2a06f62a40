"""Engine, session factory and transaction scopes

Request handlers get a session from get_db and commit themselves; webhook
deliveries commit once in the dispatcher. Work outside a request (the attendee
sweep) runs in transaction_scope.
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from eventhub.models.base import Base
from eventhub.core.config import settings


def _engine_options(database_url: str) -> dict:
    if make_url(database_url).get_backend_name() == "sqlite":
        # The sweep runs in a worker thread
        return {"connect_args": {"check_same_thread": False}}
    # Webhook bursts arrive in parallel; keep connections warm across idle periods
    return {"pool_pre_ping": True, "pool_recycle": 1800, "pool_size": 10, "max_overflow": 20}


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """FastAPI dependency; anything left uncommitted when the request fails is rolled back"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def transaction_scope() -> Iterator[Session]:
    """Session whose writes commit on clean exit and roll back on error"""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """Create any missing tables"""
    import eventhub.models  # noqa: F401 - registers every model with Base.metadata
    Base.metadata.create_all(bind=engine)
