import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError
from fieldservice.config import settings
from fieldservice.exceptions import EngineError, ConcurrencyConflict, OperationTimeout, SessionAlreadyOpen

logger = logging.getLogger(__name__)


def build_engine(url: str, **kwargs):
    """Create an engine with the connection setup every backend needs"""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if url.startswith("sqlite"):
            cursor.execute("PRAGMA foreign_keys=ON")
        else:
            cursor.execute("SET search_path TO public")
            cursor.execute(f"SET lock_timeout = {int(settings.lock_timeout_ms)}")
        cursor.close()

    return engine


engine = build_engine(settings.database_connection_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


_LOCK_TIMEOUT_MARKERS = ("lock timeout", "canceling statement due to lock timeout", "database is locked")
_OPEN_SESSION_MARKERS = ("uq_work_sessions_open_per_request", "work_sessions.request_id")


@contextmanager
def atomic(db: Session, operation: str):
    """
    Run one engine operation as a single transaction.

    Commits on success; on any failure rolls back everything the operation
    wrote and translates storage errors into engine errors.
    """
    try:
        yield
        db.commit()
    except EngineError as e:
        db.rollback()
        logger.warning(f"{operation} rejected: {e}")
        raise
    except StaleDataError:
        db.rollback()
        logger.warning(f"{operation} lost a concurrent update")
        raise ConcurrencyConflict(f"{operation} conflicted with a concurrent change; reload and retry")
    except IntegrityError as e:
        db.rollback()
        message = str(e.orig).lower()
        if any(marker in message for marker in _OPEN_SESSION_MARKERS):
            raise SessionAlreadyOpen("A work session is already open for this request", field="request_id")
        logger.warning(f"{operation} hit a constraint: {message}")
        raise ConcurrencyConflict(f"{operation} conflicted with a concurrent change; reload and retry")
    except OperationalError as e:
        db.rollback()
        message = str(e.orig).lower()
        if any(marker in message for marker in _LOCK_TIMEOUT_MARKERS):
            logger.warning(f"{operation} timed out waiting for a lock")
            raise OperationTimeout(f"{operation} timed out waiting for a lock; nothing was written")
        raise
    except Exception:
        db.rollback()
        raise
