"""Database session management with connection pooling and units of work"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from defi_ledger.config import settings
from defi_ledger.domain.exceptions import StorageFailure

logger = logging.getLogger(__name__)

# Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=10,
    max_overflow=10,
    pool_recycle=3600,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

_DEPTH_KEY = "atomic_depth"
_HOOKS_KEY = "after_commit"


def get_db() -> Session:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _rollback(db: Session) -> None:
    db.info.pop(_HOOKS_KEY, None)
    db.rollback()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run a block as one unit of work: commit on success, full rollback on error.

    Nested blocks join the outermost one, so a service call that is atomic on
    its own becomes part of its caller's transaction when composed. Storage
    errors surface as StorageFailure once the outermost block has rolled back;
    domain errors propagate unchanged.
    """
    depth = db.info.get(_DEPTH_KEY, 0)
    db.info[_DEPTH_KEY] = depth + 1
    try:
        yield db
    except SQLAlchemyError as e:
        db.info[_DEPTH_KEY] = depth
        if depth:
            raise
        _rollback(db)
        logger.error(f"Transaction rolled back: {e}")
        raise StorageFailure(f"Storage error: {e.__class__.__name__}") from e
    except BaseException:
        db.info[_DEPTH_KEY] = depth
        if not depth:
            _rollback(db)
        raise

    db.info[_DEPTH_KEY] = depth
    if depth:
        return

    try:
        db.commit()
    except SQLAlchemyError as e:
        _rollback(db)
        logger.error(f"Commit failed, transaction rolled back: {e}")
        raise StorageFailure(f"Storage error: {e.__class__.__name__}") from e

    for hook in db.info.pop(_HOOKS_KEY, []):
        hook()


def on_commit(db: Session, hook: Callable[[], None]) -> None:
    """Run hook after the enclosing unit of work commits (immediately if none is open)"""
    if db.info.get(_DEPTH_KEY, 0):
        db.info.setdefault(_HOOKS_KEY, []).append(hook)
    else:
        hook()
