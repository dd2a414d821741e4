"""Database session management and transaction helpers.

Provides:
- A process-wide session factory (replaceable in tests)
- Request-scoped sessions via the get_db() FastAPI dependency
- session_scope() for work running outside a request (threadpool, Celery)
- transaction() for commit/rollback around a block of mutations
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from explainer.db.engine import get_engine

SessionFactory = sessionmaker[Session]

_session_factory: SessionFactory | None = None


def create_session_factory(engine: Engine | None = None) -> SessionFactory:
    """Create a session factory bound to an engine (default engine if None).

    Objects stay usable after commit so services can return ORM rows
    to callers that serialize them later.
    """
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> SessionFactory:
    """Get or lazily create the process-wide session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory()
    return _session_factory


def set_session_factory(factory: SessionFactory | None) -> None:
    """Replace the process-wide session factory (None resets to lazy default)."""
    global _session_factory
    _session_factory = factory


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a session and closes it afterwards."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(factory: SessionFactory | None = None) -> Generator[Session, None, None]:
    """Open a session for one unit of work outside the request cycle.

    Commits if the block finishes cleanly, rolls back otherwise.
    """
    db = (factory or get_session_factory())()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Generator[None, None, None]:
    """Commit on success, roll back and re-raise on exception.

    Usage:
        with transaction(db):
            db.add(row)
            db.execute(stmt)
    """
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise
