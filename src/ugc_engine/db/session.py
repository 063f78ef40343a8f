"""Database session management."""

from collections.abc import Callable, Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from ugc_engine.config import settings

# Create engine
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)


@contextmanager
def get_session_context() -> Generator[Session, None, None]:
    """Get a database session as a context manager (for use outside of FastAPI)."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Verify database connectivity."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


@contextmanager
def session_scope(
    session: Session | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> Generator[Session, None, None]:
    """Join the caller's session, or run a committed unit of work of our own."""
    if session is not None:
        yield session
        return
    with session_factory() as own:
        try:
            yield own
            own.commit()
        except Exception:
            own.rollback()
            raise
