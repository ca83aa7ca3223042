from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings


def build_engine(settings: Settings) -> Engine:
    """Create the engine with a bounded connect/statement timeout."""

    url = settings.DATABASE_URL
    timeout = settings.DB_TIMEOUT_SECONDS
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout}
    elif url.startswith("postgresql"):
        connect_args = {
            "connect_timeout": timeout,
            "options": f"-c statement_timeout={timeout * 1000}",
        }
    else:
        connect_args = {}
    return create_engine(url, pool_pre_ping=True, pool_timeout=timeout, connect_args=connect_args)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def iter_db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Yield one database session per request and always close it."""

    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a transactional scope for scripts or background tasks."""

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
