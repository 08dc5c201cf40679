"""Database engine construction and session management."""

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from results_api.core.config import Settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


def create_db_engine(settings: Settings) -> Engine:
    """Create the pooled engine shared by every request."""
    # echo=False keeps SQL out of the logs; use the service loggers for debug output
    return create_engine(
        settings.DATABASE_URL,
        echo=False,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create the session factory bound to an engine."""
    return sessionmaker(
        bind=engine,
        class_=Session,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory(request: Request) -> sessionmaker[Session]:
    """Session factory configured on the running application."""
    return request.app.state.session_factory


def get_db(
    session_factory: Annotated[sessionmaker[Session], Depends(get_session_factory)],
) -> Generator[Session, None, None]:
    """Get database session dependency."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# Type aliases for dependency injection
DbSession = Annotated[Session, Depends(get_db)]
SessionFactory = Annotated[sessionmaker[Session], Depends(get_session_factory)]
