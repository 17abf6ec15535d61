import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from testlog.config import get_settings
from testlog.models.base import Base

logger = logging.getLogger(__name__)

settings = get_settings()

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(
    settings.database_url,
    echo=settings.database_echo,
    future=True,
    pool_pre_ping=True,
    connect_args=connect_args,
)

session_maker = sessionmaker(
    engine,
    class_=Session,
    expire_on_commit=False,
)


def init_db() -> None:
    """Create all tables that do not exist yet."""
    import testlog.models  # noqa: F401  registers every mapper

    Base.metadata.create_all(engine)
    logger.info("Database initialized: %s", engine.url.render_as_string(hide_password=True))


def get_db() -> Generator[Session, None, None]:
    session = session_maker()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_sync_db() -> Generator[Session, None, None]:
    """Get a database session for Celery tasks."""
    session = session_maker()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
