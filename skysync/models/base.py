"""
Database engine and sessions shared by the flight store, the beacon
ingestor and the HTTP layer.

SQLite is used for development and tests; PostgreSQL in production.
Request threads and scheduler workers share one engine, so SQLite runs
in WAL mode with a busy timeout.
"""

import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from skysync.config import config

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _engine_options() -> dict:
    options = {'echo': config.debug}
    if config.database.is_sqlite:
        options['connect_args'] = {'check_same_thread': False}
    else:
        # Drop connections the server closed while the scheduler slept
        options['pool_pre_ping'] = True
    return options


engine = create_engine(config.database.url, **_engine_options())


if config.database.is_sqlite:
    @event.listens_for(engine, 'connect')
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """Readers never block on the scheduler's beacon upserts."""
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA journal_mode=WAL')
        cursor.execute('PRAGMA synchronous=NORMAL')
        cursor.execute('PRAGMA busy_timeout=5000')
        cursor.close()


SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,  # Rows are handed to other threads after commit
)


def database_reachable() -> bool:
    """Round-trip a trivial query; False when the database cannot answer."""
    try:
        with SessionLocal() as session:
            session.execute(text('SELECT 1'))
    except SQLAlchemyError as e:
        logger.error(f'Database health check failed: {e}')
        return False
    return True


def init_db() -> None:
    """Create missing tables. Production schemas are migrated separately."""
    Base.metadata.create_all(bind=engine)
