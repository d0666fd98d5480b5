"""
Module: payroll_kernel.db.engine
Responsibility: one SQLAlchemy engine and session factory per process, and
    the commit-or-rollback scope every service transaction runs in.
Architecture position: Kernel > DB.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; month status changes take a row
      lock (see supports_row_locks) on top of the version compare-and-swap.
    - SQLite files run in WAL mode with a 30 second busy timeout so the
      calculation workers can write snapshots while another session reads.
      In-memory SQLite shares one connection (StaticPool).
    - expire_on_commit is off: services build DTOs from rows after commit.

Failure modes:
    - RuntimeError from get_session_factory/create_tables before
      init_engine_from_url().
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from payroll_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _sqlite_engine(database_url: str, echo: bool) -> Engine:
    in_memory = make_url(database_url).database in (None, "", ":memory:")
    engine = create_engine(
        database_url,
        echo=echo,
        poolclass=StaticPool if in_memory else QueuePool,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
    )

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
) -> Engine:
    """
    Create the process-wide engine and session factory.

    A second call replaces the first; the caller disposes the old engine
    (reset_engine) if it still holds connections.  pool_size and
    max_overflow apply to server databases only.
    """
    global _engine, _SessionFactory

    dialect = make_url(database_url).get_backend_name()
    if dialect == "sqlite":
        _engine = _sqlite_engine(database_url, echo)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": dialect, "echo": echo})
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Each worker thread and each independent transaction takes its own session from here."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    Commit on normal exit; on an exception roll back and re-raise.

    Usage:
        with session_scope(factory) as session:
            store.save(session, snapshot)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    # Importing the models registers every table on Base.metadata.
    import payroll_kernel.models  # noqa: F401
    from payroll_kernel.db.base import Base

    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    Base.metadata.create_all(_engine)
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def supports_row_locks(session: Session) -> bool:
    """True when the bound dialect honours SELECT ... FOR UPDATE."""
    return session.get_bind().dialect.name == "postgresql"
