"""
Module: haccp_kernel.db.engine
Responsibility: The process-wide SQLAlchemy engine, its session factory and
    the commit-or-rollback transaction scope every write goes through.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, domain/, or outer layers (except for
    create_tables which imports the model modules so metadata is complete).

Invariants enforced:
    - PostgreSQL sessions run at READ COMMITTED with explicit row-level
      locking (FOR UPDATE) on the document and its tasks during a decision.
    - SQLite (tests, local CLI) relies on the optimistic version columns
      on documents and tasks; FOR UPDATE is a no-op there.
    - Connection pooling via QueuePool with pre-ping on PostgreSQL.

Failure modes:
    - RuntimeError if the engine is used before init_engine_from_url().
    - sqlalchemy TimeoutError when the pool (pool_size + max_overflow) is
      exhausted for longer than pool_timeout.

Audit relevance:
    session_scope() ensures atomic commit-or-rollback, so a decision and its
    audit event are persisted together or not at all.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from haccp_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def _engine_options(
    dialect: str,
    pool_size: int,
    max_overflow: int,
    pool_pre_ping: bool,
    pool_timeout: int,
    pool_recycle: int,
) -> dict:
    if dialect == "sqlite":
        # One file shared by the orchestrator's worker threads; pool_timeout
        # doubles as the busy timeout while another writer holds the lock.
        return {"connect_args": {"check_same_thread": False, "timeout": pool_timeout}}
    return {
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": pool_pre_ping,
        "pool_timeout": pool_timeout,
        "pool_recycle": pool_recycle,
        "isolation_level": "READ COMMITTED",
    }


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the engine and session factory for ``database_url``.

    A second call replaces the first engine without disposing it; call
    reset_engine() in between to release its connections.

    Args:
        database_url: PostgreSQL (``postgresql+psycopg://``) or SQLite URL.
        echo: Log every SQL statement.
        pool_size, max_overflow, pool_pre_ping, pool_recycle: PostgreSQL
            pool settings; ignored for SQLite.
        pool_timeout: Seconds to wait for a pooled connection (PostgreSQL)
            or for the database lock (SQLite).
    """
    global _engine, _SessionFactory

    dialect = make_url(database_url).get_backend_name()
    _engine = create_engine(
        database_url,
        echo=echo,
        **_engine_options(
            dialect, pool_size, max_overflow, pool_pre_ping, pool_timeout, pool_recycle,
        ),
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "pool_size": pool_size if dialect != "sqlite" else None,
            "echo": echo,
        },
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """The shared factory.  Each unit of work opens its own session from it."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    One transaction: commit on normal exit, roll back and re-raise on error.

    Usage:
        with session_scope(factory) as session:
            WorkflowService(session).decide(...)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every table the models declare.  Existing tables are left alone."""
    from haccp_kernel.db.base import Base
    import haccp_kernel.models  # noqa: F401  (registers every table)

    Base.metadata.create_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
