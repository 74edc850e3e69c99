"""
Module: approval_kernel.db.engine
Responsibility: Owns the process-wide engine and session factory, and the
    transactional scope every caller (services, admin CLI, tests) runs in.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/, domain/, or outer layers (except
    create_tables/drop_tables which import models so metadata is complete).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) on sequence counters and requests being
      mutated.
    - SQLite opens every transaction with BEGIN IMMEDIATE so writers are
      serialized (SQLite has no row locks), and enforces foreign keys.
    - session_scope() commits on success and rolls back on any exception,
      so a workflow transition is never partially applied.

Failure modes:
    - RuntimeError when a session or the engine is requested before
      init_engine_from_url().
    - OperationalError ("database is locked") on SQLite when a writer waits
      longer than the busy timeout.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_NOT_INITIALIZED = "Database not initialized; call init_engine_from_url() first"

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _sqlite_engine(database_url: str, echo: bool, busy_timeout: float) -> Engine:
    """
    pysqlite normally defers BEGIN until the first write, which lets two
    writers read the same counter value and breaks SAVEPOINT.  Here the
    driver's transaction handling is switched off and every transaction
    starts with BEGIN IMMEDIATE, taking the write lock up front.
    """
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": busy_timeout},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create the process-wide engine and session factory.

    Re-initializing disposes the previous engine first.  Pool arguments
    apply to PostgreSQL only; SQLite uses ``sqlite_busy_timeout`` seconds
    as its lock wait.
    """
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()

    if database_url.startswith("sqlite"):
        engine = _sqlite_engine(database_url, echo, sqlite_busy_timeout)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            isolation_level="READ COMMITTED",
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=pool_pre_ping,
        )

    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "pool_size": pool_size, "echo": echo},
    )
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for sessions bound to the current engine (one per thread)."""
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One transaction: commit on normal exit, roll back and re-raise on error.

    Usage:
        with session_scope() as session:
            workflow = ApprovalWorkflowService(session, directory)
            workflow.act(request_id, actor_id, ActionType.APPROVE)
    """
    session = get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from approval_kernel.db.base import Base
    import approval_kernel.models  # noqa: F401
    import approval_kernel.services.sequence_service  # noqa: F401

    return Base.metadata


def create_tables() -> None:
    _metadata().create_all(get_engine())


def drop_tables() -> None:
    """Drop every table.  Tests and local resets only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"
