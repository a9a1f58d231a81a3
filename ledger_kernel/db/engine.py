"""
Module: ledger_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, the session factory, and the
    transactional scope used as the unit of work by every caller.
Architecture position: Kernel > DB.  Imports db/base.py; create_tables() also
    imports the model modules so Base.metadata is complete.

Invariants enforced:
    - session_scope() commits exactly once on normal exit and rolls back on
      any exception.  Services never commit; they flush inside this scope.
    - PostgreSQL runs at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) on wallets and positions.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory are called
      before init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Initialize the module-level engine and session factory.

    PostgreSQL is the production backend.  SQLite URLs are accepted for local
    runs and tests; pool sizing does not apply to them.

    Args:
        database_url: SQLAlchemy URL (``postgresql://...`` or ``sqlite://...``).
        echo: Log every SQL statement.
        pool_size: Connections kept in the pool (PostgreSQL only).
        max_overflow: Connections allowed beyond pool_size (PostgreSQL only).
        pool_pre_ping: Test connections before use.
        pool_recycle: Seconds after which a pooled connection is recycled.
    """
    global _engine, _SessionFactory

    # Some hosts still hand out the legacy scheme.
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    if database_url.startswith("sqlite"):
        _engine = create_engine(database_url, echo=echo)
        enable_sqlite_savepoints(_engine)
        dialect = "sqlite"
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
        dialect = "postgresql"

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "echo": echo},
    )
    return _engine


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Make SAVEPOINT work on pysqlite and turn on foreign keys.

    pysqlite issues its own BEGIN lazily, which breaks begin_nested(); the
    driver's transaction handling is switched off and BEGIN is emitted by
    SQLAlchemy instead.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Session factory for callers that open one session per unit of work
    (the settlement scheduler opens one per run).
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Transactional scope around a series of operations.

    Usage:
        with session_scope() as session:
            WalletService(session).credit(user_id, Decimal("10"), "top-up")
            # Commits on exit, rolls back on exception
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


def create_tables() -> None:
    """
    Create every table registered on ``Base.metadata``.

    Preconditions: Engine initialized.  Kernel models are imported here;
        callers that persist other tables (settlement runs) import their
        models first.
    """
    from ledger_kernel.db.base import Base
    import ledger_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop all tables. Testing only."""
    from ledger_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
