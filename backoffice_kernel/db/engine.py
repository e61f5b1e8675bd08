"""
Engine and sessions (``backoffice_kernel.db.engine``).

One process-wide engine, set up by ``init_engine_from_url()`` from the
sweep runner or the HTTP app.  Tests build private engines with
``build_engine()`` and never touch the module state.

Backends
--------
* **PostgreSQL** (production): pooled, READ COMMITTED.  Two sweep hosts
  are kept apart by the guarded claim/cursor UPDATEs and the history
  uniqueness constraint, not by isolation level.
* **SQLite** (tests, local runs): every transaction opens with
  ``BEGIN IMMEDIATE``, so concurrent writers queue on the file lock for
  up to the busy timeout instead of deadlocking on a lock upgrade.

Failure modes
-------------
* ``RuntimeError`` from ``get_engine``/``get_session_factory`` before
  ``init_engine_from_url``.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from backoffice_kernel.db.base import Base
from backoffice_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Database engine not initialized; call init_engine_from_url() first"


def build_engine(
    database_url: str,
    *,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """Create an engine for ``database_url`` without registering it globally."""
    if make_url(database_url).get_backend_name() != "sqlite":
        return create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": sqlite_busy_timeout},
    )

    # pysqlite would otherwise defer BEGIN until the first write
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_engine_from_url(database_url: str, **engine_options) -> Engine:
    """Build the process-wide engine and session factory, replacing any previous one."""
    global _engine, _session_factory

    reset_engine()
    _engine = build_engine(database_url, **engine_options)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "database": _engine.url.database},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory handed to services; each sweep worker and request opens its own session."""
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_factory


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session] | None = None,
) -> Iterator[Session]:
    """
    Commit on normal exit, roll back and re-raise on error, always close.

        with session_scope(factory) as session:
            JobService(session).create_job(request, actor_id)
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def import_all_orm_models() -> None:
    """Register every table on ``Base.metadata``."""
    import backoffice_modules.invoicing.orm  # noqa: F401
    import backoffice_modules.jobs.orm  # noqa: F401
    import recurring_engine.models  # noqa: F401


def create_tables(engine: Engine | None = None) -> None:
    """Create missing tables on ``engine`` (default: the process-wide engine)."""
    engine = engine or get_engine()
    import_all_orm_models()
    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def reset_engine() -> None:
    """Dispose the process-wide engine.  Used by tests and re-initialization."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)
