"""
Database connection setup for the workflow store.

One engine per process, created by ``init_engine_from_url`` from the URL
in the workflow configuration (or ``DATABASE_URL``). Services never open
sessions themselves: the UI handler or script wraps a user action in
``session_scope()`` and hands the session to ``SqlAlchemyRecordStore``,
so one action is one transaction.

PostgreSQL runs at READ COMMITTED. Two approvers racing on one ticket are
separated by the compare-and-set on the ``version`` column, not by the
isolation level. SQLite (tests and local tooling) shares a single
connection so an in-memory database outlives individual sessions.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from workflow_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")


@dataclass
class _Database:
    engine: Engine
    sessions: sessionmaker[Session]


_db: _Database | None = None


def _build_engine(database_url: str, echo: bool, pool_size: int) -> Engine:
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=pool_size // 2,
        pool_pre_ping=True,
        pool_recycle=1800,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(database_url: str, echo: bool = False, pool_size: int = 10) -> Engine:
    """Create the process-wide engine, replacing any earlier one."""
    global _db
    reset_engine()
    engine = _build_engine(database_url, echo, pool_size)
    _db = _Database(engine=engine, sessions=sessionmaker(bind=engine, expire_on_commit=False))

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": engine.dialect.name, "echo": echo})
    return engine


def _require() -> _Database:
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_engine_from_url() first.")
    return _db


def get_engine() -> Engine:
    return _require().engine


def get_session() -> Session:
    """A new session; the caller commits and closes it."""
    return _require().sessions()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Run one user action in one transaction.

    Commits on normal exit; any exception rolls back and is re-raised.

        with session_scope() as session:
            tickets = TicketApprovalService(SqlAlchemyRecordStore(session))
            tickets.advance(ticket_id, actor)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(install_triggers: bool = True) -> None:
    """Create every registered table, plus the history immutability triggers."""
    from workflow_kernel.db.base import Base
    from workflow_kernel.models import import_all_models

    engine = get_engine()
    import_all_models()
    Base.metadata.create_all(engine)

    if install_triggers:
        from workflow_kernel.db.triggers import install_immutability_triggers

        install_immutability_triggers(engine)


def drop_tables() -> None:
    """Drop every table. Tests and ``seed_approvers --drop`` only."""
    from workflow_kernel.db.base import Base
    from workflow_kernel.db.triggers import uninstall_immutability_triggers

    engine = get_engine()
    uninstall_immutability_triggers(engine)
    Base.metadata.drop_all(engine)


def reset_engine() -> None:
    global _db
    if _db is not None:
        _db.engine.dispose()
        _db = None


atexit.register(reset_engine)
