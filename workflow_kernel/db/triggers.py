"""
Module: workflow_kernel.db.triggers
Responsibility: Installing and removing database-level immutability triggers
    on the workflow history table (Layer 2 of 2).  This is the database-level
    complement to the ORM-level listeners in db/immutability.py.
Architecture position: Kernel > DB.  MUST NOT import from models/, services/,
    domain/, or outer layers.

Invariants enforced:
    - workflow_history rows: no UPDATE, no DELETE, on PostgreSQL and SQLite.
      Bulk statements that bypass the ORM are refused by the database.

Failure modes:
    - The database raises on any violation (surfaced by SQLAlchemy as
      IntegrityError / OperationalError / DatabaseError depending on driver).
"""

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from workflow_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

HISTORY_TABLE = "workflow_history"

_TRIGGER_NAMES = (
    "trg_workflow_history_no_update",
    "trg_workflow_history_no_delete",
)

_POSTGRES_INSTALL = (
    f"""
    CREATE OR REPLACE FUNCTION workflow_history_append_only() RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION '{HISTORY_TABLE} is append-only';
    END;
    $$ LANGUAGE plpgsql
    """,
    f"""
    DROP TRIGGER IF EXISTS trg_workflow_history_no_update ON {HISTORY_TABLE}
    """,
    f"""
    CREATE TRIGGER trg_workflow_history_no_update
    BEFORE UPDATE ON {HISTORY_TABLE}
    FOR EACH ROW EXECUTE FUNCTION workflow_history_append_only()
    """,
    f"""
    DROP TRIGGER IF EXISTS trg_workflow_history_no_delete ON {HISTORY_TABLE}
    """,
    f"""
    CREATE TRIGGER trg_workflow_history_no_delete
    BEFORE DELETE ON {HISTORY_TABLE}
    FOR EACH ROW EXECUTE FUNCTION workflow_history_append_only()
    """,
)

_POSTGRES_UNINSTALL = (
    f"DROP TRIGGER IF EXISTS trg_workflow_history_no_update ON {HISTORY_TABLE}",
    f"DROP TRIGGER IF EXISTS trg_workflow_history_no_delete ON {HISTORY_TABLE}",
    "DROP FUNCTION IF EXISTS workflow_history_append_only()",
)

_SQLITE_INSTALL = (
    f"""
    CREATE TRIGGER IF NOT EXISTS trg_workflow_history_no_update
    BEFORE UPDATE ON {HISTORY_TABLE}
    BEGIN
        SELECT RAISE(ABORT, '{HISTORY_TABLE} is append-only (UPDATE refused)');
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS trg_workflow_history_no_delete
    BEFORE DELETE ON {HISTORY_TABLE}
    BEGIN
        SELECT RAISE(ABORT, '{HISTORY_TABLE} is append-only (DELETE refused)');
    END
    """,
)

_SQLITE_UNINSTALL = tuple(f"DROP TRIGGER IF EXISTS {name}" for name in _TRIGGER_NAMES)


def _statements(engine: Engine, install: bool) -> tuple[str, ...]:
    dialect = engine.dialect.name
    if dialect == "postgresql":
        return _POSTGRES_INSTALL if install else _POSTGRES_UNINSTALL
    if dialect == "sqlite":
        return _SQLITE_INSTALL if install else _SQLITE_UNINSTALL
    logger.warning("immutability_triggers_unsupported", extra={"dialect": dialect})
    return ()


def install_immutability_triggers(engine: Engine) -> None:
    """Install the history-table triggers for the engine's dialect."""
    statements = _statements(engine, install=True)
    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))
    logger.info(
        "immutability_triggers_installed",
        extra={"dialect": engine.dialect.name, "count": len(statements)},
    )


def uninstall_immutability_triggers(engine: Engine) -> None:
    """Remove the history-table triggers. No-op if the table does not exist."""
    if not inspect(engine).has_table(HISTORY_TABLE):
        return
    with engine.begin() as conn:
        for stmt in _statements(engine, install=False):
            conn.execute(text(stmt))
