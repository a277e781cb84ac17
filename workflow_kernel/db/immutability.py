"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

The workflow history is the record of who moved a subject and when.
Entries are append-only from creation:

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications made through SQLAlchemy unit-of-work flushes
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/triggers.py (database triggers)
    - Catches bulk UPDATE/DELETE statements and direct SQL access

Entity                 | When Immutable        | Why
-----------------------|-----------------------|------------------------------
WorkflowHistoryEntry   | ALWAYS                | Audit trail is append-only
"""

from sqlalchemy import event

from workflow_kernel.exceptions import ImmutabilityViolationError

_registered = False


def _check_history_immutability(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowHistoryEntry",
        entity_id=str(target.id),
        reason="Workflow history entries are append-only",
    )


def _check_history_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowHistoryEntry",
        entity_id=str(target.id),
        reason="Workflow history entries cannot be deleted",
    )


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Idempotent; called when the model registry is imported.
    """
    global _registered
    if _registered:
        return

    from workflow_kernel.models.history import WorkflowHistoryEntry

    event.listen(WorkflowHistoryEntry, "before_update", _check_history_immutability)
    event.listen(WorkflowHistoryEntry, "before_delete", _check_history_delete)
    _registered = True
