"""Kernel ORM models. Module-owned tables live in ``workflow_modules.*.orm``."""

from workflow_kernel.models.history import WorkflowHistoryEntry

__all__ = ["WorkflowHistoryEntry", "import_all_models"]


def import_all_models() -> None:
    """Register kernel and module ORM models and the immutability listeners.

    Idempotent.  Must run before ``Base.metadata.create_all`` and before
    the record store resolves table names.
    """
    from workflow_kernel.db.immutability import register_immutability_listeners
    from workflow_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    register_immutability_listeners()
