"""
Module ORM Registry (``workflow_modules._orm_registry``).

Responsibility
--------------
Ensure every module-level SQLAlchemy ORM model is imported so that
``Base.metadata`` contains its table definition before tables are
created and before the record store resolves table names.

Architecture position
---------------------
**Modules layer** -- utility.  Called lazily by
``workflow_kernel.models.import_all_models()``; nothing in the kernel
imports module packages at import time.
"""


def import_all_orm_models() -> None:
    """Import the kernel history model and every ``workflow_modules.*.orm``.

    This function is idempotent -- repeated calls are harmless.
    """
    import workflow_kernel.models.history  # noqa: F401
    # fmt: off
    import workflow_modules.tickets.orm  # noqa: F401
    import workflow_modules.coins_purchase.orm  # noqa: F401
    # fmt: on
