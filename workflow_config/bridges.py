"""
Config-to-store bridges.

Translates a validated ``WorkflowConfig`` into the reference rows the
module services read (``department_admins`` and
``coins_workflow_assignments``), and into engine ``ApproverGroup`` values
for callers that resolve chains without a store.
"""

from __future__ import annotations

from workflow_config.schema import WorkflowConfig
from workflow_engines.approval_chain import build_groups
from workflow_kernel.domain.store import RecordStore
from workflow_kernel.domain.subject import ApproverGroup, GroupKind
from workflow_kernel.logging_config import get_logger
from workflow_modules.coins_purchase.workflows import ASSIGNMENT_TABLE
from workflow_modules.tickets.workflows import ADMIN_TABLE

logger = get_logger("config.bridges")


def approver_groups(config: WorkflowConfig, department_id: str) -> tuple[ApproverGroup, ...]:
    """Approver groups for a department; empty when it is not configured."""
    dept = config.department(department_id)
    if dept is None:
        return ()
    return build_groups(
        (a.group_kind, a.order, a.user_id, a.requires_cost_center) for a in dept.approvers
    )


def seed_reference_data(store: RecordStore, config: WorkflowConfig) -> dict[str, int]:
    """Replace the configured departments' admins and the phase owners.

    Departments absent from ``config`` are left untouched.  Re-running
    with the same config yields the same rows.
    """
    department_ids = [d.department_id for d in config.departments]
    removed_admins = store.delete(ADMIN_TABLE, {"department_id": department_ids}) if department_ids else 0

    admins = 0
    for dept in config.departments:
        for approver in dept.approvers:
            store.insert(
                ADMIN_TABLE,
                {
                    "department_id": dept.department_id,
                    "user_id": approver.user_id,
                    "user_name": approver.user_name,
                    "admin_order": approver.order,
                    "is_purchase_admin": approver.group_kind == GroupKind.SECONDARY,
                    "requires_cost_center": approver.requires_cost_center,
                },
            )
            admins += 1

    phases = sorted({a.phase for a in config.phase_assignments})
    removed_assignments = store.delete(ASSIGNMENT_TABLE, {"phase": phases}) if phases else 0
    for assignment in config.phase_assignments:
        store.insert(
            ASSIGNMENT_TABLE,
            {
                "phase": assignment.phase,
                "user_id": assignment.user_id,
                "user_name": assignment.user_name,
            },
        )

    counts = {
        "department_admins": admins,
        "phase_assignments": len(config.phase_assignments),
        "replaced_admins": removed_admins,
        "replaced_assignments": removed_assignments,
    }
    logger.info("reference_data_seeded", extra={"config_id": config.config_id, **counts})
    return counts
