"""
Ticket Workflows.

Approval-chain definition for tickets: tables, notification events and
the guards the chain applies on each approval.
"""

from workflow_kernel.domain.subject import GroupKind
from workflow_kernel.domain.workflow import Guard
from workflow_kernel.logging_config import get_logger

logger = get_logger("modules.tickets.workflows")

SUBJECT_TYPE = "ticket"
TICKET_TABLE = "tickets"
ADMIN_TABLE = "department_admins"

# Notification events
NEXT_HOP = "next_hop"
COMPLETED = "completed"
REJECTED = "rejected"
SIDE_CHANNEL_REQUESTED = "side_channel_requested"
SIDE_CHANNEL_ANSWERED = "side_channel_answered"


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ELIGIBLE_APPROVER = Guard(
    name="eligible_approver",
    description="Actor is a member of the rank the ticket is waiting on",
)

COST_CENTER_ASSIGNED = Guard(
    name="cost_center_assigned",
    description=(
        "On purchase tickets, a rank with a member flagged requires_cost_center"
        " needs a cost center"
    ),
)

SIDE_CHANNEL_RESOLVED = Guard(
    name="side_channel_resolved",
    description="No extra-approval request is pending when the chain completes",
)

TICKET_APPROVAL_GUARDS = (ELIGIBLE_APPROVER, COST_CENTER_ASSIGNED, SIDE_CHANNEL_RESOLVED)

logger.info(
    "ticket_workflow_guards_defined",
    extra={"guards": [g.name for g in TICKET_APPROVAL_GUARDS]},
)


def group_kind_for(is_purchase_admin: bool) -> GroupKind:
    return GroupKind.SECONDARY if is_purchase_admin else GroupKind.PRIMARY
