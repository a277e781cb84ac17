"""
Coins Purchase Workflows.

Phase order for coins purchase orders and the guard protecting the last
active phase.
"""

from workflow_kernel.domain.delivery import DeliveryStatus
from workflow_kernel.domain.subject import StageKind, WorkflowSubject
from workflow_kernel.domain.workflow import ArtifactRef, Guard, Phase, PhasedWorkflow
from workflow_kernel.logging_config import get_logger

logger = get_logger("modules.coins_purchase.workflows")

SUBJECT_TYPE = "purchase_order"

ORDER_TABLE = "coins_purchase_orders"
ORDER_LINE_TABLE = "coins_purchase_order_lines"
HEADER_TABLE = "receiving_coins_header"
RECEIVING_LINE_TABLE = "receiving_coins_line"
ATTACHMENT_TABLE = "receiving_coins_attachments"
ASSIGNMENT_TABLE = "coins_workflow_assignments"

# Phases
CREATION = "creation"
SENDING = "sending"
RECEIVING = "receiving"
COINS_ENTRY = "coins_entry"
COMPLETED = "completed"

# Notification events
PHASE_ENTERED = "phase_entered"
ORDER_COMPLETED = "order_completed"
PHASE_DELAYED = "phase_delayed"


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ALL_LINES_CONFIRMED = Guard(
    name="all_lines_confirmed",
    description="Every brand's confirmed coins reach its control amount",
)


def _all_lines_confirmed(subject: WorkflowSubject) -> bool:
    return subject.delivery_status == DeliveryStatus.FULL_DELIVERY


GUARD_CHECKS = {ALL_LINES_CONFIRMED.name: _all_lines_confirmed}


# -----------------------------------------------------------------------------
# Workflow
# -----------------------------------------------------------------------------

# Children first: rollback deletes in this order before the header moves.
RECEIVING_ARTIFACTS = (
    ArtifactRef(table=RECEIVING_LINE_TABLE, subject_key="purchase_order_id"),
    ArtifactRef(table=ATTACHMENT_TABLE, subject_key="purchase_order_id"),
    ArtifactRef(table=HEADER_TABLE, subject_key="purchase_order_id"),
)

COINS_PURCHASE_WORKFLOW = PhasedWorkflow(
    name="coins_purchase",
    description="Coins purchase from creation to counted delivery",
    phases=(
        Phase(name=CREATION, stage=StageKind.NOT_STARTED),
        Phase(name=SENDING, stage=StageKind.IN_PROGRESS),
        Phase(name=RECEIVING, stage=StageKind.IN_PROGRESS),
        Phase(
            name=COINS_ENTRY,
            stage=StageKind.IN_PROGRESS,
            artifacts=RECEIVING_ARTIFACTS,
            exit_guard=ALL_LINES_CONFIRMED,
        ),
        Phase(name=COMPLETED, stage=StageKind.COMPLETED),
    ),
)

# Phases watched by the delay sweep.
DELAY_TRACKED_PHASES = (SENDING, RECEIVING, COINS_ENTRY)

logger.info(
    "coins_purchase_workflow_defined",
    extra={
        "workflow": COINS_PURCHASE_WORKFLOW.name,
        "phases": [p.name for p in COINS_PURCHASE_WORKFLOW.phases],
        "guards": [ALL_LINES_CONFIRMED.name],
    },
)
