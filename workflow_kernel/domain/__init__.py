"""Pure domain types for the workflow kernel. No I/O."""

from workflow_kernel.domain.audit import ActivityType, AuditEntry, HistoryNote
from workflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from workflow_kernel.domain.delivery import DeliveryStatus, ReceiptLine
from workflow_kernel.domain.results import (
    EXPECTED_ERRORS,
    WorkflowOutcome,
    WorkflowResult,
)
from workflow_kernel.domain.store import Record, RecordStore
from workflow_kernel.domain.subject import (
    STAGE_TRANSITIONS,
    TERMINAL_STAGES,
    Actor,
    ApproverGroup,
    ChainPosition,
    ChainResolution,
    Completed,
    GroupKind,
    NextHop,
    SideChannel,
    SideChannelStatus,
    StageKind,
    WorkflowSubject,
)
from workflow_kernel.domain.workflow import ArtifactRef, Guard, Phase, PhasedWorkflow

__all__ = [
    "ActivityType",
    "Actor",
    "ApproverGroup",
    "ArtifactRef",
    "AuditEntry",
    "ChainPosition",
    "ChainResolution",
    "Clock",
    "Completed",
    "DeliveryStatus",
    "DeterministicClock",
    "EXPECTED_ERRORS",
    "GroupKind",
    "Guard",
    "HistoryNote",
    "NextHop",
    "Phase",
    "PhasedWorkflow",
    "ReceiptLine",
    "Record",
    "RecordStore",
    "STAGE_TRANSITIONS",
    "SideChannel",
    "SideChannelStatus",
    "StageKind",
    "SystemClock",
    "TERMINAL_STAGES",
    "WorkflowOutcome",
    "WorkflowResult",
    "WorkflowSubject",
]
