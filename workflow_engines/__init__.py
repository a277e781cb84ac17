"""
Module: workflow_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines.  This
    is the canonical import surface for workflow_modules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel/domain/ types and exceptions (and
    sibling engine modules).  MUST NOT import workflow_modules.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  Timestamps are passed
      in by the services, which own the injected Clock.
    - Decimal-only arithmetic for amounts.
    - Determinism: identical inputs always produce identical outputs.
"""

from workflow_engines.approval_chain import (
    build_groups,
    is_configured_approver,
    members_at,
    requires_cost_center,
    resolve_next,
)
from workflow_engines.delivery import (
    compute_status,
    confirm_line,
    confirmed_total,
    confirmed_totals,
    remaining_by_group,
    set_delivered_amount,
    unconfirm_line,
)
from workflow_engines.side_channel import blocks_completion
from workflow_engines.state_machine import (
    Step,
    advance_chain,
    advance_phase,
    close_subject,
    recheck_chain,
    reject_chain,
    request_side_channel,
    respond_side_channel,
    rollback_phase,
)

__all__ = [
    "Step",
    "advance_chain",
    "advance_phase",
    "blocks_completion",
    "build_groups",
    "close_subject",
    "compute_status",
    "confirm_line",
    "confirmed_total",
    "confirmed_totals",
    "is_configured_approver",
    "members_at",
    "recheck_chain",
    "reject_chain",
    "remaining_by_group",
    "request_side_channel",
    "requires_cost_center",
    "resolve_next",
    "respond_side_channel",
    "rollback_phase",
    "set_delivered_amount",
    "unconfirm_line",
]
