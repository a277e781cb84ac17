"""
Typed Exception Hierarchy for the Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failed transition is an expected, recoverable condition for the
caller (a UI handler deciding what to show).  Callers must be able to
branch on the kind of failure without parsing messages:

    try:
        tickets.advance(ticket_id, actor)
    except SideChannelBlockingError as e:
        show_banner(f"Awaiting extra approval from {e.recipient_id}")
    except NotEligibleError as e:
        refresh_and_warn(e.expected_order)

Every exception has:
  1. A TYPED class (catch by type, not message)
  2. A ``code`` class attribute (machine-readable, API-safe)
  3. Structured attributes (not just a message string)

Module services convert these into ``WorkflowResult`` values at their
boundary; the pure engines raise them directly.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowKernelError (base)
    |
    +-- TransitionError
    |   +-- NotEligibleError
    |   +-- SideChannelBlockingError
    |   +-- CostCenterRequiredError
    |   +-- GuardFailedError
    |
    +-- SideChannelError
    |   +-- AlreadyPendingError
    |   +-- NoPendingRequestError
    |
    +-- PhaseError
    |   +-- AtEarliestPhaseError
    |
    +-- SubjectStateError
    |   +-- AlreadyClosedError
    |   +-- LineFrozenError
    |   +-- LineNotFoundError
    |
    +-- DeliveryError
    |   +-- BelowThresholdError
    |   +-- InvalidAmountError
    |
    +-- StoreError
    |   +-- RecordNotFoundError
    |   +-- ConflictOrNotFoundError
    |   +-- UnknownTableError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigError
        +-- InvalidConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Transition      | NOT_ELIGIBLE                | Actor/rank is not the one expected
                | SIDE_CHANNEL_BLOCKING       | Chain exhausted, side channel pending
                | COST_CENTER_REQUIRED        | Purchase rank needs a cost center
                | GUARD_FAILED                | Phase exit guard not satisfied
----------------|-----------------------------|-----------------------------------------
Side channel    | ALREADY_PENDING             | Request while one is pending
                | NO_PENDING_REQUEST          | Response with nothing pending
----------------|-----------------------------|-----------------------------------------
Phase           | AT_EARLIEST_PHASE           | Rollback from the first phase
----------------|-----------------------------|-----------------------------------------
Subject state   | ALREADY_CLOSED              | Mutation on a terminal subject
                | LINE_FROZEN                 | Amount edit on a confirmed line
                | LINE_NOT_FOUND              | Line id not under this subject
----------------|-----------------------------|-----------------------------------------
Delivery        | BELOW_THRESHOLD             | Close before control amount is met
                | INVALID_AMOUNT              | Non-positive order or negative delivered amount
----------------|-----------------------------|-----------------------------------------
Store           | RECORD_NOT_FOUND            | get() on a missing id
                | CONFLICT_OR_NOT_FOUND       | Compare-and-set matched no row
                | UNKNOWN_TABLE               | Table name not registered
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an audit entry
----------------|-----------------------------|-----------------------------------------
Config          | INVALID_CONFIG              | YAML failed validation

===============================================================================
"""

from decimal import Decimal


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Transition-related exceptions


class TransitionError(WorkflowKernelError):
    """Base exception for refused transitions."""

    code: str = "TRANSITION_ERROR"


class NotEligibleError(TransitionError):
    """Actor or acting rank does not match the rank the subject expects."""

    code: str = "NOT_ELIGIBLE"

    def __init__(
        self,
        subject_id: str,
        actor_id: str,
        expected_order: int | None,
        acting_order: int | None = None,
        reason: str = "",
    ):
        self.subject_id = subject_id
        self.actor_id = actor_id
        self.expected_order = expected_order
        self.acting_order = acting_order
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} is not eligible to act on {subject_id} "
            f"(expected rank {expected_order}, acting rank {acting_order})"
            + (f": {reason}" if reason else "")
        )


class SideChannelBlockingError(TransitionError):
    """Main chain is exhausted but a side-channel request is still pending."""

    code: str = "SIDE_CHANNEL_BLOCKING"

    def __init__(self, subject_id: str, recipient_id: str):
        self.subject_id = subject_id
        self.recipient_id = recipient_id
        super().__init__(
            f"Subject {subject_id} is awaiting extra approval from {recipient_id}"
        )


class CostCenterRequiredError(TransitionError):
    """The acting purchase rank requires a cost center before approving."""

    code: str = "COST_CENTER_REQUIRED"

    def __init__(self, subject_id: str, order: int):
        self.subject_id = subject_id
        self.order = order
        super().__init__(
            f"Rank {order} requires a cost center before approving {subject_id}"
        )


class GuardFailedError(TransitionError):
    """A phase exit guard was not satisfied."""

    code: str = "GUARD_FAILED"

    def __init__(self, subject_id: str, guard_name: str, phase: str, detail: str = ""):
        self.subject_id = subject_id
        self.guard_name = guard_name
        self.phase = phase
        self.detail = detail
        super().__init__(
            f"Guard '{guard_name}' blocked leaving phase {phase} for {subject_id}"
            + (f": {detail}" if detail else "")
        )


# Side-channel exceptions


class SideChannelError(WorkflowKernelError):
    """Base exception for side-channel misuse."""

    code: str = "SIDE_CHANNEL_ERROR"


class AlreadyPendingError(SideChannelError):
    """A side-channel request is already pending for this subject."""

    code: str = "ALREADY_PENDING"

    def __init__(self, subject_id: str, recipient_id: str):
        self.subject_id = subject_id
        self.recipient_id = recipient_id
        super().__init__(
            f"Subject {subject_id} already has a pending side-channel "
            f"request to {recipient_id}"
        )


class NoPendingRequestError(SideChannelError):
    """There is no pending side-channel request to respond to."""

    code: str = "NO_PENDING_REQUEST"

    def __init__(self, subject_id: str):
        self.subject_id = subject_id
        super().__init__(f"Subject {subject_id} has no pending side-channel request")


# Phase exceptions


class PhaseError(WorkflowKernelError):
    """Base exception for phase ordering errors."""

    code: str = "PHASE_ERROR"


class AtEarliestPhaseError(PhaseError):
    """Rollback attempted from the first phase."""

    code: str = "AT_EARLIEST_PHASE"

    def __init__(self, subject_id: str, phase: str):
        self.subject_id = subject_id
        self.phase = phase
        super().__init__(f"Subject {subject_id} is already at its first phase ({phase})")


# Subject state exceptions


class SubjectStateError(WorkflowKernelError):
    """Base exception for mutations the subject's state does not allow."""

    code: str = "SUBJECT_STATE_ERROR"


class AlreadyClosedError(SubjectStateError):
    """Mutation attempted on a terminal subject."""

    code: str = "ALREADY_CLOSED"

    def __init__(self, subject_id: str, stage: str):
        self.subject_id = subject_id
        self.stage = stage
        super().__init__(f"Subject {subject_id} is {stage} and read-only")


class LineFrozenError(SubjectStateError):
    """Amount edit attempted on a confirmed line, or confirm of a confirmed line."""

    code: str = "LINE_FROZEN"

    def __init__(self, line_id: str, reason: str = "line is confirmed"):
        self.line_id = line_id
        self.reason = reason
        super().__init__(f"Receiving line {line_id}: {reason}")


class LineNotFoundError(SubjectStateError):
    """The line does not exist under the given subject."""

    code: str = "LINE_NOT_FOUND"

    def __init__(self, line_id: str, subject_id: str):
        self.line_id = line_id
        self.subject_id = subject_id
        super().__init__(f"Receiving line {line_id} not found under {subject_id}")


# Delivery exceptions


class DeliveryError(WorkflowKernelError):
    """Base exception for delivery-control errors."""

    code: str = "DELIVERY_ERROR"


class BelowThresholdError(DeliveryError):
    """Close attempted before the confirmed total meets the control amount."""

    code: str = "BELOW_THRESHOLD"

    def __init__(
        self,
        subject_id: str,
        confirmed_total: Decimal,
        required_minimum: Decimal,
    ):
        self.subject_id = subject_id
        self.confirmed_total = confirmed_total
        self.required_minimum = required_minimum
        self.remaining = required_minimum - confirmed_total
        super().__init__(
            f"Subject {subject_id} confirmed {confirmed_total}, "
            f"needs {required_minimum} (remaining {self.remaining})"
        )


class InvalidAmountError(DeliveryError):
    """Order amount not positive, or delivered amount negative."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount: Decimal, reason: str):
        self.field = field
        self.amount = amount
        super().__init__(f"{field}={amount}: {reason}")


# Store exceptions


class StoreError(WorkflowKernelError):
    """Base exception for record store errors."""

    code: str = "STORE_ERROR"


class RecordNotFoundError(StoreError):
    """Record with given id was not found."""

    code: str = "RECORD_NOT_FOUND"

    def __init__(self, table: str, record_id: str):
        self.table = table
        self.record_id = record_id
        super().__init__(f"{table} record not found: {record_id}")


class ConflictOrNotFoundError(StoreError):
    """Conditional write matched no row: stale read or missing record."""

    code: str = "CONFLICT_OR_NOT_FOUND"

    def __init__(self, table: str, record_id: str, expected: dict | None = None):
        self.table = table
        self.record_id = record_id
        self.expected = dict(expected or {})
        super().__init__(
            f"Conditional update on {table} {record_id} matched no row "
            f"(expected {self.expected}): modified concurrently or missing"
        )


class UnknownTableError(StoreError):
    """Table name is not registered with the record store."""

    code: str = "UNKNOWN_TABLE"

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Unknown table: {table}")


# Immutability exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigError(WorkflowKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIG_ERROR"


class InvalidConfigError(ConfigError):
    """Configuration failed validation."""

    code: str = "INVALID_CONFIG"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid workflow configuration: " + "; ".join(self.errors))
