"""
Configuration Validator (``workflow_config.validator``).

Responsibility
--------------
Checks a parsed ``WorkflowConfig`` for structural problems before it is
handed to callers.

Invariants enforced
-------------------
* Department ids are unique.
* ``(department, group kind, order, user)`` tuples are unique.
* Approval orders are non-negative.
* Phase assignments name a coins purchase phase.
* The delay threshold is positive.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from workflow_config.schema import WorkflowConfig
from workflow_modules.coins_purchase.workflows import COINS_PURCHASE_WORKFLOW

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass
class ConfigValidationResult:
    """``is_valid`` returns ``True`` only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: WorkflowConfig) -> ConfigValidationResult:
    result = ConfigValidationResult()

    _validate_engine(config, result)
    _validate_departments(config, result)
    _validate_phase_assignments(config, result)

    return result


def _validate_engine(config: WorkflowConfig, result: ConfigValidationResult) -> None:
    if config.engine.delay_threshold_hours <= 0:
        result.add_error(
            f"engine.delay_threshold_hours must be positive, got "
            f"{config.engine.delay_threshold_hours}"
        )
    if config.engine.log_level not in _LOG_LEVELS:
        result.add_error(f"engine.log_level '{config.engine.log_level}' is not a log level")


def _validate_departments(config: WorkflowConfig, result: ConfigValidationResult) -> None:
    seen_departments: set[str] = set()
    for dept in config.departments:
        if dept.department_id in seen_departments:
            result.add_error(f"Duplicate department: {dept.department_id}")
        seen_departments.add(dept.department_id)

        if not dept.approvers:
            result.add_warning(
                f"Department '{dept.department_id}' has no approvers; "
                f"its tickets complete on the first approval"
            )

        seen: set[tuple] = set()
        for approver in dept.approvers:
            key = (approver.group_kind, approver.order, approver.user_id)
            if key in seen:
                result.add_error(
                    f"Department '{dept.department_id}': {approver.user_id} listed twice "
                    f"at {approver.group_kind.value}:{approver.order}"
                )
            seen.add(key)
            if approver.order < 0:
                result.add_error(
                    f"Department '{dept.department_id}': negative order {approver.order} "
                    f"for {approver.user_id}"
                )


def _validate_phase_assignments(
    config: WorkflowConfig, result: ConfigValidationResult
) -> None:
    phases = {p.name for p in COINS_PURCHASE_WORKFLOW.phases}
    for assignment in config.phase_assignments:
        if assignment.phase not in phases:
            result.add_error(
                f"Phase assignment for {assignment.user_id} names unknown phase "
                f"'{assignment.phase}'"
            )
