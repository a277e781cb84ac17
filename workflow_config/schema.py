"""
WorkflowConfig schema.

Defines the human-authored, reviewable configuration for the workflow
engine.  YAML files are parsed into these frozen types by the loader and
checked by the validator before ``get_active_config()`` returns them.
"""

from __future__ import annotations

from dataclasses import dataclass

from workflow_kernel.domain.subject import GroupKind

# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Process-level settings."""

    database_url: str = "sqlite:///workflow.db"
    log_level: str = "INFO"
    delay_threshold_hours: int = 24


# ---------------------------------------------------------------------------
# Approver chains
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApproverDef:
    """One user at one rank of a department's chain."""

    user_id: str
    order: int
    group_kind: GroupKind = GroupKind.PRIMARY
    user_name: str = ""
    requires_cost_center: bool = False


@dataclass(frozen=True)
class DepartmentChainDef:
    """Approver chain for a department (primary and purchase ranks)."""

    department_id: str
    name: str = ""
    approvers: tuple[ApproverDef, ...] = ()


# ---------------------------------------------------------------------------
# Phase owners
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PhaseAssignmentDef:
    """User responsible for coins purchase orders in a phase."""

    phase: str
    user_id: str
    user_name: str = ""


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowConfig:
    """Complete configuration set."""

    config_id: str
    version: int
    engine: EngineSettings
    departments: tuple[DepartmentChainDef, ...] = ()
    phase_assignments: tuple[PhaseAssignmentDef, ...] = ()
    checksum: str = ""

    def department(self, department_id: str) -> DepartmentChainDef | None:
        for dept in self.departments:
            if dept.department_id == department_id:
                return dept
        return None
