"""
Configuration Loader (``workflow_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into typed
``workflow_config.schema`` dataclass instances.  Runtime callers go
through ``workflow_config.get_active_config()`` instead.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  document for configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown group kind  -> ``ValueError`` from ``GroupKind``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from workflow_config.schema import (
    ApproverDef,
    DepartmentChainDef,
    EngineSettings,
    PhaseAssignmentDef,
    WorkflowConfig,
)
from workflow_kernel.domain.subject import GroupKind


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def parse_engine(data: dict[str, Any]) -> EngineSettings:
    defaults = EngineSettings()
    return EngineSettings(
        database_url=data.get("database_url", defaults.database_url),
        log_level=str(data.get("log_level", defaults.log_level)).upper(),
        delay_threshold_hours=int(
            data.get("delay_threshold_hours", defaults.delay_threshold_hours)
        ),
    )


def parse_approver(data: dict[str, Any], group_kind: GroupKind) -> ApproverDef:
    return ApproverDef(
        user_id=str(data["user_id"]),
        order=int(data["order"]),
        group_kind=group_kind,
        user_name=data.get("user_name", ""),
        requires_cost_center=bool(data.get("requires_cost_center", False)),
    )


def parse_department(data: dict[str, Any]) -> DepartmentChainDef:
    """Parse a department with ``primary`` and ``purchase`` approver lists."""
    approvers = [parse_approver(a, GroupKind.PRIMARY) for a in data.get("primary", [])]
    approvers += [parse_approver(a, GroupKind.SECONDARY) for a in data.get("purchase", [])]
    return DepartmentChainDef(
        department_id=str(data["department_id"]),
        name=data.get("name", ""),
        approvers=tuple(approvers),
    )


def parse_phase_assignment(data: dict[str, Any]) -> PhaseAssignmentDef:
    return PhaseAssignmentDef(
        phase=data["phase"],
        user_id=str(data["user_id"]),
        user_name=data.get("user_name", ""),
    )


def parse_config(data: dict[str, Any]) -> WorkflowConfig:
    """Parse a whole configuration document."""
    return WorkflowConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        engine=parse_engine(data.get("engine", {})),
        departments=tuple(parse_department(d) for d in data.get("departments", [])),
        phase_assignments=tuple(
            parse_phase_assignment(p) for p in data.get("phase_assignments", [])
        ),
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> WorkflowConfig:
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization. Deterministic."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
