"""
workflow_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits above ``workflow_kernel`` and next to
    ``workflow_modules``.  The kernel MUST NEVER import from
    ``workflow_config``; ``bridges`` translates the config into store rows
    and engine inputs.

Invariants enforced:
    - The returned ``WorkflowConfig`` has passed validation.
    - ``DATABASE_URL`` in the environment overrides
      ``engine.database_url``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``InvalidConfigError`` -- validation errors.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from workflow_config.loader import load_config_file
from workflow_config.schema import (
    ApproverDef,
    DepartmentChainDef,
    EngineSettings,
    PhaseAssignmentDef,
    WorkflowConfig,
)
from workflow_config.validator import validate_configuration
from workflow_kernel.exceptions import InvalidConfigError
from workflow_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default" / "root.yaml"

__all__ = [
    "ApproverDef",
    "DepartmentChainDef",
    "EngineSettings",
    "PhaseAssignmentDef",
    "WorkflowConfig",
    "get_active_config",
]


def get_active_config(path: Path | str | None = None) -> WorkflowConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to ``workflow_config/sets/default/root.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        InvalidConfigError: If validation fails.
    """
    config = load_config_file(Path(path) if path else DEFAULT_CONFIG_PATH)

    validation = validate_configuration(config)
    for warning in validation.warnings:
        logger.warning("workflow_config_warning", extra={"warning": warning})
    if not validation.is_valid:
        raise InvalidConfigError(validation.errors)

    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        config = replace(config, engine=replace(config.engine, database_url=database_url))

    logger.info(
        "workflow_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "department_count": len(config.departments),
            "phase_assignment_count": len(config.phase_assignments),
        },
    )
    return config
