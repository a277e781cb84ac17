"""Kernel services: record store adapter, audit log, subject persistence."""

from workflow_kernel.services.audit_log import AuditLogService
from workflow_kernel.services.notifications import (
    LoggingNotifier,
    NullNotifier,
    WorkflowNotifier,
)
from workflow_kernel.services.record_store import SqlAlchemyRecordStore
from workflow_kernel.services.subject_codec import (
    chain_patch,
    phase_patch,
    save_subject,
    subject_from_record,
)

__all__ = [
    "AuditLogService",
    "LoggingNotifier",
    "NullNotifier",
    "SqlAlchemyRecordStore",
    "WorkflowNotifier",
    "chain_patch",
    "phase_patch",
    "save_subject",
    "subject_from_record",
]
