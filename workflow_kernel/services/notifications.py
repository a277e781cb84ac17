"""
Notification port.

The engine decides *who* should hear about a transition; delivering the
message (email, push, in-app) belongs to the caller.  Implementations
must not raise for delivery failures they can retry themselves.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from workflow_kernel.domain.subject import WorkflowSubject
from workflow_kernel.logging_config import get_logger


class WorkflowNotifier(Protocol):
    def notify(
        self,
        event: str,
        subject: WorkflowSubject,
        recipients: frozenset[str],
        detail: Mapping[str, Any],
    ) -> None:
        ...


class NullNotifier:
    """Drops every notification."""

    def notify(
        self,
        event: str,
        subject: WorkflowSubject,
        recipients: frozenset[str],
        detail: Mapping[str, Any],
    ) -> None:
        return None


class LoggingNotifier:
    """Writes each notification to the log instead of delivering it.

    Used by operator scripts when no transport is wired in.
    """

    def __init__(self):
        self._logger = get_logger("services.notifications")

    def notify(
        self,
        event: str,
        subject: WorkflowSubject,
        recipients: frozenset[str],
        detail: Mapping[str, Any],
    ) -> None:
        self._logger.info(
            "workflow_notification",
            extra={
                "event": event,
                "notified_subject": str(subject.subject_id),
                "recipients": sorted(recipients),
                "detail": dict(detail),
            },
        )
