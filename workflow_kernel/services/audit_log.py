"""
AuditLogService -- append-only workflow history.

Responsibility:
    Stamps engine-produced ``HistoryNote`` values with subject, actor and
    clock time, appends them to ``workflow_history`` and reads them back in
    order.

Architecture position:
    Kernel > Services.  Reaches storage only through the ``RecordStore``
    port.

Invariants enforced:
    - Entries are never updated or deleted (store + ORM + trigger layers).
    - ``history()`` returns entries ordered by (timestamp, sequence).
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from workflow_kernel.domain.audit import ActivityType, AuditEntry, HistoryNote
from workflow_kernel.domain.clock import Clock
from workflow_kernel.domain.store import Record, RecordStore
from workflow_kernel.domain.subject import Actor
from workflow_kernel.logging_config import get_logger

logger = get_logger("services.audit_log")

HISTORY_TABLE = "workflow_history"


class AuditLogService:
    """Writes and reads the workflow history."""

    def __init__(self, store: RecordStore, clock: Clock):
        self._store = store
        self._clock = clock

    def _next_sequence(self, subject_id: UUID) -> int:
        rows = self._store.query(
            HISTORY_TABLE, {"subject_id": subject_id}, order_by=("sequence",)
        )
        return rows[-1]["sequence"] + 1 if rows else 1

    def record(
        self,
        subject_id: UUID,
        subject_type: str,
        note: HistoryNote,
        actor: Actor | None = None,
    ) -> AuditEntry:
        """Stamp and append one history note."""
        entry = AuditEntry(
            subject_id=subject_id,
            subject_type=subject_type,
            activity_type=note.activity_type,
            timestamp=self._clock.now(),
            actor_id=actor.actor_id if actor else None,
            actor_name=actor.actor_name if actor else None,
            from_phase=note.from_phase,
            to_phase=note.to_phase,
            note=note.note,
            recipient_id=note.recipient_id,
            sequence=self._next_sequence(subject_id),
        )
        entry_id = self._store.insert(
            HISTORY_TABLE,
            {
                "subject_id": entry.subject_id,
                "subject_type": entry.subject_type,
                "sequence": entry.sequence,
                "activity_type": entry.activity_type.value,
                "from_phase": entry.from_phase,
                "to_phase": entry.to_phase,
                "actor_id": entry.actor_id,
                "actor_name": entry.actor_name,
                "recipient_id": entry.recipient_id,
                "note": entry.note,
                "timestamp": entry.timestamp,
            },
        )
        logger.info(
            "workflow_history_appended",
            extra={
                "subject_id": str(subject_id),
                "subject_type": subject_type,
                "activity_type": entry.activity_type.value,
                "from_phase": entry.from_phase,
                "to_phase": entry.to_phase,
            },
        )
        return replace(entry, entry_id=entry_id)

    def record_all(
        self,
        subject_id: UUID,
        subject_type: str,
        notes: tuple[HistoryNote, ...],
        actor: Actor | None = None,
    ) -> list[AuditEntry]:
        return [self.record(subject_id, subject_type, n, actor) for n in notes]

    def history(self, subject_id: UUID) -> list[AuditEntry]:
        rows = self._store.query(
            HISTORY_TABLE,
            {"subject_id": subject_id},
            order_by=("timestamp", "sequence"),
        )
        return [_entry_from_record(row) for row in rows]


def _entry_from_record(row: Record) -> AuditEntry:
    return AuditEntry(
        subject_id=row["subject_id"],
        subject_type=row["subject_type"],
        activity_type=ActivityType(row["activity_type"]),
        timestamp=row["timestamp"],
        actor_id=row["actor_id"],
        actor_name=row["actor_name"],
        from_phase=row["from_phase"],
        to_phase=row["to_phase"],
        note=row["note"],
        recipient_id=row["recipient_id"],
        sequence=row["sequence"],
        entry_id=row["id"],
    )
