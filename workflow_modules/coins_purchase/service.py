"""
Purchase Order Service (``workflow_modules.coins_purchase.service``).

Responsibility
--------------
Orchestrates the phased coins purchase lifecycle -- order creation,
phase advance and rollback, receiving-line confirmation, closing against
a control amount, and the phase-delay sweep -- delegating decisions to
``workflow_engines`` and persistence to the kernel record store.

Architecture position
---------------------
**Modules layer** -- thin glue.  ``PurchaseOrderService`` is the sole
public entry point for coins purchase transitions.

Invariants enforced
-------------------
* Delivery status is recomputed by ``compute_status`` after every line
  mutation, on entering ``coins_entry`` and after rollback, and persisted
  on the order.
* Rollback deletes the left phase's artifacts children-first BEFORE the
  order header changes phase; re-running a rollback interrupted between
  the two is safe.
* Order writes are compare-and-set on ``version``; receiving lines,
  attachments and cascade deletes are written only after the order
  version is claimed, so a losing writer leaves nothing behind.
* The completion hook runs at most once per order.
* Flushes, never commits: the caller owns the transaction boundary.

Failure modes
-------------
* Expected refusals -> ``WorkflowResult`` with ``is_success == False``.
* Unexpected exceptions propagate.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from workflow_engines.delivery import (
    compute_status,
    confirm_line,
    confirmed_total,
    confirmed_totals,
    remaining_by_group,
    set_delivered_amount,
    unconfirm_line,
)
from workflow_engines.state_machine import (
    Step,
    advance_phase,
    close_subject,
    rollback_phase,
)
from workflow_kernel.domain.audit import ActivityType, AuditEntry, HistoryNote
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.delivery import DeliveryStatus, ReceiptLine
from workflow_kernel.domain.results import EXPECTED_ERRORS, WorkflowOutcome, WorkflowResult
from workflow_kernel.domain.store import Record, RecordStore
from workflow_kernel.domain.subject import Actor, StageKind, WorkflowSubject
from workflow_kernel.domain.workflow import ArtifactRef
from workflow_kernel.exceptions import (
    AlreadyClosedError,
    ConflictOrNotFoundError,
    InvalidAmountError,
    LineNotFoundError,
    RecordNotFoundError,
    WorkflowKernelError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.services.audit_log import AuditLogService
from workflow_kernel.services.notifications import NullNotifier, WorkflowNotifier
from workflow_kernel.services.subject_codec import (
    claim_subject,
    phase_patch,
    save_subject,
    subject_from_record,
    write_claimed,
)
from workflow_modules.coins_purchase.models import (
    DelayedOrder,
    DeliverySummary,
    OrderLine,
)
from workflow_modules.coins_purchase.workflows import (
    ASSIGNMENT_TABLE,
    ATTACHMENT_TABLE,
    COINS_PURCHASE_WORKFLOW,
    DELAY_TRACKED_PHASES,
    GUARD_CHECKS,
    HEADER_TABLE,
    ORDER_COMPLETED,
    ORDER_LINE_TABLE,
    ORDER_TABLE,
    PHASE_DELAYED,
    PHASE_ENTERED,
    RECEIVING_LINE_TABLE,
    SUBJECT_TYPE,
)

logger = get_logger("modules.coins_purchase.service")

DEFAULT_DELAY_THRESHOLD = timedelta(days=1)

_ACTIVE_STAGES = [StageKind.NOT_STARTED.value, StageKind.IN_PROGRESS.value]


def _receipt_line(row: Record) -> ReceiptLine:
    return ReceiptLine(
        line_id=row["id"],
        parent_id=row["header_id"],
        group_key=row["brand_id"],
        target_amount=row["target_amount"],
        delivered_amount=row["delivered_amount"],
        is_confirmed=row["is_confirmed"],
        confirmed_by=row["confirmed_by"],
        confirmed_at=row["confirmed_at"],
    )


class PurchaseOrderService:
    """
    Coins purchase workflow over a record store.

    Contract
    --------
    * Every transition returns ``WorkflowResult``.
    * ``find_delayed`` and the read helpers return frozen DTOs.

    Non-goals
    ---------
    * Does NOT upload files; ``add_attachment`` records a URL the caller's
      blob store already produced.
    * Does NOT commit.
    """

    def __init__(
        self,
        store: RecordStore,
        clock: Clock | None = None,
        notifier: WorkflowNotifier | None = None,
        on_completed: Callable[[WorkflowSubject], None] | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._audit = AuditLogService(store, self._clock)
        self._notifier = notifier or NullNotifier()
        self._on_completed = on_completed
        self._workflow = COINS_PURCHASE_WORKFLOW

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, order_id: UUID) -> WorkflowSubject:
        return subject_from_record(self._store.get(ORDER_TABLE, order_id))

    def order_lines(self, order_id: UUID) -> list[OrderLine]:
        rows = self._store.query(
            ORDER_LINE_TABLE, {"purchase_order_id": order_id}, order_by=("line_number",)
        )
        return [OrderLine(brand_id=r["brand_id"], amount=r["amount"]) for r in rows]

    def receipt_lines(self, order_id: UUID) -> list[ReceiptLine]:
        rows = self._store.query(
            RECEIVING_LINE_TABLE, {"purchase_order_id": order_id}, order_by=("brand_id",)
        )
        return [_receipt_line(r) for r in rows]

    def delivery_targets(self, order_id: UUID) -> dict[str, Decimal]:
        targets: dict[str, Decimal] = {}
        for header in self._store.query(HEADER_TABLE, {"purchase_order_id": order_id}):
            brand = header["brand_id"]
            targets[brand] = targets.get(brand, Decimal("0")) + header["control_amount"]
        return targets

    def delivery_summary(self, order_id: UUID) -> DeliverySummary:
        lines = self.receipt_lines(order_id)
        targets = self.delivery_targets(order_id)
        return DeliverySummary(
            order_id=order_id,
            targets=targets,
            confirmed=confirmed_totals(lines),
            remaining=remaining_by_group(lines, targets),
            confirmed_total=confirmed_total(lines),
        )

    def responsible_for(self, phase: str) -> frozenset[str]:
        rows = self._store.query(ASSIGNMENT_TABLE, {"phase": phase})
        return frozenset(r["user_id"] for r in rows)

    def history(self, order_id: UUID) -> list[AuditEntry]:
        return self._audit.history(order_id)

    def find_delayed(
        self,
        as_of: datetime | None = None,
        threshold: timedelta = DEFAULT_DELAY_THRESHOLD,
    ) -> list[DelayedOrder]:
        """Orders sitting in a tracked phase for longer than ``threshold``.

        Responsible users come from the phase assignments, falling back to
        the order's creator.  Sorted by longest delay first.
        """
        as_of = as_of or self._clock.now()
        rows = self._store.query(
            ORDER_TABLE,
            {"current_phase": list(DELAY_TRACKED_PHASES), "stage_kind": _ACTIVE_STAGES},
        )
        delayed = []
        for row in rows:
            since = row["phase_updated_at"] or row["created_at"]
            elapsed = as_of - since
            if elapsed <= threshold:
                continue
            responsible = self.responsible_for(row["current_phase"]) or frozenset(
                {row["created_by"]}
            )
            delayed.append(
                DelayedOrder(
                    order_id=row["id"],
                    order_number=row["order_number"],
                    phase=row["current_phase"],
                    phase_updated_at=since,
                    days_delayed=int(elapsed.total_seconds() // 86400),
                    responsible=responsible,
                )
            )
        delayed.sort(key=lambda d: (-d.days_delayed, d.phase_updated_at))
        logger.info(
            "coins_purchase_delay_sweep",
            extra={"as_of": as_of, "threshold_hours": threshold.total_seconds() / 3600,
                   "delayed_count": len(delayed)},
        )
        return delayed

    def notify_delayed(
        self,
        as_of: datetime | None = None,
        threshold: timedelta = DEFAULT_DELAY_THRESHOLD,
    ) -> list[DelayedOrder]:
        """Run the delay sweep and send ``phase_delayed`` to each order's owners."""
        delayed = self.find_delayed(as_of, threshold)
        for item in delayed:
            self._notifier.notify(
                PHASE_DELAYED,
                self.get(item.order_id),
                item.responsible,
                {"phase": item.phase, "days_delayed": item.days_delayed},
            )
        return delayed

    # =========================================================================
    # Creation
    # =========================================================================

    def create_order(
        self,
        created_by: Actor,
        lines: Iterable[OrderLine],
        order_number: str | None = None,
        supplier_id: str | None = None,
        notes: str = "",
    ) -> WorkflowResult:
        """Insert an order in the first phase with its per-brand lines."""
        order_id = uuid4()
        lines = tuple(lines)
        for line in lines:
            if line.amount <= 0:
                exc = InvalidAmountError(f"amount[{line.brand_id}]", line.amount, "must be positive")
                logger.info("order_create_refused", extra={"code": exc.code, "reason": str(exc)})
                return WorkflowResult.failed(exc)

        with LogContext.bind(
            subject_id=str(order_id), actor_id=created_by.actor_id, workflow=SUBJECT_TYPE,
        ):
            now = self._clock.now()
            first = self._workflow.first
            self._store.insert(
                ORDER_TABLE,
                {
                    "id": order_id,
                    "order_number": order_number,
                    "supplier_id": supplier_id,
                    "notes": notes,
                    "created_by": created_by.actor_id,
                    "created_at": now,
                    "current_phase": first.name,
                    "phase_updated_at": now,
                    "stage_kind": first.stage.value,
                    "delivery_status": DeliveryStatus.DRAFT.value,
                    "version": 1,
                },
            )
            for number, line in enumerate(lines, start=1):
                self._store.insert(
                    ORDER_LINE_TABLE,
                    {
                        "purchase_order_id": order_id,
                        "line_number": number,
                        "brand_id": line.brand_id,
                        "amount": line.amount,
                    },
                )
            self._audit.record(
                order_id,
                SUBJECT_TYPE,
                HistoryNote(ActivityType.OPENED, None, first.name, note=notes),
                created_by,
            )
            subject = self.get(order_id)
            logger.info(
                "order_created",
                extra={
                    "order_number": order_number,
                    "line_count": len(lines),
                    "total_amount": sum((l.amount for l in lines), Decimal("0")),
                },
            )
            self._notifier.notify(
                PHASE_ENTERED, subject, self.responsible_for(first.name), {"phase": first.name}
            )
            return WorkflowResult.ok(WorkflowOutcome.OPENED, subject)

    # =========================================================================
    # Phase transitions
    # =========================================================================

    def advance_phase(
        self,
        order_id: UUID,
        actor: Actor,
        note: str = "",
        expected_version: int | None = None,
    ) -> WorkflowResult:
        """Move the order to its next phase.

        Entering ``coins_entry`` creates the receiving artifacts; leaving it
        requires full delivery.
        """
        with self._bound(order_id, actor):
            try:
                subject = self._load(order_id, expected_version)
                if self._workflow.phase(subject.current_phase).artifacts:
                    subject = replace(subject, delivery_status=self._derive_status(order_id))
                now = self._clock.now()
                step = advance_phase(
                    subject, self._workflow, actor.actor_id, now, GUARD_CHECKS, note
                )
                children = None
                if step.entered_phase.artifacts:
                    def children(updated: WorkflowSubject) -> WorkflowSubject:
                        self._create_receiving(order_id, step.entered_phase.artifacts, actor, now)
                        return replace(updated, delivery_status=self._derive_status(order_id))

                saved = self._save(subject, step.subject, step, actor, children=children)
            except EXPECTED_ERRORS as exc:
                return self._refused("order_advance_refused", order_id, exc)

            logger.info(
                "order_phase_advanced",
                extra={"from_phase": step.left_phase.name, "to_phase": step.entered_phase.name},
            )
            self._notifier.notify(
                PHASE_ENTERED, saved, self.responsible_for(step.entered_phase.name),
                {"phase": step.entered_phase.name},
            )
            if step.completed:
                self._finish(saved)
                return WorkflowResult.ok(WorkflowOutcome.COMPLETED, saved)
            return WorkflowResult.ok(WorkflowOutcome.ADVANCED, saved)

    def rollback(
        self,
        order_id: UUID,
        actor: Actor,
        note: str = "",
        expected_version: int | None = None,
    ) -> WorkflowResult:
        """Return the order to the preceding phase, cascading its artifacts."""
        with self._bound(order_id, actor):
            try:
                subject = self._load(order_id, expected_version)
                step = rollback_phase(
                    subject, self._workflow, actor.actor_id, self._clock.now(), note
                )
                deleted: dict[str, int] = {}
                children = None
                if step.cascade:
                    def children(updated: WorkflowSubject) -> WorkflowSubject:
                        for ref in step.cascade:
                            deleted[ref.table] = self._store.delete(
                                ref.table, {ref.subject_key: order_id}
                            )
                        return replace(updated, delivery_status=self._derive_status(order_id))

                saved = self._save(subject, step.subject, step, actor, children=children)
            except EXPECTED_ERRORS as exc:
                return self._refused("order_rollback_refused", order_id, exc)

            logger.info(
                "order_rolled_back",
                extra={
                    "from_phase": step.left_phase.name,
                    "to_phase": step.entered_phase.name,
                    "deleted": deleted,
                },
            )
            return WorkflowResult.ok(WorkflowOutcome.ROLLED_BACK, saved)

    def close(
        self,
        order_id: UUID,
        actor: Actor,
        required_minimum: Decimal,
        expected_version: int | None = None,
    ) -> WorkflowResult:
        """Close once confirmed coins reach ``required_minimum``. Terminal."""
        with self._bound(order_id, actor):
            try:
                subject = self._load(order_id, expected_version)
                total = confirmed_total(self.receipt_lines(order_id))
                step = close_subject(
                    subject, total, required_minimum, actor.actor_id, self._clock.now()
                )
                saved = self._save(subject, step.subject, step, actor)
            except EXPECTED_ERRORS as exc:
                return self._refused("order_close_refused", order_id, exc)

            logger.info(
                "order_closed",
                extra={"confirmed_total": total, "required_minimum": required_minimum},
            )
            return WorkflowResult.ok(WorkflowOutcome.CLOSED, saved)

    # =========================================================================
    # Receiving lines
    # =========================================================================

    def confirm_line(
        self,
        order_id: UUID,
        line_id: UUID,
        actor: Actor,
        delivered_amount: Decimal | None = None,
    ) -> WorkflowResult:
        """Confirm a receiving line, optionally recording its final amount."""
        def mutate(line: ReceiptLine) -> tuple[ReceiptLine, dict, dict, HistoryNote]:
            confirmed = confirm_line(line, actor.actor_id, self._clock.now(), delivered_amount)
            patch = {
                "delivered_amount": confirmed.delivered_amount,
                "is_confirmed": True,
                "confirmed_by": confirmed.confirmed_by,
                "confirmed_at": confirmed.confirmed_at,
            }
            note = HistoryNote(
                ActivityType.LINE_CONFIRMED,
                note=f"{line.group_key}: {confirmed.delivered_amount}",
            )
            return confirmed, patch, {"is_confirmed": False}, note

        return self._mutate_line("order_line_confirmed", order_id, line_id, actor, mutate)

    def unconfirm_line(self, order_id: UUID, line_id: UUID, actor: Actor) -> WorkflowResult:
        """Unfreeze a confirmed line so its amount can be corrected."""
        def mutate(line: ReceiptLine) -> tuple[ReceiptLine, dict, dict, HistoryNote]:
            reopened = unconfirm_line(line)
            patch = {"is_confirmed": False, "confirmed_by": None, "confirmed_at": None}
            note = HistoryNote(ActivityType.LINE_UNCONFIRMED, note=line.group_key)
            return reopened, patch, {"is_confirmed": True}, note

        return self._mutate_line("order_line_unconfirmed", order_id, line_id, actor, mutate)

    def update_delivered_amount(
        self,
        order_id: UUID,
        line_id: UUID,
        amount: Decimal,
        actor: Actor,
    ) -> WorkflowResult:
        """Edit the delivered amount of an unconfirmed line."""
        def mutate(line: ReceiptLine) -> tuple[ReceiptLine, dict, dict, HistoryNote]:
            edited = set_delivered_amount(line, amount)
            note = HistoryNote(
                ActivityType.LINE_AMOUNT_UPDATED,
                note=f"{line.group_key}: {line.delivered_amount} -> {amount}",
            )
            return edited, {"delivered_amount": amount}, {"is_confirmed": False}, note

        return self._mutate_line("order_line_amount_updated", order_id, line_id, actor, mutate)

    def add_attachment(
        self,
        order_id: UUID,
        header_id: UUID,
        file_name: str,
        file_url: str,
        actor: Actor,
    ) -> WorkflowResult:
        """Link an uploaded file to a receiving header of this order."""
        with self._bound(order_id, actor):
            try:
                subject = self._load(order_id, None)
                self._ensure_lines_editable(subject)
                headers = self._store.query(
                    HEADER_TABLE, {"id": header_id, "purchase_order_id": order_id}
                )
                if not headers:
                    raise RecordNotFoundError(HEADER_TABLE, str(header_id))

                def children(updated: WorkflowSubject) -> WorkflowSubject:
                    self._store.insert(
                        ATTACHMENT_TABLE,
                        {
                            "header_id": header_id,
                            "purchase_order_id": order_id,
                            "file_name": file_name,
                            "file_url": file_url,
                            "uploaded_by": actor.actor_id,
                            "uploaded_at": self._clock.now(),
                        },
                    )
                    return updated

                phase = subject.current_phase
                note = HistoryNote(ActivityType.ATTACHMENT_ADDED, phase, phase, note=file_name)
                saved = self._save(subject, subject, None, actor, (note,), children=children)
            except EXPECTED_ERRORS as exc:
                return self._refused("order_attachment_refused", order_id, exc)

            logger.info("order_attachment_added", extra={"file_name": file_name})
            return WorkflowResult.ok(WorkflowOutcome.ATTACHMENT_ADDED, saved)

    # =========================================================================
    # Internals
    # =========================================================================

    def _bound(self, order_id: UUID, actor: Actor):
        return LogContext.bind(
            subject_id=str(order_id), actor_id=actor.actor_id, workflow=SUBJECT_TYPE,
        )

    def _load(self, order_id: UUID, expected_version: int | None) -> WorkflowSubject:
        subject = self.get(order_id)
        if expected_version is not None and subject.version != expected_version:
            raise ConflictOrNotFoundError(
                ORDER_TABLE, str(order_id), {"version": expected_version}
            )
        return subject

    def _save(
        self,
        before: WorkflowSubject,
        updated: WorkflowSubject,
        step: Step | None,
        actor: Actor,
        notes: tuple[HistoryNote, ...] = (),
        children: Callable[[WorkflowSubject], WorkflowSubject] | None = None,
    ) -> WorkflowSubject:
        """Versioned order write, then the history notes.

        ``children`` writes dependent rows (receiving lines, attachments,
        cascade deletes) only after the order version has been claimed, so
        a writer that lost the race leaves no rows behind.
        """
        if children is None:
            saved = save_subject(
                self._store, ORDER_TABLE, before.version, updated, phase_patch(updated)
            )
        else:
            claimed = claim_subject(self._store, ORDER_TABLE, before.subject_id, before.version)
            updated = children(updated)
            saved = write_claimed(
                self._store, ORDER_TABLE, claimed, updated, phase_patch(updated)
            )
        all_notes = (step.notes if step is not None else ()) + notes
        self._audit.record_all(before.subject_id, SUBJECT_TYPE, all_notes, actor)
        return saved

    def _derive_status(self, order_id: UUID) -> DeliveryStatus:
        return compute_status(self.receipt_lines(order_id), self.delivery_targets(order_id))

    def _create_receiving(
        self,
        order_id: UUID,
        artifacts: tuple[ArtifactRef, ...],
        actor: Actor,
        now: datetime,
    ) -> None:
        """One header and one receiving line per brand on the order.

        Leftovers from an interrupted earlier attempt are removed first.
        """
        for ref in artifacts:
            self._store.delete(ref.table, {ref.subject_key: order_id})

        per_brand: dict[str, Decimal] = {}
        for line in self.order_lines(order_id):
            per_brand[line.brand_id] = per_brand.get(line.brand_id, Decimal("0")) + line.amount

        for brand_id, amount in per_brand.items():
            header_id = self._store.insert(
                HEADER_TABLE,
                {
                    "purchase_order_id": order_id,
                    "brand_id": brand_id,
                    "control_amount": amount,
                    "created_by": actor.actor_id,
                    "created_at": now,
                },
            )
            self._store.insert(
                RECEIVING_LINE_TABLE,
                {
                    "header_id": header_id,
                    "purchase_order_id": order_id,
                    "brand_id": brand_id,
                    "target_amount": amount,
                    "delivered_amount": Decimal("0"),
                    "is_confirmed": False,
                },
            )
        logger.info("receiving_artifacts_created", extra={"brands": sorted(per_brand)})

    @staticmethod
    def _ensure_lines_editable(subject: WorkflowSubject) -> None:
        if subject.is_terminal:
            raise AlreadyClosedError(str(subject.subject_id), subject.stage_kind.value)

    def _mutate_line(
        self,
        event: str,
        order_id: UUID,
        line_id: UUID,
        actor: Actor,
        mutate: Callable[[ReceiptLine], tuple[ReceiptLine, dict, dict, HistoryNote]],
    ) -> WorkflowResult:
        with self._bound(order_id, actor):
            try:
                subject = self._load(order_id, None)
                self._ensure_lines_editable(subject)
                rows = self._store.query(
                    RECEIVING_LINE_TABLE, {"id": line_id, "purchase_order_id": order_id}
                )
                if not rows:
                    raise LineNotFoundError(str(line_id), str(order_id))
                line = _receipt_line(rows[0])
                _, patch, expected, note = mutate(line)

                def children(updated: WorkflowSubject) -> WorkflowSubject:
                    self._store.update(RECEIVING_LINE_TABLE, line_id, patch, expected=expected)
                    return replace(updated, delivery_status=self._derive_status(order_id))

                phase = subject.current_phase
                saved = self._save(
                    subject,
                    subject,
                    None,
                    actor,
                    (replace(note, from_phase=phase, to_phase=phase),),
                    children=children,
                )
                status = saved.delivery_status
            except EXPECTED_ERRORS as exc:
                return self._refused(f"{event}_refused", order_id, exc)

            logger.info(event, extra={"line_id": str(line_id), "delivery_status": status.value})
            return WorkflowResult.ok(WorkflowOutcome.LINE_UPDATED, saved)

    def _finish(self, saved: WorkflowSubject) -> None:
        logger.info(
            "order_completed",
            extra={"completed_by": saved.completed_by, "completed_at": saved.completed_at},
        )
        self._notifier.notify(
            ORDER_COMPLETED, saved,
            frozenset({self._store.get(ORDER_TABLE, saved.subject_id)["created_by"]}), {},
        )
        if self._on_completed is not None:
            try:
                self._on_completed(saved)
            except Exception:
                logger.error("order_completion_hook_failed", exc_info=True)
                raise

    def _refused(
        self, event: str, order_id: UUID, exc: WorkflowKernelError
    ) -> WorkflowResult:
        logger.info(event, extra={"code": exc.code, "reason": str(exc)})
        try:
            current = self.get(order_id)
        except RecordNotFoundError:
            current = None
        return WorkflowResult.failed(exc, current)
