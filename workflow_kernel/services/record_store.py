"""
SqlAlchemyRecordStore -- Record store adapter over a SQLAlchemy session.

Responsibility:
    Implements the ``RecordStore`` port for every mapped table.  Tables are
    addressed by ``__tablename__``; records cross the boundary as plain
    dicts so the engines never see ORM objects.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes, never commits: the
    caller's ``session_scope()`` owns the transaction boundary.

Invariants enforced:
    - Compare-and-set: ``update(..., expected=...)`` is a single
      ``UPDATE ... WHERE id = :id AND <expected>``; zero affected rows
      raises ``ConflictOrNotFoundError`` and nothing is written.
    - Append-only tables (``__append_only__ = True``) refuse update and
      delete before any SQL is issued.
    - Reads always refresh from the database (``populate_existing``), so
      rows changed by statement-level writes are never served stale.

Failure modes:
    - RecordNotFoundError from get() on a missing id.
    - ConflictOrNotFoundError from a conditional update that matched no row.
    - UnknownTableError for an unregistered table name.
    - ImmutabilityViolationError on update/delete of an append-only table.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import delete as sa_delete
from sqlalchemy import inspect, select
from sqlalchemy import update as sa_update
from sqlalchemy.orm import Session

from workflow_kernel.db.base import Base
from workflow_kernel.domain.store import Record
from workflow_kernel.exceptions import (
    ConflictOrNotFoundError,
    ImmutabilityViolationError,
    RecordNotFoundError,
    UnknownTableError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models import import_all_models

logger = get_logger("services.record_store")

_MULTI_VALUE_TYPES = (list, tuple, set, frozenset)


def _table_registry() -> dict[str, type[Base]]:
    import_all_models()
    return {
        mapper.class_.__tablename__: mapper.class_
        for mapper in Base.registry.mappers
    }


class SqlAlchemyRecordStore:
    """RecordStore backed by the ORM models registered on ``Base``."""

    def __init__(self, session: Session):
        self._session = session
        self._models = _table_registry()

    @property
    def session(self) -> Session:
        return self._session

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _model(self, table: str) -> type[Base]:
        model = self._models.get(table)
        if model is None:
            raise UnknownTableError(table)
        return model

    @staticmethod
    def _criteria(model: type[Base], conditions: Mapping[str, Any] | None) -> list:
        columns = model.__table__.c
        clauses = []
        for key, value in (conditions or {}).items():
            if key not in columns:
                raise ValueError(f"{model.__tablename__} has no column '{key}'")
            column = getattr(model, key)
            if isinstance(value, _MULTI_VALUE_TYPES):
                clauses.append(column.in_(list(value)))
            elif value is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == value)
        return clauses

    @staticmethod
    def _to_record(obj: Base) -> Record:
        return {
            attr.key: getattr(obj, attr.key)
            for attr in inspect(type(obj)).column_attrs
        }

    @staticmethod
    def _refuse_if_append_only(model: type[Base], record_id: str, action: str) -> None:
        if getattr(model, "__append_only__", False):
            raise ImmutabilityViolationError(
                entity_type=model.__name__,
                entity_id=record_id,
                reason=f"{model.__tablename__} is append-only ({action} refused)",
            )

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------

    def get(self, table: str, record_id: UUID) -> Record:
        model = self._model(table)
        stmt = (
            select(model)
            .where(model.id == record_id)
            .execution_options(populate_existing=True)
        )
        obj = self._session.execute(stmt).scalar_one_or_none()
        if obj is None:
            raise RecordNotFoundError(table, str(record_id))
        return self._to_record(obj)

    def query(
        self,
        table: str,
        filter: Mapping[str, Any] | None = None,
        order_by: Sequence[str] = (),
    ) -> list[Record]:
        model = self._model(table)
        stmt = (
            select(model)
            .where(*self._criteria(model, filter))
            .order_by(*(getattr(model, name) for name in order_by))
            .execution_options(populate_existing=True)
        )
        return [self._to_record(obj) for obj in self._session.execute(stmt).scalars()]

    def insert(self, table: str, payload: Mapping[str, Any]) -> UUID:
        model = self._model(table)
        obj = model(**payload)
        self._session.add(obj)
        self._session.flush()
        logger.debug("record_inserted", extra={"table": table, "record_id": str(obj.id)})
        return obj.id

    def update(
        self,
        table: str,
        record_id: UUID,
        patch: Mapping[str, Any],
        expected: Mapping[str, Any] | None = None,
    ) -> None:
        model = self._model(table)
        self._refuse_if_append_only(model, str(record_id), "UPDATE")
        if not patch:
            raise ValueError("update() requires a non-empty patch")

        stmt = (
            sa_update(model)
            .where(model.id == record_id, *self._criteria(model, expected))
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        if result.rowcount == 0:
            logger.info(
                "conditional_update_missed",
                extra={
                    "table": table,
                    "record_id": str(record_id),
                    "expected": dict(expected or {}),
                },
            )
            raise ConflictOrNotFoundError(table, str(record_id), dict(expected or {}))
        logger.debug(
            "record_updated",
            extra={"table": table, "record_id": str(record_id), "fields": sorted(patch)},
        )

    def delete(self, table: str, filter: Mapping[str, Any]) -> int:
        model = self._model(table)
        self._refuse_if_append_only(model, str(dict(filter)), "DELETE")
        if not filter:
            raise ValueError("delete() requires a filter")

        stmt = (
            sa_delete(model)
            .where(*self._criteria(model, filter))
            .execution_options(synchronize_session=False)
        )
        deleted = self._session.execute(stmt).rowcount
        logger.debug("records_deleted", extra={"table": table, "count": deleted})
        return deleted
