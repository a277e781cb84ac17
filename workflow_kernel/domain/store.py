"""
Record store port (``workflow_kernel.domain.store``).

The engines and module services reach storage only through this
protocol.  Records are plain dicts keyed by column name; ``filter``
mappings match on equality, and a list, tuple or set value matches any
of its members.

Contract for ``update`` with ``expected``: the write applies only if
every expected column still holds the given value, otherwise
``ConflictOrNotFoundError`` is raised and nothing changes.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol
from uuid import UUID


Record = dict[str, Any]


class RecordStore(Protocol):
    """Storage port. Implementations flush but never commit."""

    def get(self, table: str, record_id: UUID) -> Record:
        """Return one record or raise ``RecordNotFoundError``."""
        ...

    def query(
        self,
        table: str,
        filter: Mapping[str, Any] | None = None,
        order_by: Sequence[str] = (),
    ) -> list[Record]:
        ...

    def insert(self, table: str, payload: Mapping[str, Any]) -> UUID:
        ...

    def update(
        self,
        table: str,
        record_id: UUID,
        patch: Mapping[str, Any],
        expected: Mapping[str, Any] | None = None,
    ) -> None:
        ...

    def delete(self, table: str, filter: Mapping[str, Any]) -> int:
        """Delete matching records and return how many were removed."""
        ...
