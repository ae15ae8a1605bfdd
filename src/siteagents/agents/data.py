"""Domain data access for agents.

Agents read and annotate project data (suppliers, compliance records,
incidents, schedules, ...) through a ``DomainStore``.  Rows are plain
dicts keyed the way the platform stores them (``organizationId``,
``nextAuditDate``, ...).

Collections in use::

    suppliers            compliance_records   safety_incidents
    field_data           projects             team_members
    documents            messages             schedules
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Iterable, Mapping
from typing import Any, Protocol, runtime_checkable

from siteagents.core.errors import NotFoundError
from siteagents.execution.models import utcnow

COLLECTIONS = (
    "suppliers",
    "compliance_records",
    "safety_incidents",
    "field_data",
    "projects",
    "team_members",
    "documents",
    "messages",
    "schedules",
)


@runtime_checkable
class DomainStore(Protocol):
    """Async collection-of-dicts interface used by agents."""

    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        ...

    async def find(self, collection: str, **filters: Any) -> list[dict[str, Any]]:
        """Rows whose fields equal every non-None filter value."""
        ...

    async def create(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        ...

    async def update(self, collection: str, record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Merge *patch* into a row and return it.

        Raises:
            NotFoundError: No row with *record_id*.
        """
        ...


class InMemoryDomainStore:
    """Dict-backed ``DomainStore`` for tests, demos, and the CLI.

    Args:
        seed: ``{collection: [row, ...]}``; rows without an ``id`` get one.
    """

    def __init__(self, seed: Mapping[str, Iterable[Mapping[str, Any]]] | None = None):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        for collection, rows in (seed or {}).items():
            for row in rows:
                self._insert(collection, dict(row))

    def _insert(self, collection: str, row: dict[str, Any]) -> dict[str, Any]:
        row.setdefault("id", str(uuid.uuid4()))
        self._collections.setdefault(collection, {})[row["id"]] = copy.deepcopy(row)
        return row

    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        row = self._collections.get(collection, {}).get(record_id)
        return copy.deepcopy(row) if row is not None else None

    async def find(self, collection: str, **filters: Any) -> list[dict[str, Any]]:
        active = {k: v for k, v in filters.items() if v is not None}
        return [
            copy.deepcopy(row)
            for row in self._collections.get(collection, {}).values()
            if all(row.get(k) == v for k, v in active.items())
        ]

    async def create(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        row = dict(data)
        row.setdefault("createdAt", utcnow())
        return copy.deepcopy(self._insert(collection, row))

    async def update(self, collection: str, record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        rows = self._collections.get(collection, {})
        if record_id not in rows:
            raise NotFoundError(
                f"{collection} record not found: {record_id}",
                collection=collection,
                record_id=record_id,
            )
        rows[record_id].update(copy.deepcopy(patch))
        return copy.deepcopy(rows[record_id])

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))
