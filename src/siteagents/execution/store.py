"""Audit store contract and the in-memory implementation.

The dispatcher only ever talks to an ``AuditStore``: ``create`` a RUNNING
record before the agent runs, ``update`` it once with the finalization
patch, and ``query`` history.  It never reasons about transactions or
schema; backing engines only have to guarantee that a ``create`` is
visible before any ``update`` on the same id.

Architecture:
    ::

        AuditStore (Protocol)
          ├── create(record) -> id
          ├── update(id, patch)          ─ enforces RUNNING → terminal
          ├── get(id) -> record | None
          ├── query(filters) -> records  ─ created_at DESC, limited
          ├── add_review(review)
          └── list_reviews(execution_id)

        InMemoryAuditStore   ─ dict + asyncio.Lock (tests, dev)
        SqliteAuditStore     ─ ledger.py (durable)

Tags:
    audit, execution-ledger, protocol, siteagents
"""

from __future__ import annotations

import asyncio
import copy
from typing import Protocol, runtime_checkable

from siteagents.core.errors import RecordNotFoundError, StoreError
from siteagents.execution.models import ExecutionRecord, ExecutionReview, HistoryFilters

DEFAULT_HISTORY_LIMIT = 50


@runtime_checkable
class AuditStore(Protocol):
    """Narrow persistence interface used by the dispatcher."""

    async def create(self, record: ExecutionRecord) -> str:
        """Persist a new record and return its id."""
        ...

    async def update(self, record_id: str, patch: dict) -> None:
        """Apply a finalization patch.

        Raises:
            RecordNotFoundError: No record with *record_id*.
            InvalidTransitionError: The record is already terminal.
        """
        ...

    async def get(self, record_id: str) -> ExecutionRecord | None:
        ...

    async def query(self, filters: HistoryFilters) -> list[ExecutionRecord]:
        """Records matching *filters*, newest first, at most ``filters.limit``."""
        ...

    async def add_review(self, review: ExecutionReview) -> str:
        ...

    async def list_reviews(self, execution_id: str) -> list[ExecutionReview]:
        ...


class InMemoryAuditStore:
    """Dict-backed audit store.

    Records are copied on the way in and out so callers can never mutate
    stored history by holding on to a returned object.
    """

    def __init__(self) -> None:
        self._records: dict[str, ExecutionRecord] = {}
        self._reviews: dict[str, list[ExecutionReview]] = {}
        self._lock = asyncio.Lock()

    async def create(self, record: ExecutionRecord) -> str:
        async with self._lock:
            if record.id in self._records:
                raise StoreError(f"Duplicate execution id: {record.id}")
            self._records[record.id] = copy.deepcopy(record)
        return record.id

    async def update(self, record_id: str, patch: dict) -> None:
        async with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            updated = copy.deepcopy(record)
            updated.apply(patch)
            self._records[record_id] = updated

    async def get(self, record_id: str) -> ExecutionRecord | None:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def query(self, filters: HistoryFilters) -> list[ExecutionRecord]:
        limit = filters.limit if filters.limit is not None else DEFAULT_HISTORY_LIMIT
        matching = [r for r in self._records.values() if filters.matches(r)]
        matching.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in matching[:limit]]

    async def add_review(self, review: ExecutionReview) -> str:
        async with self._lock:
            if review.execution_id not in self._records:
                raise RecordNotFoundError(review.execution_id)
            self._reviews.setdefault(review.execution_id, []).append(copy.deepcopy(review))
        return review.id

    async def list_reviews(self, execution_id: str) -> list[ExecutionReview]:
        reviews = self._reviews.get(execution_id, [])
        return sorted((copy.deepcopy(r) for r in reviews), key=lambda r: r.reviewed_at)

    def __len__(self) -> int:
        return len(self._records)
