"""SQLite execution ledger - durable audit store for agent executions.

``SqliteAuditStore`` satisfies the ``AuditStore`` protocol on top of a
plain ``sqlite3`` connection.  The finalization write is a single
conditional ``UPDATE ... WHERE status = 'RUNNING'`` so a record can be
closed exactly once even if two writers race.

Architecture:

    .. code-block:: text

        ┌──────────────────────────────────────────────────────────┐
        │  agent_executions              agent_execution_reviews   │
        │  ────────────────              ───────────────────────   │
        │  id PK                         id PK                     │
        │  category, handler_name        execution_id FK           │
        │  status                        reviewer                  │
        │  organization_id, project_id   approved                  │
        │  correlation (json)            notes                     │
        │  input / output (json)         reviewed_at               │
        │  confidence, tokens_used                                 │
        │  error, error_details (json)                             │
        │  created_at, started_at,                                 │
        │  completed_at, execution_time_ms                         │
        └──────────────────────────────────────────────────────────┘

Example:
    >>> import sqlite3
    >>> store = SqliteAuditStore(sqlite3.connect(":memory:", check_same_thread=False))
    >>> store.ensure_schema()
    >>> record_id = await store.create(ExecutionRecord.start(AgentCategory.SAFETY, {}, {"action": "predict_risks"}))
"""

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from siteagents.core.errors import RecordNotFoundError, StoreError
from siteagents.execution.models import (
    MUTABLE_FIELDS,
    ExecutionRecord,
    ExecutionReview,
    ExecutionStatus,
    HistoryFilters,
    InvalidTransitionError,
    validate_execution_transition,
)
from siteagents.execution.store import DEFAULT_HISTORY_LIMIT

SCHEMA = """
CREATE TABLE IF NOT EXISTS agent_executions (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    handler_name TEXT NOT NULL,
    status TEXT NOT NULL,
    organization_id TEXT,
    project_id TEXT,
    correlation TEXT DEFAULT '{}',
    requested_by TEXT,
    input TEXT DEFAULT '{}',
    output TEXT,
    confidence REAL,
    error TEXT,
    error_details TEXT,
    tokens_used INTEGER,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    execution_time_ms INTEGER
);
CREATE INDEX IF NOT EXISTS idx_agent_executions_category ON agent_executions (category, created_at);
CREATE INDEX IF NOT EXISTS idx_agent_executions_org ON agent_executions (organization_id, created_at);
CREATE TABLE IF NOT EXISTS agent_execution_reviews (
    id TEXT PRIMARY KEY,
    execution_id TEXT NOT NULL REFERENCES agent_executions (id),
    reviewer TEXT NOT NULL,
    approved INTEGER NOT NULL,
    notes TEXT,
    reviewed_at TEXT NOT NULL
);
"""

_COLUMNS = """
    id, category, handler_name, status, organization_id, project_id,
    correlation, requested_by, input, output, confidence, error,
    error_details, tokens_used, created_at, started_at, completed_at,
    execution_time_ms
"""

# Patch fields stored as JSON text.
_JSON_FIELDS = frozenset({"output", "error_details"})


def _dumps(value: Any) -> str | None:
    return json.dumps(value, default=str) if value is not None else None


def _loads(value: str | None) -> Any:
    return json.loads(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteAuditStore:
    """Manages the execution ledger (executions + reviews).

    Works with any ``sqlite3.Connection``; use :meth:`open` to get one on a
    file path with the schema in place.  Statements run in a worker thread
    via ``asyncio.to_thread`` so disk I/O never blocks the event loop; a
    lock serializes access to the shared connection.
    """

    def __init__(self, conn: sqlite3.Connection):
        """Initialize with a database connection.

        Args:
            conn: sqlite3 connection opened with ``check_same_thread=False``
                (``:memory:`` is fine for tests)
        """
        self._conn = conn
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: str | Path) -> "SqliteAuditStore":
        """Open (creating if needed) a ledger file and ensure the schema."""
        path = Path(path)
        if str(path) != ":memory:":
            path.parent.mkdir(parents=True, exist_ok=True)
        store = cls(sqlite3.connect(str(path), check_same_thread=False))
        store.ensure_schema()
        return store

    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self._lock:
            self._conn.executescript(SCHEMA)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # =========================================================================
    # EXECUTION CRUD
    # =========================================================================

    async def create(self, record: ExecutionRecord) -> str:
        """Insert a new execution record.

        Returns:
            The record id
        """
        return await asyncio.to_thread(self._insert_record, record)

    async def update(self, record_id: str, patch: dict) -> None:
        """Close a RUNNING record with its finalization patch.

        Args:
            record_id: Execution UUID
            patch: Field → value mapping; keys must be in ``MUTABLE_FIELDS``
        """
        unknown = set(patch) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update immutable fields: {sorted(unknown)}")
        await asyncio.to_thread(self._update_record, record_id, patch)

    async def get(self, record_id: str) -> ExecutionRecord | None:
        """Get execution by ID, or None if not found."""
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_COLUMNS} FROM agent_executions WHERE id = ?",
            (record_id,),
        )
        return self._row_to_record(row) if row else None

    async def query(self, filters: HistoryFilters) -> list[ExecutionRecord]:
        """List executions with optional filters, newest first."""
        query = f"SELECT {_COLUMNS} FROM agent_executions WHERE 1=1"
        params: list[Any] = []

        if filters.category is not None:
            query += " AND category = ?"
            params.append(filters.category_value)
        if filters.organization_id is not None:
            query += " AND organization_id = ?"
            params.append(filters.organization_id)
        if filters.project_id is not None:
            query += " AND project_id = ?"
            params.append(filters.project_id)
        if filters.status is not None:
            query += " AND status = ?"
            params.append(filters.status_value)

        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(filters.limit if filters.limit is not None else DEFAULT_HISTORY_LIMIT)

        rows = await asyncio.to_thread(self._fetchall, query, tuple(params))
        return [self._row_to_record(row) for row in rows]

    # =========================================================================
    # REVIEWS
    # =========================================================================

    async def add_review(self, review: ExecutionReview) -> str:
        """Append a review row. Reviews never modify the execution row."""
        await asyncio.to_thread(self._insert_review, review)
        return review.id

    async def list_reviews(self, execution_id: str) -> list[ExecutionReview]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT id, execution_id, reviewer, approved, notes, reviewed_at
            FROM agent_execution_reviews
            WHERE execution_id = ?
            ORDER BY reviewed_at ASC
            """,
            (execution_id,),
        )
        return [
            ExecutionReview(
                id=row[0],
                execution_id=row[1],
                reviewer=row[2],
                approved=bool(row[3]),
                notes=row[4],
                reviewed_at=_dt(row[5]),
            )
            for row in rows
        ]

    # =========================================================================
    # BLOCKING HELPERS (worker thread)
    # =========================================================================

    def _insert_record(self, record: ExecutionRecord) -> str:
        with self._lock:
            try:
                self._conn.execute(
                    f"INSERT INTO agent_executions ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.id,
                        record.category,
                        record.handler_name,
                        record.status.value,
                        record.organization_id,
                        record.project_id,
                        json.dumps(record.correlation, default=str),
                        record.requested_by,
                        json.dumps(record.input, default=str),
                        _dumps(record.output),
                        record.confidence,
                        record.error,
                        _dumps(record.error_details),
                        record.tokens_used,
                        _iso(record.created_at),
                        _iso(record.started_at),
                        _iso(record.completed_at),
                        record.execution_time_ms,
                    ),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as e:
                self._conn.rollback()
                raise StoreError(f"Duplicate execution id: {record.id}", cause=e) from e
        return record.id

    def _update_record(self, record_id: str, patch: dict) -> None:
        with self._lock:
            current = self._current_status(record_id)
            if "status" in patch:
                validate_execution_transition(current, ExecutionStatus(patch["status"]))
            elif current.is_terminal:
                raise InvalidTransitionError(current.value, current.value)

            assignments: list[str] = []
            params: list[Any] = []
            for key, value in patch.items():
                assignments.append(f"{key} = ?")
                if key == "status":
                    params.append(ExecutionStatus(value).value)
                elif key in _JSON_FIELDS:
                    params.append(_dumps(value))
                elif isinstance(value, datetime):
                    params.append(value.isoformat())
                else:
                    params.append(value)

            cursor = self._conn.execute(
                f"UPDATE agent_executions SET {', '.join(assignments)} WHERE id = ? AND status = ?",
                (*params, record_id, current.value),
            )
            self._conn.commit()
            if cursor.rowcount == 0:
                # Lost a race with another finalizer.
                raise InvalidTransitionError(self._current_status(record_id).value, str(patch.get("status", "")))

    def _insert_review(self, review: ExecutionReview) -> None:
        with self._lock:
            self._current_status(review.execution_id)
            self._conn.execute(
                """
                INSERT INTO agent_execution_reviews (id, execution_id, reviewer, approved, notes, reviewed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    review.id,
                    review.execution_id,
                    review.reviewer,
                    int(review.approved),
                    review.notes,
                    review.reviewed_at.isoformat(),
                ),
            )
            self._conn.commit()

    def _fetchone(self, sql: str, params: tuple) -> tuple | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _current_status(self, record_id: str) -> ExecutionStatus:
        """Status of *record_id*; caller holds ``_lock``."""
        row = self._conn.execute(
            "SELECT status FROM agent_executions WHERE id = ?",
            (record_id,),
        ).fetchone()
        if row is None:
            raise RecordNotFoundError(record_id)
        return ExecutionStatus(row[0])

    def _row_to_record(self, row: tuple) -> ExecutionRecord:
        """Convert a database row to an ExecutionRecord."""
        return ExecutionRecord(
            id=row[0],
            category=row[1],
            handler_name=row[2],
            status=ExecutionStatus(row[3]),
            organization_id=row[4],
            project_id=row[5],
            correlation=_loads(row[6]) or {},
            requested_by=row[7],
            input=_loads(row[8]) or {},
            output=_loads(row[9]),
            confidence=row[10],
            error=row[11],
            error_details=_loads(row[12]),
            tokens_used=row[13],
            created_at=_dt(row[14]),
            started_at=_dt(row[15]),
            completed_at=_dt(row[16]),
            execution_time_ms=row[17],
        )
