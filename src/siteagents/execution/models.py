"""Execution domain models.

Defines the core data structures for agent dispatch:

- AgentCategory: the nine task categories an agent can be registered for
- ExecutionStatus: the audit-record state machine
- ExecutionRequest / HandlerResult / ExecutionOutcome: the dispatch contract
- ExecutionRecord: the persisted audit row for one dispatch
- ExecutionReview: an append-only human review of a REQUIRES_REVIEW record
- HistoryFilters: query parameters for execution history

These models are used by the dispatcher, the audit stores, and the API layer.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class InvalidTransitionError(ValueError):
    """Raised when an illegal state transition is attempted.

    Terminal execution records are immutable history; any attempt to move
    them again (e.g. COMPLETED → FAILED) fires this error.
    """

    def __init__(self, current: str, target: str, enum_name: str = "ExecutionStatus") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid {enum_name} transition: {current} → {target}")


class AgentCategory(str, Enum):
    """Task categories, one registered agent each."""

    PROCUREMENT = "PROCUREMENT"
    COMPLIANCE = "COMPLIANCE"
    SAFETY = "SAFETY"
    RESOURCE = "RESOURCE"
    DOCUMENT = "DOCUMENT"
    DECISION = "DECISION"
    COMMUNICATION = "COMMUNICATION"
    DUE_DILIGENCE = "DUE_DILIGENCE"
    SCHEDULING = "SCHEDULING"

    @property
    def display_name(self) -> str:
        """Human-readable agent name, e.g. ``"Due Diligence Agent"``."""
        return f"{self.value.replace('_', ' ').title()} Agent"

    @classmethod
    def parse(cls, value: "AgentCategory | str") -> "AgentCategory | None":
        """Resolve *value* to a category, or None if it names no category."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            return None


class ExecutionStatus(str, Enum):
    """Status of an agent execution.

    Valid transition graph::

        RUNNING         → COMPLETED | FAILED | REQUIRES_REVIEW
        COMPLETED       → (terminal)
        FAILED          → (terminal)
        REQUIRES_REVIEW → (terminal)
    """

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REQUIRES_REVIEW = "REQUIRES_REVIEW"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


EXECUTION_VALID_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.RUNNING: frozenset({
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.REQUIRES_REVIEW,
    }),
    ExecutionStatus.COMPLETED: frozenset(),  # terminal
    ExecutionStatus.FAILED: frozenset(),  # terminal
    ExecutionStatus.REQUIRES_REVIEW: frozenset(),  # terminal
}


def validate_execution_transition(current: ExecutionStatus, target: ExecutionStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_execution_transition(ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED)
        >>> validate_execution_transition(ExecutionStatus.COMPLETED, ExecutionStatus.RUNNING)
        Traceback (most recent call last):
        ...
        InvalidTransitionError: Invalid ExecutionStatus transition: COMPLETED → RUNNING
    """
    allowed = EXECUTION_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value)


# Context keys copied onto dedicated record columns; every other scalar
# context key lands in ``ExecutionRecord.correlation``.
SCOPE_KEYS = ("organizationId", "projectId")

# Fields the finalization write may set.
MUTABLE_FIELDS = frozenset({
    "status",
    "output",
    "confidence",
    "error",
    "error_details",
    "tokens_used",
    "completed_at",
    "execution_time_ms",
})


@dataclass
class ExecutionRequest:
    """Caller-supplied request to run one agent.

    ``category`` may be a raw string; an unknown value is reported as a
    ConfigurationError outcome rather than raised.
    """

    category: AgentCategory | str
    context: dict[str, Any] = field(default_factory=dict)
    input: dict[str, Any] = field(default_factory=dict)
    requested_by: str | None = None


@dataclass
class HandlerResult:
    """What an agent returns from ``execute``."""

    output: Any
    confidence: float
    requires_review: bool = False
    tokens_used: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionRecord:
    """Persisted audit row capturing one dispatch's full lifecycle."""

    id: str
    category: str
    handler_name: str
    status: ExecutionStatus
    input: dict[str, Any] = field(default_factory=dict)

    # === SCOPE ===
    organization_id: str | None = None
    project_id: str | None = None
    correlation: dict[str, Any] = field(default_factory=dict)
    requested_by: str | None = None

    # === RESULTS ===
    output: Any = None
    confidence: float | None = None
    error: str | None = None
    error_details: dict[str, Any] | None = None
    tokens_used: int | None = None

    # === TIMESTAMPS ===
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    execution_time_ms: int | None = None

    @classmethod
    def start(
        cls,
        category: AgentCategory,
        context: dict[str, Any],
        input: dict[str, Any],
        requested_by: str | None = None,
    ) -> "ExecutionRecord":
        """Create a new RUNNING record for a dispatch that is about to begin."""
        now = utcnow()
        correlation = {
            key: value
            for key, value in context.items()
            if key not in SCOPE_KEYS and isinstance(value, (str, int, float, bool))
        }
        return cls(
            id=str(uuid.uuid4()),
            category=category.value,
            handler_name=category.display_name,
            status=ExecutionStatus.RUNNING,
            input=dict(input),
            organization_id=context.get("organizationId"),
            project_id=context.get("projectId"),
            correlation=correlation,
            requested_by=requested_by,
            created_at=now,
            started_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def apply(self, patch: dict[str, Any]) -> None:
        """Apply a finalization patch, enforcing the state machine."""
        unknown = set(patch) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update immutable fields: {sorted(unknown)}")
        if "status" in patch:
            validate_execution_transition(self.status, ExecutionStatus(patch["status"]))
        elif self.is_terminal:
            raise InvalidTransitionError(self.status.value, self.status.value)
        for key, value in patch.items():
            setattr(self, key, ExecutionStatus(value) if key == "status" else value)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON/storage."""
        return {
            "id": self.id,
            "category": self.category,
            "handler_name": self.handler_name,
            "status": self.status.value,
            "input": self.input,
            "organization_id": self.organization_id,
            "project_id": self.project_id,
            "correlation": self.correlation,
            "requested_by": self.requested_by,
            "output": self.output,
            "confidence": self.confidence,
            "error": self.error,
            "error_details": self.error_details,
            "tokens_used": self.tokens_used,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "execution_time_ms": self.execution_time_ms,
        }


def _elapsed_ms(started_at: datetime | None, completed_at: datetime) -> int:
    if started_at is None:
        return 0
    return max(0, int((completed_at - started_at).total_seconds() * 1000))


def completion_patch(record: ExecutionRecord, result: HandlerResult) -> dict[str, Any]:
    """Finalization patch for a handler that returned normally."""
    completed_at = utcnow()
    return {
        "status": ExecutionStatus.REQUIRES_REVIEW if result.requires_review else ExecutionStatus.COMPLETED,
        "output": result.output,
        "confidence": result.confidence,
        "tokens_used": result.tokens_used,
        "completed_at": completed_at,
        "execution_time_ms": _elapsed_ms(record.started_at, completed_at),
    }


def failure_patch(record: ExecutionRecord, error: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Finalization patch for a handler that raised or was cancelled."""
    completed_at = utcnow()
    return {
        "status": ExecutionStatus.FAILED,
        "error": error,
        "error_details": details,
        "completed_at": completed_at,
        "execution_time_ms": _elapsed_ms(record.started_at, completed_at),
    }


@dataclass
class ExecutionOutcome:
    """Normalized caller-facing result of one dispatch."""

    success: bool
    execution_time_ms: int
    output: Any = None
    confidence: float | None = None
    requires_review: bool | None = None
    error: str | None = None
    tokens_used: int | None = None
    execution_id: str | None = None
    status: ExecutionStatus | None = None
    error_category: str | None = None

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> "ExecutionOutcome":
        """Build the outcome from a finalized record."""
        if record.status is ExecutionStatus.FAILED:
            return cls(
                success=False,
                error=record.error,
                error_category=(record.error_details or {}).get("category"),
                execution_time_ms=record.execution_time_ms or 0,
                execution_id=record.id,
                status=record.status,
            )
        return cls(
            success=True,
            output=record.output,
            confidence=record.confidence,
            requires_review=record.status is ExecutionStatus.REQUIRES_REVIEW,
            tokens_used=record.tokens_used,
            execution_time_ms=record.execution_time_ms or 0,
            execution_id=record.id,
            status=record.status,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize, omitting fields that do not apply to this outcome."""
        result: dict[str, Any] = {
            "success": self.success,
            "execution_time_ms": self.execution_time_ms,
        }
        optional = {
            "output": self.output,
            "confidence": self.confidence,
            "requires_review": self.requires_review,
            "error": self.error,
            "tokens_used": self.tokens_used,
            "execution_id": self.execution_id,
            "status": self.status.value if self.status else None,
            "error_category": self.error_category,
        }
        if self.success:
            result["output"] = self.output
        result.update({k: v for k, v in optional.items() if v is not None and k != "output"})
        return result


@dataclass
class ExecutionReview:
    """A human decision on a REQUIRES_REVIEW execution. Append-only."""

    id: str
    execution_id: str
    reviewer: str
    approved: bool
    notes: str | None = None
    reviewed_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(cls, execution_id: str, reviewer: str, approved: bool, notes: str | None = None) -> "ExecutionReview":
        return cls(
            id=str(uuid.uuid4()),
            execution_id=execution_id,
            reviewer=reviewer,
            approved=approved,
            notes=notes,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "execution_id": self.execution_id,
            "reviewer": self.reviewer,
            "approved": self.approved,
            "notes": self.notes,
            "reviewed_at": self.reviewed_at.isoformat(),
        }


@dataclass
class HistoryFilters:
    """Execution history query. ``limit`` None means the configured default."""

    category: AgentCategory | str | None = None
    organization_id: str | None = None
    project_id: str | None = None
    status: ExecutionStatus | str | None = None
    limit: int | None = None

    def matches(self, record: ExecutionRecord) -> bool:
        """True if *record* satisfies every set filter."""
        if self.category is not None and record.category != _enum_value(self.category):
            return False
        if self.organization_id is not None and record.organization_id != self.organization_id:
            return False
        if self.project_id is not None and record.project_id != self.project_id:
            return False
        if self.status is not None and record.status.value != _enum_value(self.status):
            return False
        return True

    @property
    def category_value(self) -> str | None:
        return _enum_value(self.category) if self.category is not None else None

    @property
    def status_value(self) -> str | None:
        return _enum_value(self.status) if self.status is not None else None


def _enum_value(value: Enum | str) -> str:
    return value.value if isinstance(value, Enum) else str(value).upper()
