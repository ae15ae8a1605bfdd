"""
Execution - dispatch, audit, and history for agent runs.

Manifesto:
    Every dispatch to a registered agent leaves exactly one audit record,
    created RUNNING before the agent starts and closed in a terminal state
    whatever the agent does.  Callers always get an ``ExecutionOutcome``
    back; agent failures never escape as exceptions.

Architecture:
    ::

        AgentDispatcher ──► HandlerRegistry ──► AgentHandler.execute()
              │
              └──► AuditStore (InMemoryAuditStore | SqliteAuditStore)

    The HTTP router lives in ``siteagents.execution.api`` and is imported
    on demand.

Modules:
    models      AgentCategory, ExecutionStatus, ExecutionRecord, ...
    registry    HandlerRegistry, build_default_registry
    dispatcher  AgentDispatcher
    store       AuditStore protocol, InMemoryAuditStore
    ledger      SqliteAuditStore
    cancel      CancellationToken
    api         create_agents_router, create_app
"""

from siteagents.execution.cancel import CancellationToken
from siteagents.execution.dispatcher import AgentDispatcher
from siteagents.execution.ledger import SqliteAuditStore
from siteagents.execution.models import (
    EXECUTION_VALID_TRANSITIONS,
    AgentCategory,
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionRequest,
    ExecutionReview,
    ExecutionStatus,
    HandlerResult,
    HistoryFilters,
    InvalidTransitionError,
    validate_execution_transition,
)
from siteagents.execution.registry import HandlerRegistry, build_default_registry
from siteagents.execution.store import AuditStore, InMemoryAuditStore

__all__ = [
    "AgentCategory",
    "AgentDispatcher",
    "AuditStore",
    "CancellationToken",
    "EXECUTION_VALID_TRANSITIONS",
    "ExecutionOutcome",
    "ExecutionRecord",
    "ExecutionRequest",
    "ExecutionReview",
    "ExecutionStatus",
    "HandlerRegistry",
    "HandlerResult",
    "HistoryFilters",
    "InMemoryAuditStore",
    "InvalidTransitionError",
    "SqliteAuditStore",
    "build_default_registry",
    "validate_execution_transition",
]
