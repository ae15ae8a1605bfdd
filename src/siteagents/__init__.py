"""siteagents - agent dispatch and execution audit for construction platforms.

Quick start::

    from siteagents import AgentDispatcher, ExecutionRequest, InMemoryAuditStore
    from siteagents.agents import InMemoryDomainStore
    from siteagents.execution import build_default_registry

    dispatcher = AgentDispatcher(build_default_registry(InMemoryDomainStore()), InMemoryAuditStore())
    outcome = await dispatcher.execute(
        ExecutionRequest(category="COMPLIANCE", context={"organizationId": "org-1"}, input={"action": "monitor"})
    )
"""

from siteagents.execution import (
    AgentCategory,
    AgentDispatcher,
    CancellationToken,
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionRequest,
    ExecutionStatus,
    HandlerResult,
    HistoryFilters,
    InMemoryAuditStore,
    SqliteAuditStore,
)

__version__ = "0.1.0"

__all__ = [
    "AgentCategory",
    "AgentDispatcher",
    "CancellationToken",
    "ExecutionOutcome",
    "ExecutionRecord",
    "ExecutionRequest",
    "ExecutionStatus",
    "HandlerResult",
    "HistoryFilters",
    "InMemoryAuditStore",
    "SqliteAuditStore",
    "__version__",
]
