"""FastAPI Router — ``/agents`` REST API.

WHY
───
The HTTP layer only relays: it turns request bodies into
``ExecutionRequest`` objects, hands them to the ``AgentDispatcher``, and
renders records and outcomes.  No dispatch or audit logic lives here.

ARCHITECTURE
────────────
::

    create_agents_router(dispatcher) → APIRouter
      GET    /agents                              ─ registered agents
      POST   /agents/execute                      ─ run one agent
      POST   /agents/execute-batch                ─ run many concurrently
      GET    /agents/executions                   ─ history (filters)
      GET    /agents/executions/{id}              ─ one record
      POST   /agents/executions/{id}/review       ─ human review
      GET    /agents/executions/{id}/reviews      ─ reviews of one record

    create_app(settings) → FastAPI
      settings → logging → SqliteAuditStore → registry → dispatcher → router

Related modules:
    dispatcher.py — AgentDispatcher (business logic)
    models.py     — ExecutionRecord, ExecutionOutcome, ExecutionReview
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

from fastapi import APIRouter, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from siteagents.core.errors import ErrorCategory, RecordNotFoundError, ValidationError
from siteagents.core.logging import configure_logging, get_logger
from siteagents.core.settings import AgentSettings, get_settings
from siteagents.execution.dispatcher import AgentDispatcher
from siteagents.execution.ledger import SqliteAuditStore
from siteagents.execution.models import (
    AgentCategory,
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionRequest,
    ExecutionReview,
    ExecutionStatus,
    HistoryFilters,
)
from siteagents.execution.registry import build_default_registry
from siteagents.execution.store import AuditStore

logger = get_logger(__name__)


# === PYDANTIC MODELS FOR API ===


class ExecuteRequest(BaseModel):
    """Request body for running one agent."""

    category: str
    context: dict[str, Any] = Field(default_factory=dict)
    input: dict[str, Any] = Field(default_factory=dict)
    requested_by: str | None = None

    def to_request(self) -> ExecutionRequest:
        return ExecutionRequest(
            category=self.category,
            context=self.context,
            input=self.input,
            requested_by=self.requested_by,
        )


class ExecuteBatchRequest(BaseModel):
    """Request body for a concurrent fan-out."""

    requests: list[ExecuteRequest] = Field(default_factory=list)
    timeout_seconds: float | None = Field(None, gt=0)


class ReviewRequest(BaseModel):
    reviewer: str
    approved: bool
    notes: str | None = None


class OutcomeResponse(BaseModel):
    """Caller-facing result of one dispatch."""

    success: bool
    execution_time_ms: int
    output: Any = None
    confidence: float | None = None
    requires_review: bool | None = None
    error: str | None = None
    tokens_used: int | None = None
    execution_id: str | None = None
    status: str | None = None
    error_category: str | None = None

    @classmethod
    def from_outcome(cls, outcome: ExecutionOutcome) -> OutcomeResponse:
        return cls(**outcome.to_dict())


class ExecutionResponse(BaseModel):
    """One audit record."""

    id: str
    category: str
    handler_name: str
    status: str
    input: dict[str, Any]
    organization_id: str | None = None
    project_id: str | None = None
    correlation: dict[str, Any] = Field(default_factory=dict)
    requested_by: str | None = None
    output: Any = None
    confidence: float | None = None
    error: str | None = None
    error_details: dict[str, Any] | None = None
    tokens_used: int | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    execution_time_ms: int | None = None

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> ExecutionResponse:
        return cls(
            id=record.id,
            category=record.category,
            handler_name=record.handler_name,
            status=record.status.value,
            input=record.input,
            organization_id=record.organization_id,
            project_id=record.project_id,
            correlation=record.correlation,
            requested_by=record.requested_by,
            output=record.output,
            confidence=record.confidence,
            error=record.error,
            error_details=record.error_details,
            tokens_used=record.tokens_used,
            created_at=record.created_at,
            started_at=record.started_at,
            completed_at=record.completed_at,
            execution_time_ms=record.execution_time_ms,
        )


class ReviewResponse(BaseModel):
    id: str
    execution_id: str
    reviewer: str
    approved: bool
    notes: str | None = None
    reviewed_at: datetime

    @classmethod
    def from_review(cls, review: ExecutionReview) -> ReviewResponse:
        return cls(
            id=review.id,
            execution_id=review.execution_id,
            reviewer=review.reviewer,
            approved=review.approved,
            notes=review.notes,
            reviewed_at=review.reviewed_at,
        )


class AgentInfo(BaseModel):
    category: str
    name: str
    actions: list[str] = Field(default_factory=list)
    description: str | None = None


def create_agents_router(
    dispatcher: AgentDispatcher,
    prefix: str = "/api/v1/agents",
    tags: list[str] | None = None,
) -> APIRouter:
    """Create the agents router.

    Args:
        dispatcher: Configured AgentDispatcher instance
        prefix: URL prefix (default: /api/v1/agents)
        tags: OpenAPI tags (default: ["agents"])

    Example:
        >>> app = FastAPI()
        >>> app.include_router(create_agents_router(dispatcher))
    """
    router = APIRouter(prefix=prefix, tags=tags or ["agents"])

    @router.get("", response_model=list[AgentInfo])
    async def list_agents():
        """Registered agents with their actions."""
        return [AgentInfo(**info) for info in dispatcher.registry.list_handlers()]

    @router.post("/execute", response_model=OutcomeResponse)
    async def execute(request: ExecuteRequest):
        """Run one agent and return its outcome.

        An unregistered category is a client error (400) and an audit
        store that cannot record the run is a server error (503); agent
        failures are reported in the body with ``success: false``.
        """
        outcome = await dispatcher.execute(request.to_request())
        if not outcome.success and outcome.execution_id is None:
            if outcome.error_category == ErrorCategory.CONFIG.value:
                raise HTTPException(400, outcome.error)
            raise HTTPException(503, outcome.error)
        return OutcomeResponse.from_outcome(outcome)

    @router.post("/execute-batch", response_model=list[OutcomeResponse])
    async def execute_batch(batch: ExecuteBatchRequest):
        """Run several agents concurrently; outcomes keep request order."""
        outcomes = await dispatcher.execute_many(
            [r.to_request() for r in batch.requests],
            timeout=batch.timeout_seconds,
        )
        return [OutcomeResponse.from_outcome(o) for o in outcomes]

    @router.get("/executions", response_model=list[ExecutionResponse])
    async def list_executions(
        category: str | None = None,
        organization_id: str | None = None,
        project_id: str | None = None,
        status: str | None = None,
        limit: int | None = Query(None, ge=1),
    ):
        """Execution history, newest first.

        Examples:
        - GET /agents/executions?category=SAFETY&limit=10
        - GET /agents/executions?status=REQUIRES_REVIEW
        """
        category_enum = None
        if category:
            category_enum = AgentCategory.parse(category)
            if category_enum is None:
                raise HTTPException(400, f"Invalid category: {category}")

        status_enum = None
        if status:
            try:
                status_enum = ExecutionStatus(status.upper())
            except ValueError:
                raise HTTPException(400, f"Invalid status: {status}") from None

        records = await dispatcher.get_execution_history(
            HistoryFilters(
                category=category_enum,
                organization_id=organization_id,
                project_id=project_id,
                status=status_enum,
                limit=limit,
            )
        )
        return [ExecutionResponse.from_record(r) for r in records]

    @router.get("/executions/{execution_id}", response_model=ExecutionResponse)
    async def get_execution(execution_id: str):
        record = await dispatcher.get_execution(execution_id)
        if record is None:
            raise HTTPException(404, f"Execution not found: {execution_id}")
        return ExecutionResponse.from_record(record)

    @router.post("/executions/{execution_id}/review", response_model=ReviewResponse)
    async def review_execution(execution_id: str, review: ReviewRequest):
        """Approve or reject a REQUIRES_REVIEW execution."""
        try:
            result = await dispatcher.review_execution(execution_id, review.reviewer, review.approved, review.notes)
        except RecordNotFoundError as e:
            raise HTTPException(404, e.message) from e
        except ValidationError as e:
            raise HTTPException(409, e.message) from e
        return ReviewResponse.from_review(result)

    @router.get("/executions/{execution_id}/reviews", response_model=list[ReviewResponse])
    async def list_reviews(execution_id: str):
        if await dispatcher.get_execution(execution_id) is None:
            raise HTTPException(404, f"Execution not found: {execution_id}")
        return [ReviewResponse.from_review(r) for r in await dispatcher.list_reviews(execution_id)]

    return router


def create_app(
    settings: AgentSettings | None = None,
    *,
    audit_store: AuditStore | None = None,
    domain_store: Any = None,
) -> FastAPI:
    """Wire settings, logging, stores, registry, and dispatcher into an app.

    Args:
        settings: Defaults to ``get_settings()``
        audit_store: Defaults to a ``SqliteAuditStore`` at ``settings.database_path``
        domain_store: Defaults to an empty ``InMemoryDomainStore``
    """
    from siteagents.agents.data import InMemoryDomainStore

    settings = settings or get_settings()
    configure_logging(level=settings.log_level, json_format=settings.json_logs)

    owned: SqliteAuditStore | None = None
    if audit_store is None:
        owned = SqliteAuditStore.open(settings.database_path)
        audit_store = owned

    if domain_store is None:
        domain_store = InMemoryDomainStore()
    registry = build_default_registry(domain_store, settings.review)
    dispatcher = AgentDispatcher(registry, audit_store, settings=settings)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("api.startup", agents=len(registry))
        yield
        if owned is not None:
            owned.close()

    app = FastAPI(title="siteagents", lifespan=lifespan)
    app.state.dispatcher = dispatcher
    app.include_router(create_agents_router(dispatcher))
    return app
