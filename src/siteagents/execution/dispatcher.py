"""Agent Dispatcher — turns an ExecutionRequest into a finalized audit record.

WHY
───
Every agent invocation must leave exactly one audit record behind, closed
in a terminal state, no matter how the agent behaves: returns normally,
raises, hangs past its deadline, or is cancelled.  Putting that guarantee
in one place means agents only implement domain logic and callers only
ever see a well-formed ``ExecutionOutcome``.

ARCHITECTURE
────────────
::

    AgentDispatcher(registry, store, settings)
      │
      ├── execute(request)
      │     1. registry.get(category)   ─ unknown → ConfigurationError outcome,
      │                                    no record
      │     2. store.create(RUNNING)
      │     3. handler.execute(input, context)   (cancel token / deadline)
      │     4. finally: store.update(COMPLETED | REQUIRES_REVIEW | FAILED)
      │     5. ExecutionOutcome
      │
      ├── execute_many(requests)     ─ asyncio.gather fan-out, order kept
      ├── get_execution_history(filters)
      ├── get_execution(id)
      └── review_execution(id, reviewer, approved, notes)
            ─ appends an ExecutionReview; the record stays untouched

Related modules:
    registry.py — HandlerRegistry
    store.py    — AuditStore protocol, InMemoryAuditStore
    ledger.py   — SqliteAuditStore
    cancel.py   — CancellationToken

Example::

    dispatcher = AgentDispatcher(registry, InMemoryAuditStore())
    outcome = await dispatcher.execute(
        ExecutionRequest(
            category=AgentCategory.COMPLIANCE,
            context={"organizationId": "org-1"},
            input={"action": "monitor"},
        )
    )
    print(outcome.success, outcome.confidence)  # True 0.9
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from siteagents.core.errors import (
    ConfigurationError,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    HandlerFault,
    RecordNotFoundError,
    StoreError,
    ValidationError,
)
from siteagents.core.logging import LogContext, get_logger
from siteagents.core.settings import AgentSettings, get_settings
from siteagents.execution.cancel import CancellationToken
from siteagents.execution.models import (
    AgentCategory,
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionRequest,
    ExecutionReview,
    ExecutionStatus,
    HandlerResult,
    HistoryFilters,
    completion_patch,
    failure_patch,
)
from siteagents.execution.registry import HandlerRegistry
from siteagents.execution.store import AuditStore

if TYPE_CHECKING:
    from siteagents.agents.base import AgentHandler

logger = get_logger(__name__)


def _ms_since(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _being_cancelled() -> bool:
    """True if someone called ``cancel()`` on the running task."""
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


class AgentDispatcher:
    """Dispatches requests to registered agents and audits every run.

    Parameters
    ----------
    registry : HandlerRegistry
        Category → agent lookup, built at startup.
    store : AuditStore
        Where execution records are created, finalized, and queried.
    settings : AgentSettings, optional
        History limits, fan-out concurrency, default deadline.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        store: AuditStore,
        *,
        settings: AgentSettings | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._settings = settings or get_settings()

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def store(self) -> AuditStore:
        return self._store

    # ── Dispatch ─────────────────────────────────────────────────────

    async def execute(
        self,
        request: ExecutionRequest,
        *,
        cancel: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ExecutionOutcome:
        """Run one request to completion and return its outcome.

        Never raises for agent failures; those come back as
        ``success=False``.  When this task is cancelled,
        ``asyncio.CancelledError`` is re-raised after the record has been
        closed as FAILED; an agent raising ``CancelledError`` on its own is
        a handler fault like any other.

        Args:
            request: What to run.
            cancel: Optional token; cancelling it aborts the agent.
            timeout: Seconds before the agent is abandoned; falls back to
                ``settings.default_timeout_seconds``.
        """
        clock = time.monotonic()

        try:
            handler = self._registry.get(request.category)
        except ConfigurationError as e:
            logger.warning("agent.execute.unknown_category", category=str(request.category), error=e.message)
            return ExecutionOutcome(
                success=False,
                error=e.message,
                error_category=e.category.value,
                execution_time_ms=_ms_since(clock),
            )

        category = AgentCategory(handler.category)
        context = dict(request.context or {})
        payload = dict(request.input or {})
        record = ExecutionRecord.start(category, context, payload, request.requested_by)

        try:
            await self._store.create(record)
        except Exception as e:
            error = StoreError(f"Failed to create execution record: {e}", cause=e).with_context(
                handler=handler.name, category=category.value, execution_id=record.id
            )
            logger.error("agent.execute.record_create_failed", category=category.value, error=str(e))
            await self._close_orphan(record, error)
            return ExecutionOutcome(
                success=False,
                error=error.message,
                error_category=error.category.value,
                execution_time_ms=_ms_since(clock),
            )

        if timeout is None:
            timeout = self._settings.default_timeout_seconds

        async with LogContext(execution_id=record.id, category=category.value):
            logger.info(
                "agent.execute.start",
                handler=handler.name,
                action=payload.get("action"),
                organization_id=record.organization_id,
                project_id=record.project_id,
            )

            patch: dict[str, Any] | None = None
            try:
                result = await self._invoke(handler, payload, context, cancel=cancel, timeout=timeout)
                patch = completion_patch(record, result)
            except asyncio.CancelledError as e:
                if _being_cancelled():
                    error = ExecutionCancelledError("Execution cancelled before completion").with_context(
                        handler=handler.name, execution_id=record.id
                    )
                    patch = failure_patch(record, error.message, error.to_dict())
                    raise
                # The agent raised CancelledError itself; nobody cancelled this task.
                error = HandlerFault.wrap(
                    e,
                    handler=handler.name,
                    category=category.value,
                    action=payload.get("action"),
                    execution_id=record.id,
                )
                patch = failure_patch(record, error.message, error.to_dict())
            except Exception as e:
                error = HandlerFault.wrap(
                    e,
                    handler=handler.name,
                    category=category.value,
                    action=payload.get("action"),
                    execution_id=record.id,
                )
                patch = failure_patch(record, error.message, error.to_dict())
            finally:
                if patch is None:
                    patch = failure_patch(record, "Execution interrupted")
                await self._finalize(record, patch)

        return ExecutionOutcome.from_record(record)

    async def execute_many(
        self,
        requests: Iterable[ExecutionRequest],
        *,
        cancel: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> list[ExecutionOutcome]:
        """Run all requests concurrently; outcomes keep request order.

        Each member is isolated: a failing agent yields a ``success=False``
        outcome in its slot and never affects siblings.
        """
        requests = list(requests)
        limit = self._settings.max_concurrency
        sem = asyncio.Semaphore(limit) if limit else None
        clock = time.monotonic()

        logger.info("agent.batch.start", items=len(requests), max_concurrency=limit)

        async def _run_one(request: ExecutionRequest) -> ExecutionOutcome:
            started = time.monotonic()
            try:
                if sem is None:
                    return await self.execute(request, cancel=cancel, timeout=timeout)
                async with sem:
                    return await self.execute(request, cancel=cancel, timeout=timeout)
            except Exception as e:
                logger.error("agent.batch.item_failed", category=str(request.category), error=str(e))
                return ExecutionOutcome(success=False, error=str(e), execution_time_ms=_ms_since(started))

        outcomes = await asyncio.gather(*[_run_one(r) for r in requests])

        logger.info(
            "agent.batch.complete",
            items=len(outcomes),
            succeeded=sum(1 for o in outcomes if o.success),
            failed=sum(1 for o in outcomes if not o.success),
            duration_ms=_ms_since(clock),
        )
        return list(outcomes)

    # ── Queries ──────────────────────────────────────────────────────

    async def get_execution_history(
        self,
        filters: HistoryFilters | None = None,
        **kwargs: Any,
    ) -> list[ExecutionRecord]:
        """Read-only history query, newest first.

        Accepts a ``HistoryFilters`` or the same fields as keyword
        arguments.  ``limit`` defaults to ``history_default_limit`` and is
        capped at ``history_max_limit``.
        """
        filters = filters or HistoryFilters(**kwargs)
        if filters.limit is not None and filters.limit < 1:
            raise ValidationError("limit must be a positive integer", field="limit", value=filters.limit)

        limit = filters.limit or self._settings.history_default_limit
        limit = min(limit, self._settings.history_max_limit)
        return await self._store.query(
            HistoryFilters(
                category=filters.category,
                organization_id=filters.organization_id,
                project_id=filters.project_id,
                status=filters.status,
                limit=limit,
            )
        )

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        return await self._store.get(execution_id)

    async def review_execution(
        self,
        execution_id: str,
        reviewer: str,
        approved: bool,
        notes: str | None = None,
    ) -> ExecutionReview:
        """Record a human decision on a REQUIRES_REVIEW execution.

        Raises:
            RecordNotFoundError: Unknown execution id.
            ValidationError: The execution is not awaiting review.
        """
        record = await self._store.get(execution_id)
        if record is None:
            raise RecordNotFoundError(execution_id)
        if record.status is not ExecutionStatus.REQUIRES_REVIEW:
            raise ValidationError(
                f"Execution {execution_id} is {record.status.value}, not {ExecutionStatus.REQUIRES_REVIEW.value}",
                field="status",
                value=record.status.value,
            )

        review = ExecutionReview.create(execution_id, reviewer, approved, notes)
        await self._store.add_review(review)
        logger.info(
            "agent.execution.reviewed",
            execution_id=execution_id,
            reviewer=reviewer,
            approved=approved,
        )
        return review

    async def list_reviews(self, execution_id: str) -> list[ExecutionReview]:
        return await self._store.list_reviews(execution_id)

    # ── Internals ────────────────────────────────────────────────────

    async def _invoke(
        self,
        handler: AgentHandler,
        payload: dict[str, Any],
        context: dict[str, Any],
        *,
        cancel: CancellationToken | None,
        timeout: float | None,
    ) -> HandlerResult:
        if cancel is not None and cancel.cancelled:
            raise ExecutionCancelledError(cancel.reason or "Execution cancelled before start")

        if cancel is None and timeout is None:
            return _check_result(await handler.execute(payload, context))

        task = asyncio.ensure_future(handler.execute(payload, context))
        waiters: set[asyncio.Future] = {task}
        cancel_wait = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
        if cancel_wait is not None:
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()

        if task in done:
            return _check_result(task.result())

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if cancel is not None and cancel.cancelled:
            raise ExecutionCancelledError(cancel.reason or "Execution cancelled")
        raise ExecutionTimeoutError(timeout)

    async def _close_orphan(self, record: ExecutionRecord, error: StoreError) -> None:
        """Best-effort FAILED write for a record whose ``create`` raised.

        The insert may have landed before the error surfaced; a row that
        never made it in is simply absent.
        """
        try:
            await asyncio.shield(self._store.update(record.id, failure_patch(record, error.message, error.to_dict())))
        except RecordNotFoundError:
            return
        except Exception as e:
            logger.error("agent.execute.finalize_failed", execution_id=record.id, error=str(e))

    async def _finalize(self, record: ExecutionRecord, patch: dict[str, Any]) -> None:
        """Close *record* locally and in the store.

        The store write is shielded so a second cancellation cannot leave
        the persisted row RUNNING.  A failing write is logged, not raised.
        """
        record.apply(patch)
        try:
            await asyncio.shield(self._store.update(record.id, patch))
        except Exception as e:
            logger.error("agent.execute.finalize_failed", error=str(e), status=record.status.value)
            return

        if record.status is ExecutionStatus.FAILED:
            logger.warning(
                "agent.execute.failed",
                error=record.error,
                execution_time_ms=record.execution_time_ms,
            )
        else:
            logger.info(
                "agent.execute.completed",
                status=record.status.value,
                confidence=record.confidence,
                tokens_used=record.tokens_used,
                execution_time_ms=record.execution_time_ms,
            )


def _check_result(result: Any) -> HandlerResult:
    if not isinstance(result, HandlerResult):
        raise HandlerFault(f"Handler returned {type(result).__name__}, expected HandlerResult")
    if not 0.0 <= result.confidence <= 1.0:
        raise HandlerFault(f"Handler confidence out of range: {result.confidence}")
    if result.output is None:
        raise HandlerFault("Handler returned a HandlerResult without output")
    return result


__all__ = ["AgentDispatcher"]
