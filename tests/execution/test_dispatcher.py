"""Tests for ``siteagents.execution.dispatcher`` — execute, fan-out, history, review."""

from __future__ import annotations

import asyncio

import pytest
from conftest import ORG, PROJECT, StubAgent, days_ago

from siteagents.core.errors import NotFoundError, RecordNotFoundError, StoreError, ValidationError
from siteagents.execution.models import (
    AgentCategory,
    ExecutionRequest,
    ExecutionStatus,
    HandlerResult,
    HistoryFilters,
)


def _request(category="SAFETY", action="run", **context) -> ExecutionRequest:
    return ExecutionRequest(
        category=category,
        context={"organizationId": ORG, **context},
        input={"action": action},
    )


def _raise(error: BaseException):
    def respond(input, context):
        raise error

    return respond


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------


class TestExecuteSuccess:
    @pytest.mark.asyncio
    async def test_completed_record(self, make_dispatcher, audit_store):
        agent = StubAgent("SAFETY", lambda i, c: HandlerResult(output={"risk": 0.2}, confidence=0.9, tokens_used=7))
        dispatcher = make_dispatcher(agent)

        outcome = await dispatcher.execute(_request(projectId=PROJECT, requestId="req-1"))

        assert outcome.success is True
        assert outcome.output == {"risk": 0.2}
        assert outcome.confidence == 0.9
        assert outcome.tokens_used == 7
        assert outcome.requires_review is False
        assert outcome.error is None

        assert len(audit_store) == 1
        record = await dispatcher.get_execution(outcome.execution_id)
        assert record.status is ExecutionStatus.COMPLETED
        assert record.handler_name == "Safety Agent"
        assert record.organization_id == ORG
        assert record.project_id == PROJECT
        assert record.correlation == {"requestId": "req-1"}
        assert record.output == {"risk": 0.2}
        assert record.completed_at >= record.started_at
        assert record.execution_time_ms == outcome.execution_time_ms

    @pytest.mark.asyncio
    async def test_agent_receives_input_and_context(self, make_dispatcher):
        agent = StubAgent("DECISION")
        dispatcher = make_dispatcher(agent)
        await dispatcher.execute(_request("DECISION", "assess_risk", projectId=PROJECT))
        assert agent.calls == [({"action": "assess_risk"}, {"organizationId": ORG, "projectId": PROJECT})]

    @pytest.mark.asyncio
    async def test_review_flag_gives_requires_review(self, make_dispatcher):
        agent = StubAgent("PROCUREMENT", lambda i, c: HandlerResult(output={}, confidence=0.4, requires_review=True))
        dispatcher = make_dispatcher(agent)

        outcome = await dispatcher.execute(_request("PROCUREMENT"))

        assert outcome.success is True
        assert outcome.requires_review is True
        assert outcome.confidence == 0.4
        record = await dispatcher.get_execution(outcome.execution_id)
        assert record.status is ExecutionStatus.REQUIRES_REVIEW

    @pytest.mark.asyncio
    async def test_category_string_is_case_insensitive(self, make_dispatcher):
        dispatcher = make_dispatcher(StubAgent("DUE_DILIGENCE"))
        outcome = await dispatcher.execute(_request("due_diligence"))
        assert outcome.success is True


class TestExecuteFailure:
    @pytest.mark.asyncio
    async def test_unknown_category_creates_no_record(self, make_dispatcher, audit_store):
        dispatcher = make_dispatcher(StubAgent("SAFETY"))

        outcome = await dispatcher.execute(_request("WEATHER"))

        assert outcome.success is False
        assert outcome.error.startswith("Unknown agent type: WEATHER")
        assert outcome.execution_id is None
        assert outcome.error_category == "CONFIG"
        assert len(audit_store) == 0

    @pytest.mark.asyncio
    async def test_unregistered_category_creates_no_record(self, make_dispatcher, audit_store):
        dispatcher = make_dispatcher(StubAgent("SAFETY"))
        outcome = await dispatcher.execute(_request("SCHEDULING"))
        assert outcome.success is False
        assert len(audit_store) == 0

    @pytest.mark.asyncio
    async def test_agent_exception_becomes_failed_record(self, make_dispatcher, audit_store):
        dispatcher = make_dispatcher(StubAgent("SAFETY", _raise(NotFoundError("Incident not found"))))

        outcome = await dispatcher.execute(_request(action="analyze_incident"))

        assert outcome.success is False
        assert outcome.error == "Incident not found"
        assert outcome.output is None
        assert outcome.confidence is None
        assert len(audit_store) == 1

        record = await dispatcher.get_execution(outcome.execution_id)
        assert record.status is ExecutionStatus.FAILED
        assert record.error == "Incident not found"
        assert record.output is None
        assert record.confidence is None
        assert record.error_details["error_type"] == "NotFoundError"
        assert record.error_details["context"]["handler"] == "Safety Agent"
        assert record.error_details["context"]["action"] == "analyze_incident"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self, make_dispatcher):
        dispatcher = make_dispatcher(StubAgent("SAFETY", _raise(ZeroDivisionError("division by zero"))))
        outcome = await dispatcher.execute(_request())
        record = await dispatcher.get_execution(outcome.execution_id)
        assert record.error == "division by zero"
        assert record.error_details["error_type"] == "HandlerFault"
        assert record.error_details["context"]["exception_type"] == "ZeroDivisionError"

    @pytest.mark.asyncio
    async def test_malformed_result_fails(self, make_dispatcher):
        dispatcher = make_dispatcher(StubAgent("SAFETY", lambda i, c: {"not": "a result"}))
        outcome = await dispatcher.execute(_request())
        assert outcome.success is False
        assert "expected HandlerResult" in outcome.error

    @pytest.mark.asyncio
    async def test_confidence_out_of_range_fails(self, make_dispatcher):
        dispatcher = make_dispatcher(StubAgent("SAFETY", lambda i, c: HandlerResult(output=1, confidence=1.5)))
        outcome = await dispatcher.execute(_request())
        assert outcome.success is False
        assert "out of range" in outcome.error

    @pytest.mark.asyncio
    async def test_result_without_output_fails(self, make_dispatcher):
        dispatcher = make_dispatcher(StubAgent("SAFETY", lambda i, c: HandlerResult(output=None, confidence=0.9)))
        outcome = await dispatcher.execute(_request())
        assert outcome.success is False
        assert outcome.error == "Handler returned a HandlerResult without output"
        record = await dispatcher.get_execution(outcome.execution_id)
        assert record.status is ExecutionStatus.FAILED
        assert record.output is None
        assert record.confidence is None

    @pytest.mark.asyncio
    async def test_record_create_failure_is_reported(self, make_dispatcher, audit_store, monkeypatch):
        async def broken_create(record):
            raise RuntimeError("disk full")

        monkeypatch.setattr(audit_store, "create", broken_create)
        dispatcher = make_dispatcher(StubAgent("SAFETY"))

        outcome = await dispatcher.execute(_request())

        assert outcome.success is False
        assert "disk full" in outcome.error
        assert outcome.execution_id is None
        assert outcome.error_category == "STORAGE"
        assert len(audit_store) == 0

    @pytest.mark.asyncio
    async def test_create_that_persisted_then_raised_is_closed(self, make_dispatcher, audit_store, monkeypatch):
        real_create = audit_store.create

        async def create_then_fail(record):
            await real_create(record)
            raise StoreError("commit acknowledgement lost")

        monkeypatch.setattr(audit_store, "create", create_then_fail)
        agent = StubAgent("SAFETY")
        dispatcher = make_dispatcher(agent)

        outcome = await dispatcher.execute(_request())

        assert outcome.success is False
        assert outcome.error_category == "STORAGE"
        assert agent.calls == []
        [record] = await audit_store.query(HistoryFilters())
        assert record.status is ExecutionStatus.FAILED
        assert "commit acknowledgement lost" in record.error
        assert record.error_details["error_type"] == "StoreError"


class TestCancellationAndTimeout:
    @pytest.mark.asyncio
    async def test_timeout_closes_record(self, make_dispatcher):
        async def slow(input, context):
            await asyncio.sleep(5)
            return HandlerResult(output={}, confidence=1.0)

        dispatcher = make_dispatcher(StubAgent("SCHEDULING", slow))

        outcome = await dispatcher.execute(_request("SCHEDULING"), timeout=0.05)

        assert outcome.success is False
        assert outcome.error == "Execution timed out after 0.05s"
        record = await dispatcher.get_execution(outcome.execution_id)
        assert record.status is ExecutionStatus.FAILED
        assert record.error_details["error_type"] == "ExecutionTimeoutError"

    @pytest.mark.asyncio
    async def test_default_timeout_from_settings(self, make_dispatcher):
        async def slow(input, context):
            await asyncio.sleep(5)

        dispatcher = make_dispatcher(StubAgent("SCHEDULING", slow), default_timeout_seconds=0.05)
        outcome = await dispatcher.execute(_request("SCHEDULING"))
        assert outcome.error == "Execution timed out after 0.05s"

    @pytest.mark.asyncio
    async def test_cancel_token_aborts_agent(self, make_dispatcher):
        from siteagents.execution.cancel import CancellationToken

        started = asyncio.Event()

        async def slow(input, context):
            started.set()
            await asyncio.sleep(5)

        token = CancellationToken()
        dispatcher = make_dispatcher(StubAgent("SAFETY", slow))
        task = asyncio.create_task(dispatcher.execute(_request(), cancel=token))
        await started.wait()
        token.request_cancel("operator abort")

        outcome = await task
        assert outcome.success is False
        assert outcome.error == "operator abort"
        record = await dispatcher.get_execution(outcome.execution_id)
        assert record.status is ExecutionStatus.FAILED

    @pytest.mark.asyncio
    async def test_pre_cancelled_token_never_calls_agent(self, make_dispatcher, audit_store):
        from siteagents.execution.cancel import CancellationToken

        agent = StubAgent("SAFETY")
        token = CancellationToken()
        token.request_cancel()

        outcome = await make_dispatcher(agent).execute(_request(), cancel=token)

        assert outcome.success is False
        assert agent.calls == []
        assert len(audit_store) == 1

    @pytest.mark.asyncio
    async def test_task_cancellation_still_finalizes(self, make_dispatcher, audit_store):
        started = asyncio.Event()

        async def slow(input, context):
            started.set()
            await asyncio.sleep(5)

        dispatcher = make_dispatcher(StubAgent("SAFETY", slow))
        task = asyncio.create_task(dispatcher.execute(_request()))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        [record] = await audit_store.query(HistoryFilters())
        assert record.status is ExecutionStatus.FAILED
        assert record.error == "Execution cancelled before completion"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout", [None, 5.0])
    async def test_agent_raising_cancelled_error_is_a_fault(self, make_dispatcher, timeout):
        dispatcher = make_dispatcher(StubAgent("SAFETY", _raise(asyncio.CancelledError())))

        outcome = await dispatcher.execute(_request(), timeout=timeout)

        assert outcome.success is False
        assert outcome.error_category == "HANDLER"
        record = await dispatcher.get_execution(outcome.execution_id)
        assert record.status is ExecutionStatus.FAILED
        assert record.error_details["context"]["exception_type"] == "CancelledError"


# ---------------------------------------------------------------------------
# execute_many
# ---------------------------------------------------------------------------


class TestExecuteMany:
    @pytest.mark.asyncio
    async def test_order_and_isolation(self, make_dispatcher, audit_store):
        async def slow_ok(input, context):
            await asyncio.sleep(0.02)
            return HandlerResult(output={"slow": True}, confidence=0.9)

        dispatcher = make_dispatcher(
            StubAgent("SAFETY", slow_ok),
            StubAgent("DECISION", _raise(RuntimeError("boom"))),
            StubAgent("DOCUMENT"),
        )

        outcomes = await dispatcher.execute_many([
            _request("SAFETY"),
            _request("DECISION"),
            _request("WEATHER"),
            _request("DOCUMENT"),
        ])

        assert [o.success for o in outcomes] == [True, False, False, True]
        assert outcomes[0].output == {"slow": True}
        assert outcomes[1].error == "boom"
        assert outcomes[2].execution_id is None
        assert outcomes[3].output == {"ok": True}
        assert len(audit_store) == 3

    @pytest.mark.asyncio
    async def test_member_raising_cancelled_error_does_not_abort_batch(self, make_dispatcher, audit_store):
        dispatcher = make_dispatcher(
            StubAgent("SAFETY"),
            StubAgent("COMPLIANCE", _raise(asyncio.CancelledError())),
        )

        outcomes = await dispatcher.execute_many([_request("SAFETY"), _request("COMPLIANCE"), _request("SAFETY")])

        assert [o.success for o in outcomes] == [True, False, True]
        assert outcomes[1].execution_id is not None
        statuses = sorted(r.status.value for r in await audit_store.query(HistoryFilters()))
        assert statuses == ["COMPLETED", "COMPLETED", "FAILED"]

    @pytest.mark.asyncio
    async def test_runs_concurrently(self, make_dispatcher):
        running = 0
        peak = 0

        async def track(input, context):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1
            return HandlerResult(output={}, confidence=1.0)

        dispatcher = make_dispatcher(StubAgent("SAFETY", track))
        await dispatcher.execute_many([_request() for _ in range(5)])
        assert peak == 5

    @pytest.mark.asyncio
    async def test_max_concurrency_bounds_fan_out(self, make_dispatcher):
        running = 0
        peak = 0

        async def track(input, context):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1
            return HandlerResult(output={}, confidence=1.0)

        dispatcher = make_dispatcher(StubAgent("SAFETY", track), max_concurrency=2)
        outcomes = await dispatcher.execute_many([_request() for _ in range(6)])
        assert all(o.success for o in outcomes)
        assert peak == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self, make_dispatcher):
        assert await make_dispatcher().execute_many([]) == []


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class TestHistory:
    @pytest.mark.asyncio
    async def test_filters_and_newest_first(self, make_dispatcher):
        dispatcher = make_dispatcher(StubAgent("SAFETY"), StubAgent("DECISION"))
        first = await dispatcher.execute(_request("SAFETY", projectId="p-1"))
        await asyncio.sleep(0.002)
        second = await dispatcher.execute(_request("DECISION", projectId="p-2"))
        await asyncio.sleep(0.002)
        third = await dispatcher.execute(_request("SAFETY", organizationId="org-2"))

        everything = await dispatcher.get_execution_history()
        assert [r.id for r in everything] == [third.execution_id, second.execution_id, first.execution_id]

        safety = await dispatcher.get_execution_history(category=AgentCategory.SAFETY)
        assert [r.id for r in safety] == [third.execution_id, first.execution_id]

        org = await dispatcher.get_execution_history(HistoryFilters(organization_id=ORG, project_id="p-2"))
        assert [r.id for r in org] == [second.execution_id]

    @pytest.mark.asyncio
    async def test_status_filter(self, make_dispatcher):
        dispatcher = make_dispatcher(StubAgent("SAFETY"), StubAgent("DECISION", _raise(RuntimeError("x"))))
        await dispatcher.execute(_request("SAFETY"))
        failed = await dispatcher.execute(_request("DECISION"))

        result = await dispatcher.get_execution_history(status=ExecutionStatus.FAILED)
        assert [r.id for r in result] == [failed.execution_id]

    @pytest.mark.asyncio
    async def test_default_and_max_limit(self, make_dispatcher):
        dispatcher = make_dispatcher(StubAgent("SAFETY"), history_default_limit=3, history_max_limit=4)
        for _ in range(6):
            await dispatcher.execute(_request())

        assert len(await dispatcher.get_execution_history()) == 3
        assert len(await dispatcher.get_execution_history(limit=2)) == 2
        assert len(await dispatcher.get_execution_history(limit=100)) == 4

    @pytest.mark.asyncio
    async def test_invalid_limit(self, make_dispatcher):
        with pytest.raises(ValidationError):
            await make_dispatcher().get_execution_history(limit=0)

    @pytest.mark.asyncio
    async def test_history_is_read_only(self, make_dispatcher, audit_store):
        dispatcher = make_dispatcher(StubAgent("SAFETY"))
        await dispatcher.execute(_request())
        before = [r.to_dict() for r in await dispatcher.get_execution_history()]
        again = [r.to_dict() for r in await dispatcher.get_execution_history()]
        assert before == again
        assert len(audit_store) == 1

    @pytest.mark.asyncio
    async def test_get_unknown_execution(self, dispatcher):
        assert await dispatcher.get_execution("missing") is None


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


class TestReview:
    @pytest.mark.asyncio
    async def test_review_flagged_execution(self, make_dispatcher):
        agent = StubAgent("DECISION", lambda i, c: HandlerResult(output={}, confidence=0.4, requires_review=True))
        dispatcher = make_dispatcher(agent)
        outcome = await dispatcher.execute(_request("DECISION"))

        review = await dispatcher.review_execution(outcome.execution_id, "site-manager", False, "too risky")

        assert review.execution_id == outcome.execution_id
        assert review.approved is False
        assert [r.id for r in await dispatcher.list_reviews(outcome.execution_id)] == [review.id]
        # The record itself is unchanged.
        record = await dispatcher.get_execution(outcome.execution_id)
        assert record.status is ExecutionStatus.REQUIRES_REVIEW

    @pytest.mark.asyncio
    async def test_review_requires_flagged_status(self, make_dispatcher):
        dispatcher = make_dispatcher(StubAgent("SAFETY"))
        outcome = await dispatcher.execute(_request())
        with pytest.raises(ValidationError, match="not REQUIRES_REVIEW"):
            await dispatcher.review_execution(outcome.execution_id, "alice", True)

    @pytest.mark.asyncio
    async def test_review_unknown_execution(self, dispatcher):
        with pytest.raises(RecordNotFoundError):
            await dispatcher.review_execution("missing", "alice", True)


# ---------------------------------------------------------------------------
# End to end with the real agents
# ---------------------------------------------------------------------------


class TestWithRealAgents:
    @pytest.mark.asyncio
    async def test_compliance_monitor(self, dispatcher, domain_store, audit_store):
        await domain_store.create("compliance_records", {
            "organizationId": ORG,
            "regulation": "CDM-2015",
            "status": "COMPLIANT",
            "aiMonitored": True,
            "nextAuditDate": days_ago(1),
        })

        outcome = await dispatcher.execute(
            ExecutionRequest(category="COMPLIANCE", context={"organizationId": ORG}, input={"action": "monitor"})
        )

        assert outcome.success is True
        assert outcome.confidence == 0.9
        assert outcome.requires_review is False
        assert [a["type"] for a in outcome.output["alerts"]] == ["AUDIT_DUE"]
        assert outcome.output["totalRecords"] == 1
        assert len(audit_store) == 1

    @pytest.mark.asyncio
    async def test_missing_action_fails_validation(self, dispatcher):
        outcome = await dispatcher.execute(ExecutionRequest(category="SAFETY", context={"organizationId": ORG}))
        assert outcome.success is False
        assert outcome.error == "Missing required field: action"
        record = await dispatcher.get_execution(outcome.execution_id)
        assert record.error_details["category"] == "VALIDATION"
