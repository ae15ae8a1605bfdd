"""Tests for ``siteagents.agents.compliance``."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import ORG, PROJECT, days_ago, days_ahead

from siteagents.agents.base import as_datetime
from siteagents.agents.compliance import AUDIT_INTERVAL, ComplianceAgent
from siteagents.agents.data import InMemoryDomainStore
from siteagents.core.errors import ValidationError
from siteagents.execution.models import utcnow

CONTEXT = {"organizationId": ORG}


@pytest.fixture()
def store() -> InMemoryDomainStore:
    return InMemoryDomainStore({
        "compliance_records": [
            {
                "id": "audit-due",
                "organizationId": ORG,
                "projectId": PROJECT,
                "regulation": "CDM-2015",
                "status": "COMPLIANT",
                "aiMonitored": True,
                "nextAuditDate": days_ago(2),
            },
            {
                "id": "overdue",
                "organizationId": ORG,
                "regulation": "COSHH-2002",
                "status": "NON_COMPLIANT",
                "aiMonitored": True,
                "isViolation": True,
                "remediationStatus": "in_progress",
                "remediationDeadline": days_ago(1),
                "nextAuditDate": days_ahead(30),
                "violationDate": days_ago(10),
                "violationDetails": "Unlabelled solvents",
            },
            {
                "id": "in-remediation",
                "organizationId": ORG,
                "regulation": "WAHR-2005",
                "status": "REMEDIATION_IN_PROGRESS",
                "aiMonitored": True,
                "isViolation": True,
                "remediationStatus": "completed",
                "remediationDeadline": days_ago(1),
            },
            {
                "id": "unmonitored",
                "organizationId": ORG,
                "regulation": "RIDDOR-2013",
                "status": "COMPLIANT",
                "aiMonitored": False,
                "nextAuditDate": days_ago(5),
            },
            {
                "id": "other-org",
                "organizationId": "org-2",
                "regulation": "CDM-2015",
                "aiMonitored": True,
                "nextAuditDate": days_ago(5),
            },
        ]
    })


@pytest.fixture()
def agent(store) -> ComplianceAgent:
    return ComplianceAgent(store)


class TestMonitor:
    @pytest.mark.asyncio
    async def test_alerts(self, agent, store):
        result = await agent.execute({"action": "monitor"}, CONTEXT)

        alerts = {(a["recordId"], a["type"]) for a in result.output["alerts"]}
        assert alerts == {
            ("audit-due", "AUDIT_DUE"),
            ("overdue", "REMEDIATION_OVERDUE"),
            ("overdue", "VIOLATION_ACTIVE"),
        }
        assert result.output["totalRecords"] == 3
        assert result.output["violations"] == 2
        assert result.output["compliant"] == 1
        assert result.confidence == 0.9
        assert result.requires_review is False

        overdue = [a for a in result.output["alerts"] if a["type"] == "REMEDIATION_OVERDUE"]
        assert overdue[0]["priority"] == "critical"

    @pytest.mark.asyncio
    async def test_alerts_appended_to_records(self, agent, store):
        await agent.execute({"action": "monitor"}, CONTEXT)
        await agent.execute({"action": "monitor"}, CONTEXT)

        record = await store.get("compliance_records", "overdue")
        assert [a["type"] for a in record["aiAlerts"]] == [
            "REMEDIATION_OVERDUE",
            "VIOLATION_ACTIVE",
            "REMEDIATION_OVERDUE",
            "VIOLATION_ACTIVE",
        ]
        assert "detectedAt" in record["aiAlerts"][0]
        assert "aiAlerts" not in await store.get("compliance_records", "in-remediation")

    @pytest.mark.asyncio
    async def test_project_scope(self, agent):
        result = await agent.execute({"action": "monitor"}, {**CONTEXT, "projectId": PROJECT})
        assert result.output["totalRecords"] == 1
        assert [a["recordId"] for a in result.output["alerts"]] == ["audit-due"]

    @pytest.mark.asyncio
    async def test_no_records(self, agent):
        result = await agent.execute({"action": "monitor"}, {"organizationId": "org-empty"})
        assert result.output == {"alerts": [], "totalRecords": 0, "violations": 0, "compliant": 0}


class TestCheckViolation:
    @pytest.mark.asyncio
    async def test_all_violations(self, agent):
        result = await agent.execute({"action": "check_violation"}, CONTEXT)
        assert {v["id"] for v in result.output["violations"]} == {"overdue", "in-remediation"}
        assert result.output["total"] == 2
        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_single_regulation(self, agent):
        result = await agent.execute({"action": "check_violation", "regulation": "COSHH-2002"}, CONTEXT)
        [violation] = result.output["violations"]
        assert violation["details"] == "Unlabelled solvents"
        assert violation["remediationStatus"] == "in_progress"


class TestAudit:
    @pytest.mark.asyncio
    async def test_audits_every_record_in_scope(self, agent, store):
        result = await agent.execute({"action": "audit"}, CONTEXT)

        assert result.output["recordsAudited"] == 4
        assert result.output["summary"] == {"compliant": 2, "needsAttention": 2, "remediationRequired": 1}
        assert result.confidence == 0.95

        record = await store.get("compliance_records", "audit-due")
        assert len(record["auditLog"]) == 1
        delta = as_datetime(record["nextAuditDate"]) - as_datetime(record["lastAuditedAt"])
        assert delta == AUDIT_INTERVAL
        assert as_datetime(record["lastAuditedAt"]) <= utcnow()


class TestUpdateRegulation:
    @pytest.mark.asyncio
    async def test_creates_new_record(self, agent, store):
        result = await agent.execute(
            {"action": "update_regulation", "regulation": "HASAWA-1974", "status": "COMPLIANT"},
            {**CONTEXT, "projectId": PROJECT},
        )
        assert result.output["action"] == "created"
        assert result.tokens_used == 100
        record = result.output["record"]
        assert record["requirement"] == "Compliance requirement for Health and Safety at Work Act 1974"
        assert record["isViolation"] is False
        assert store.count("compliance_records") == 6

    @pytest.mark.asyncio
    async def test_marks_existing_non_compliant(self, agent, store):
        before = utcnow() - timedelta(seconds=1)
        result = await agent.execute(
            {"action": "update_regulation", "regulation": "CDM-2015", "status": "NON_COMPLIANT"},
            CONTEXT,
        )
        assert result.output["action"] == "updated"
        record = await store.get("compliance_records", "audit-due")
        assert record["status"] == "NON_COMPLIANT"
        assert record["isViolation"] is True
        assert as_datetime(record["violationDate"]) >= before

    @pytest.mark.asyncio
    async def test_requires_regulation_and_status(self, agent):
        with pytest.raises(ValidationError, match="Missing required field: status"):
            await agent.execute({"action": "update_regulation", "regulation": "CDM-2015"}, CONTEXT)


@pytest.mark.asyncio
async def test_unknown_action(agent):
    with pytest.raises(ValidationError, match="Unknown action: inspect"):
        await agent.execute({"action": "inspect"}, CONTEXT)
