"""Compliance agent: regulation monitoring, violations, audit trail.

Actions
───────
monitor            alerts over AI-monitored records in scope
check_violation    violations, optionally for one ``regulation``
audit              audit every record in scope, schedule the next audit
update_regulation  set ``status`` for a ``regulation`` (creates if absent)

Alert types raised by ``monitor``::

    AUDIT_DUE            nextAuditDate has passed                  high
    REMEDIATION_OVERDUE  remediationDeadline passed, not completed critical
    VIOLATION_ACTIVE     isViolation and remediation not started   high
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from siteagents.agents.base import AgentToolkit, as_datetime, as_iso, scope_filters
from siteagents.agents.data import DomainStore
from siteagents.core.settings import ReviewThresholds
from siteagents.execution.models import AgentCategory, HandlerResult, utcnow

AUDIT_INTERVAL = timedelta(days=90)

REGULATIONS = {
    "CDM-2015": "Construction Design and Management Regulations 2015",
    "HASAWA-1974": "Health and Safety at Work Act 1974",
    "RIDDOR-2013": "Reporting of Injuries, Diseases and Dangerous Occurrences Regulations 2013",
    "COSHH-2002": "Control of Substances Hazardous to Health Regulations 2002",
    "WAHR-2005": "Work at Height Regulations 2005",
}


class ComplianceAgent:
    """Real-time regulation monitoring, violation detection, and audit trail upkeep."""

    name = "Compliance Agent"
    category = AgentCategory.COMPLIANCE
    actions = ("monitor", "check_violation", "audit", "update_regulation")

    def __init__(self, store: DomainStore, *, thresholds: ReviewThresholds | None = None):
        self.store = store
        self.thresholds = thresholds or ReviewThresholds()
        self.toolkit = AgentToolkit(self.name)

    async def execute(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        route = self.toolkit.resolve_action(input, {
            "monitor": self._monitor,
            "check_violation": self._check_violation,
            "audit": self._audit,
            "update_regulation": self._update_regulation,
        })
        return await route(input, context)

    async def _monitor(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        records = await self.store.find("compliance_records", aiMonitored=True, **scope_filters(context))
        now = utcnow()
        alerts: list[dict[str, Any]] = []

        for record in records:
            regulation = record.get("regulation")
            found = []
            next_audit = as_datetime(record.get("nextAuditDate"))
            if next_audit is not None and next_audit <= now:
                found.append(_alert("AUDIT_DUE", record, f"Audit due for {regulation}", "high"))

            deadline = as_datetime(record.get("remediationDeadline"))
            if deadline is not None and deadline <= now and record.get("remediationStatus") != "completed":
                found.append(_alert("REMEDIATION_OVERDUE", record, f"Remediation overdue for {regulation}", "critical"))

            if record.get("isViolation") and record.get("status") != "REMEDIATION_IN_PROGRESS":
                found.append(_alert("VIOLATION_ACTIVE", record, f"Active violation: {regulation}", "high"))

            if found:
                history = [*record.get("aiAlerts", []), *({**a, "detectedAt": now.isoformat()} for a in found)]
                await self.store.update("compliance_records", record["id"], {"aiAlerts": history})
                alerts.extend(found)

        if alerts:
            self.toolkit.log("warning", "compliance.alerts_raised", alerts=len(alerts))

        return HandlerResult(
            output={
                "alerts": alerts,
                "totalRecords": len(records),
                "violations": sum(1 for r in records if r.get("isViolation")),
                "compliant": sum(1 for r in records if r.get("status") == "COMPLIANT"),
            },
            confidence=0.9,
            tokens_used=self.toolkit.estimate_tokens(alerts),
        )

    async def _check_violation(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        records = await self.store.find(
            "compliance_records",
            regulation=input.get("regulation"),
            **scope_filters(context),
        )
        violations = [r for r in records if r.get("isViolation") or r.get("status") == "NON_COMPLIANT"]
        return HandlerResult(
            output={
                "violations": [
                    {
                        "id": v["id"],
                        "regulation": v.get("regulation"),
                        "violationDate": as_iso(v.get("violationDate")),
                        "details": v.get("violationDetails"),
                        "remediationStatus": v.get("remediationStatus"),
                    }
                    for v in violations
                ],
                "total": len(violations),
            },
            confidence=1.0,
            tokens_used=self.toolkit.estimate_tokens(violations),
        )

    async def _audit(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        records = await self.store.find("compliance_records", **scope_filters(context))
        now = utcnow()

        results = []
        for record in records:
            entry = {
                "recordId": record["id"],
                "regulation": record.get("regulation"),
                "status": record.get("status"),
                "isViolation": bool(record.get("isViolation")),
                "lastAuditedAt": as_iso(record.get("lastAuditedAt")),
                "nextAuditDate": as_iso(record.get("nextAuditDate")),
                "auditDate": now.isoformat(),
                "findings": {
                    "compliant": record.get("status") == "COMPLIANT",
                    "needsAttention": record.get("status") == "NON_COMPLIANT" or bool(record.get("isViolation")),
                    "remediationRequired": bool(record.get("remediationStatus"))
                    and record.get("remediationStatus") != "completed",
                },
            }
            await self.store.update(
                "compliance_records",
                record["id"],
                {
                    "auditLog": [*record.get("auditLog", []), entry],
                    "lastAuditedAt": now,
                    "nextAuditDate": now + AUDIT_INTERVAL,
                },
            )
            results.append(entry)

        return HandlerResult(
            output={
                "auditDate": now.isoformat(),
                "recordsAudited": len(results),
                "results": results,
                "summary": {
                    "compliant": sum(1 for r in results if r["findings"]["compliant"]),
                    "needsAttention": sum(1 for r in results if r["findings"]["needsAttention"]),
                    "remediationRequired": sum(1 for r in results if r["findings"]["remediationRequired"]),
                },
            },
            confidence=0.95,
            tokens_used=self.toolkit.estimate_tokens(results),
        )

    async def _update_regulation(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["regulation", "status"])
        regulation, status = input["regulation"], input["status"]
        violating = status == "NON_COMPLIANT"

        existing = await self.store.find(
            "compliance_records",
            organizationId=context.get("organizationId"),
            regulation=regulation,
        )
        if not existing:
            record = await self.store.create(
                "compliance_records",
                {
                    "organizationId": context.get("organizationId"),
                    "projectId": context.get("projectId"),
                    "regulation": regulation,
                    "requirement": f"Compliance requirement for {REGULATIONS.get(regulation, regulation)}",
                    "status": status,
                    "isViolation": violating,
                },
            )
            action = "created"
        else:
            patch: dict[str, Any] = {"status": status, "isViolation": violating}
            if violating:
                patch["violationDate"] = utcnow()
            record = await self.store.update("compliance_records", existing[0]["id"], patch)
            action = "updated"

        return HandlerResult(output={"record": record, "action": action}, confidence=1.0, tokens_used=100)


def _alert(kind: str, record: dict[str, Any], message: str, priority: str) -> dict[str, Any]:
    return {
        "type": kind,
        "recordId": record["id"],
        "regulation": record.get("regulation"),
        "message": message,
        "priority": priority,
    }
