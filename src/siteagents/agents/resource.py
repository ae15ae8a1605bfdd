"""Resource agent: workforce utilization, equipment scheduling, skill matching."""

from __future__ import annotations

from typing import Any

from siteagents.agents.base import AgentToolkit
from siteagents.agents.data import DomainStore
from siteagents.core.settings import ReviewThresholds
from siteagents.execution.models import AgentCategory, HandlerResult

OPEN_TASK_STATUSES = frozenset({"PENDING", "IN_PROGRESS"})


class ResourceAgent:
    """Workforce optimization, equipment scheduling, and skill matching."""

    name = "Resource Agent"
    category = AgentCategory.RESOURCE
    actions = ("optimize_workforce", "schedule_equipment", "match_skills", "allocate_resources")

    def __init__(self, store: DomainStore, *, thresholds: ReviewThresholds | None = None):
        self.store = store
        self.thresholds = thresholds or ReviewThresholds()
        self.toolkit = AgentToolkit(self.name)

    async def execute(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        route = self.toolkit.resolve_action(input, {
            "optimize_workforce": self._optimize_workforce,
            "schedule_equipment": self._schedule_equipment,
            "match_skills": self._match_skills,
            "allocate_resources": self._allocate_resources,
        })
        return await route(input, context)

    async def _optimize_workforce(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        projects = await self.store.find("projects", organizationId=context.get("organizationId"), status="ACTIVE")

        capacity = 0
        open_tasks = 0
        skill_gaps: list[dict[str, Any]] = []
        for project in projects:
            members = await self.store.find("team_members", projectId=project["id"])
            capacity += len(members)
            open_tasks += sum(1 for t in project.get("tasks", []) if t.get("status") in OPEN_TASK_STATUSES)

            available = [s.lower() for m in members for s in m.get("skills", [])]
            for skill in project.get("requiredSkills", []):
                if not any(skill.lower() in s for s in available):
                    skill_gaps.append({"projectId": project["id"], "skill": skill})

        utilization = min(open_tasks / capacity, 1.0) if capacity else 0.0
        recommendations = []
        if utilization > 0.9:
            recommendations.append("High utilization - consider hiring additional staff")
        if utilization < 0.5:
            recommendations.append("Low utilization - consider reallocating resources")

        optimization = {
            "currentUtilization": utilization,
            "recommendations": recommendations,
            "skillGaps": skill_gaps,
            "reallocation": [],
        }
        return HandlerResult(
            output=optimization,
            confidence=0.85,
            requires_review=bool(skill_gaps),
            tokens_used=self.toolkit.estimate_tokens(optimization),
        )

    async def _schedule_equipment(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["equipmentRequirements"])
        schedule = {
            "assignments": [
                {
                    "equipment": req.get("type"),
                    "projectId": context.get("projectId"),
                    "startDate": req.get("startDate"),
                    "endDate": req.get("endDate"),
                    "status": "SCHEDULED",
                }
                for req in input["equipmentRequirements"]
            ],
            "conflicts": [],
            "recommendations": [],
        }
        return HandlerResult(
            output=schedule,
            confidence=0.8,
            tokens_used=self.toolkit.estimate_tokens(schedule),
        )

    async def _match_skills(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["requiredSkills"])
        required: list[str] = list(input["requiredSkills"])
        members = await self.store.find(
            "team_members",
            projectId=input.get("projectId") or context.get("projectId"),
        )

        matches = []
        for member in members:
            skills = [s.lower() for s in member.get("skills", [])]
            matched = [skill for skill in required if any(skill.lower() in s for s in skills)]
            matches.append({
                "userId": member.get("userId"),
                "userName": member.get("name") or member.get("user", {}).get("name"),
                "matchedSkills": matched,
                "matchScore": len(matched) / len(required),
                "efficiency": member.get("efficiency"),
            })
        matches.sort(key=lambda m: m["matchScore"], reverse=True)

        return HandlerResult(
            output={
                "matches": matches,
                "bestMatch": matches[0] if matches else None,
                "skillGaps": [s for s in required if not any(s in m["matchedSkills"] for m in matches)],
            },
            confidence=0.9,
            tokens_used=self.toolkit.estimate_tokens(matches),
        )

    async def _allocate_resources(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["resourceRequest"])
        request = input["resourceRequest"]
        allocation = {
            "resources": request.get("resources"),
            "allocation": {"status": "allocated"},
            "timeline": request.get("timeline"),
        }
        return HandlerResult(
            output=allocation,
            confidence=0.85,
            tokens_used=self.toolkit.estimate_tokens(allocation),
        )
