"""Decision agent: risk assessment, scenario modelling, option comparison."""

from __future__ import annotations

from typing import Any

from siteagents.agents.base import AgentToolkit
from siteagents.agents.data import DomainStore
from siteagents.core.settings import ReviewThresholds
from siteagents.execution.models import AgentCategory, HandlerResult

IMPACT_WEIGHTS = {"low": 0.3, "medium": 0.5, "high": 0.8, "critical": 1.0}


class DecisionAgent:
    """Risk assessment, scenario modelling, and recommendation generation."""

    name = "Decision Agent"
    category = AgentCategory.DECISION
    actions = ("assess_risk", "model_scenario", "generate_recommendation", "compare_options")

    def __init__(self, store: DomainStore, *, thresholds: ReviewThresholds | None = None):
        self.store = store
        self.thresholds = thresholds or ReviewThresholds()
        self.toolkit = AgentToolkit(self.name)

    async def execute(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        route = self.toolkit.resolve_action(input, {
            "assess_risk": self._assess_risk,
            "model_scenario": self._model_scenario,
            "generate_recommendation": self._generate_recommendation,
            "compare_options": self._compare_options,
        })
        return await route(input, context)

    async def _assess_risk(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["scenario"])
        scenario = input["scenario"]

        impact = str(scenario.get("impact", "medium")).lower()
        probability = float(scenario.get("probability", 0.5))
        overall = round((probability + IMPACT_WEIGHTS.get(impact, 0.5)) / 2, 4)

        assessment = {
            "overallRisk": overall,
            "riskFactors": list(scenario.get("riskFactors", [])),
            "impact": impact,
            "probability": probability,
            "mitigation": list(scenario.get("mitigation", [])),
        }
        return HandlerResult(
            output=assessment,
            confidence=0.8,
            requires_review=overall > self.thresholds.decision_overall_risk,
            tokens_used=self.toolkit.estimate_tokens(assessment),
        )

    async def _model_scenario(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["scenario"])
        models = {
            "bestCase": {"outcome": "positive", "probability": 0.3},
            "worstCase": {"outcome": "negative", "probability": 0.2},
            "mostLikely": {"outcome": "neutral", "probability": 0.5},
            "sensitivity": {"factors": list(input["scenario"].get("variables", []))},
        }
        return HandlerResult(output=models, confidence=0.75, tokens_used=self.toolkit.estimate_tokens(models))

    async def _generate_recommendation(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["decisionContext"])
        decision = input["decisionContext"]

        confidence = round(
            self.toolkit.calculate_confidence(
                data_quality=decision.get("dataQuality", 0.8),
                completeness=decision.get("completeness", 0.8),
                consistency=decision.get("consistency", 0.8),
            ),
            4,
        )
        recommendation = {
            "recommendedAction": "proceed" if confidence >= self.thresholds.decision_min_confidence else "gather_more_data",
            "rationale": "Based on analysis of available data",
            "alternatives": list(decision.get("alternatives", [])),
            "confidence": confidence,
        }
        return HandlerResult(
            output=recommendation,
            confidence=confidence,
            requires_review=confidence < self.thresholds.decision_min_confidence,
            tokens_used=self.toolkit.estimate_tokens(recommendation),
        )

    async def _compare_options(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["options"])
        comparison = [
            {
                "option": option,
                "score": float(option.get("score", 0.7)) if isinstance(option, dict) else 0.7,
                "pros": list(option.get("pros", [])) if isinstance(option, dict) else [],
                "cons": list(option.get("cons", [])) if isinstance(option, dict) else [],
                "risk": float(option.get("risk", 0.5)) if isinstance(option, dict) else 0.5,
            }
            for option in input["options"]
        ]
        comparison.sort(key=lambda c: c["score"], reverse=True)

        return HandlerResult(
            output={
                "comparison": comparison,
                "bestOption": comparison[0],
                "summary": f"Compared {len(comparison)} options; best score {comparison[0]['score']:.2f}",
            },
            confidence=0.85,
            tokens_used=self.toolkit.estimate_tokens(comparison),
        )
