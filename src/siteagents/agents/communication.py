"""Communication agent: sentiment, notifications, thread summaries, intent."""

from __future__ import annotations

from typing import Any

from siteagents.agents.base import AgentToolkit, as_iso
from siteagents.agents.data import DomainStore
from siteagents.core.errors import NotFoundError
from siteagents.core.settings import ReviewThresholds
from siteagents.execution.models import AgentCategory, HandlerResult

POSITIVE_WORDS = ("good", "great", "excellent", "approved", "success")
NEGATIVE_WORDS = ("bad", "poor", "failed", "rejected", "problem", "issue")
URGENT_WORDS = ("urgent", "asap", "immediate", "critical")


def text_sentiment(text: str) -> dict[str, Any]:
    """Keyword sentiment: 0.7 positive, 0.3 negative, 0.5 neutral."""
    lower = text.lower()
    positive = sum(1 for w in POSITIVE_WORDS if w in lower)
    negative = sum(1 for w in NEGATIVE_WORDS if w in lower)

    score = 0.5
    if positive > negative:
        score = 0.7
    elif negative > positive:
        score = 0.3

    label = "positive" if score > 0.6 else "negative" if score < 0.4 else "neutral"
    return {"score": score, "label": label, "confidence": 0.8}


def classify_intent(message: str) -> str:
    lower = message.lower()
    if "question" in lower or "?" in lower:
        return "question"
    if "request" in lower:
        return "request"
    if "approve" in lower or "approval" in lower:
        return "approval"
    return "general"


class CommunicationAgent:
    """Natural language processing, sentiment analysis, and automated notifications."""

    name = "Communication Agent"
    category = AgentCategory.COMMUNICATION
    actions = ("analyze_sentiment", "generate_notification", "summarize_conversation", "extract_intent")

    def __init__(self, store: DomainStore, *, thresholds: ReviewThresholds | None = None):
        self.store = store
        self.thresholds = thresholds or ReviewThresholds()
        self.toolkit = AgentToolkit(self.name)

    async def execute(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        route = self.toolkit.resolve_action(input, {
            "analyze_sentiment": self._analyze_sentiment,
            "generate_notification": self._generate_notification,
            "summarize_conversation": self._summarize_conversation,
            "extract_intent": self._extract_intent,
        })
        return await route(input, context)

    async def _analyze_sentiment(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["messageId"])
        message = await self.store.get("messages", input["messageId"])
        if message is None:
            raise NotFoundError("Message not found", collection="messages", record_id=input["messageId"])

        content = message.get("content") or ""
        sentiment = text_sentiment(content)
        await self.store.update("messages", message["id"], {"sentiment": sentiment})
        return HandlerResult(output=sentiment, confidence=0.85, tokens_used=self.toolkit.estimate_tokens(content))

    async def _generate_notification(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["event"])
        event = input["event"]
        severity = event.get("severity")

        notification = {
            "title": f"{event.get('type')}: {event.get('title') or 'New event'}",
            "message": event.get("description") or "A new event requires your attention",
            "priority": "urgent" if severity == "critical" else "high" if severity == "high" else "normal",
            "recipients": list(event.get("recipients", [])),
            "deliveryMethod": ["in-app"],
        }
        return HandlerResult(
            output=notification,
            confidence=0.9,
            tokens_used=self.toolkit.estimate_tokens(notification),
        )

    async def _summarize_conversation(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["threadId"])
        messages = await self.store.find("messages", threadId=input["threadId"])
        messages.sort(key=lambda m: as_iso(m.get("createdAt")) or "")

        participants = list(dict.fromkeys(m.get("userId") for m in messages))
        scores = [text_sentiment(m.get("content") or "")["score"] for m in messages]

        summary = {
            "totalMessages": len(messages),
            "participants": participants,
            "keyPoints": [(m.get("content") or "")[:100] for m in messages[:3]],
            "sentiment": {
                "average": sum(scores) / len(scores) if scores else None,
                "trend": "stable",
            },
            "decisions": [
                {"decision": m.get("decisionData"), "timestamp": as_iso(m.get("createdAt"))}
                for m in messages
                if m.get("isDecision")
            ],
            "actionItems": [],
        }
        return HandlerResult(output=summary, confidence=0.8, tokens_used=self.toolkit.estimate_tokens(summary))

    async def _extract_intent(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["message"])
        message = str(input["message"])
        lower = message.lower()

        intent = {
            "intent": classify_intent(message),
            "entities": [],
            "urgency": "high" if any(w in lower for w in URGENT_WORDS) else "normal",
            "category": "general",
        }
        return HandlerResult(output=intent, confidence=0.85, tokens_used=self.toolkit.estimate_tokens(message))


__all__ = ["CommunicationAgent", "classify_intent", "text_sentiment"]
