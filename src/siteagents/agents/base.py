"""
Agent contract - the protocol every agent satisfies plus shared helpers.

Agents are plain classes: they carry ``name`` and ``category`` attributes
and an ``async execute(input, context)`` method.  Common chores (input
checks, confidence scoring, token estimates, logging) live on a composed
``AgentToolkit`` rather than a base class, so an agent's only public
surface is the protocol.

Architecture:
    ::

        AgentHandler (Protocol)          AgentToolkit(name)
          name: str                        validate_input(input, required)
          category: AgentCategory          resolve_action(input, routes)
          execute(input, context)          calculate_confidence(...)
            -> HandlerResult               estimate_tokens(payload)
                                           log(level, message, **data)

Example:
    >>> class EchoAgent:
    ...     name = "Echo Agent"
    ...     category = AgentCategory.COMMUNICATION
    ...     async def execute(self, input, context):
    ...         return HandlerResult(output=input, confidence=1.0)
    >>> isinstance(EchoAgent(), AgentHandler)
    True

Tags:
    agents, protocol, toolkit, siteagents
"""

from __future__ import annotations

import json
import math
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from siteagents.core.errors import ValidationError
from siteagents.core.logging import get_logger
from siteagents.execution.models import AgentCategory, HandlerResult, utcnow

ActionRoute = Callable[[dict[str, Any], dict[str, Any]], Awaitable[HandlerResult]]


@runtime_checkable
class AgentHandler(Protocol):
    """Anything the registry can dispatch to."""

    name: str
    category: AgentCategory

    async def execute(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        """Run the agent.

        Raises:
            ValidationError: Missing input or unknown action.
            NotFoundError: A domain record the action needs is absent.
        """
        ...


class AgentToolkit:
    """Helpers shared by all agents, bound to one agent's name."""

    def __init__(self, name: str):
        self.name = name
        self._logger = get_logger("siteagents.agents").bind(handler=name)

    def validate_input(self, input: Mapping[str, Any], required: Iterable[str]) -> None:
        """Raise ``ValidationError`` for the first missing or empty field."""
        for key in required:
            value = input.get(key)
            if value is None or value == "" or value == [] or value == {}:
                raise ValidationError(f"Missing required field: {key}", field=key)

    def resolve_action(self, input: Mapping[str, Any], routes: Mapping[str, ActionRoute]) -> ActionRoute:
        """Pick the coroutine for ``input["action"]``."""
        self.validate_input(input, ["action"])
        action = input["action"]
        route = routes.get(action)
        if route is None:
            raise ValidationError(f"Unknown action: {action}", field="action", value=action)
        return route

    @staticmethod
    def calculate_confidence(
        data_quality: float = 1.0,
        completeness: float = 1.0,
        consistency: float = 1.0,
    ) -> float:
        """Mean of the three signals, clamped to [0, 1]."""
        return max(0.0, min(1.0, (data_quality + completeness + consistency) / 3))

    @staticmethod
    def estimate_tokens(payload: Any) -> int:
        """Rough token count, about four characters per token."""
        text = payload if isinstance(payload, str) else json.dumps(payload, sort_keys=True, default=str)
        return math.ceil(len(text) / 4)

    def log(self, level: str, message: str, **data: Any) -> None:
        getattr(self._logger, level)(message, **data)


def as_datetime(value: Any) -> datetime | None:
    """Coerce a stored timestamp (datetime or ISO string) to aware UTC."""
    if value is None:
        return None
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


def as_iso(value: Any) -> str | None:
    dt = as_datetime(value)
    return dt.isoformat() if dt else None


def utcnow_iso() -> str:
    return utcnow().isoformat()


def scope_filters(context: Mapping[str, Any], *, include_project: bool = True) -> dict[str, Any]:
    """Domain-store filters for the caller's organization and project."""
    filters = {"organizationId": context.get("organizationId")}
    if include_project and context.get("projectId"):
        filters["projectId"] = context["projectId"]
    return filters


__all__ = [
    "ActionRoute",
    "AgentHandler",
    "AgentToolkit",
    "as_datetime",
    "as_iso",
    "scope_filters",
    "utcnow_iso",
]
