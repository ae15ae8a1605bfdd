"""
Shared pytest fixtures for siteagents tests.

This module provides:
- ``settings`` built without reading ``.env`` or the environment cache
- An empty ``InMemoryDomainStore`` and ``InMemoryAuditStore`` per test
- A dispatcher wired with all nine agents
- ``StubAgent`` / ``make_dispatcher`` for driving the dispatcher with
  hand-written agent behaviour

Usage:
    @pytest.mark.asyncio
    async def test_something(make_dispatcher):
        dispatcher = make_dispatcher(StubAgent("SAFETY"))
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from datetime import timedelta
from typing import Any

import pytest

from siteagents.agents.data import InMemoryDomainStore
from siteagents.core.settings import AgentSettings, ReviewThresholds
from siteagents.execution import (
    AgentCategory,
    AgentDispatcher,
    HandlerRegistry,
    HandlerResult,
    InMemoryAuditStore,
    build_default_registry,
)
from siteagents.execution.models import utcnow

ORG = "org-1"
PROJECT = "proj-1"


def days_ago(days: float) -> str:
    """ISO timestamp *days* in the past."""
    return (utcnow() - timedelta(days=days)).isoformat()


def days_ahead(days: float) -> str:
    return (utcnow() + timedelta(days=days)).isoformat()


class StubAgent:
    """Agent whose behaviour is supplied by the test.

    ``respond(input, context)`` may return a value or an awaitable, or raise.
    """

    actions = ("run",)

    def __init__(
        self,
        category: AgentCategory | str,
        respond: Callable[[dict[str, Any], dict[str, Any]], Any] | None = None,
        *,
        name: str | None = None,
    ):
        self.category = AgentCategory(category)
        self.name = name or self.category.display_name
        self._respond = respond or (lambda input, context: HandlerResult(output={"ok": True}, confidence=0.9))
        self.calls: list[tuple[dict[str, Any], dict[str, Any]]] = []

    async def execute(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.calls.append((input, context))
        result = self._respond(input, context)
        if inspect.isawaitable(result):
            result = await result
        return result


@pytest.fixture()
def settings(tmp_path) -> AgentSettings:
    return AgentSettings(
        _env_file=None,
        database_path=tmp_path / "ledger.db",
        history_default_limit=50,
        history_max_limit=200,
    )


@pytest.fixture()
def domain_store() -> InMemoryDomainStore:
    return InMemoryDomainStore()


@pytest.fixture()
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture()
def registry(domain_store) -> HandlerRegistry:
    return build_default_registry(domain_store, ReviewThresholds())


@pytest.fixture()
def dispatcher(registry, audit_store, settings) -> AgentDispatcher:
    return AgentDispatcher(registry, audit_store, settings=settings)


@pytest.fixture()
def make_dispatcher(audit_store, settings):
    """Factory: dispatcher over the given stub agents and the shared audit store."""

    def _make(*handlers: Any, **overrides: Any) -> AgentDispatcher:
        configured = settings.model_copy(update=overrides) if overrides else settings
        return AgentDispatcher(HandlerRegistry(list(handlers)), audit_store, settings=configured)

    return _make
