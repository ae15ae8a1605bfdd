"""Tests for ``siteagents.execution.registry``."""

from __future__ import annotations

import pytest
from conftest import StubAgent

from siteagents.agents.base import AgentHandler
from siteagents.core.errors import ConfigurationError
from siteagents.execution.models import AgentCategory
from siteagents.execution.registry import HandlerRegistry


class TestRegistration:
    def test_register_and_get(self):
        agent = StubAgent("SAFETY")
        registry = HandlerRegistry([agent])
        assert registry.get(AgentCategory.SAFETY) is agent
        assert registry.get("safety") is agent
        assert len(registry) == 1
        assert "SAFETY" in registry
        assert AgentCategory.DECISION not in registry

    def test_duplicate_rejected_unless_replace(self):
        registry = HandlerRegistry([StubAgent("SAFETY")])
        replacement = StubAgent("SAFETY", name="Other Safety Agent")
        with pytest.raises(ConfigurationError, match="already registered"):
            registry.register(replacement)
        registry.register(replacement, replace=True)
        assert registry.get("SAFETY").name == "Other Safety Agent"

    def test_unknown_category_lists_registered(self):
        registry = HandlerRegistry([StubAgent("SAFETY"), StubAgent("DECISION")])
        with pytest.raises(ConfigurationError) as exc_info:
            registry.get("WEATHER")
        assert exc_info.value.message == "Unknown agent type: WEATHER. Registered agents: ['SAFETY', 'DECISION']"
        assert exc_info.value.category_name == "WEATHER"

    def test_known_but_unregistered_category(self):
        registry = HandlerRegistry()
        assert not registry.has(AgentCategory.SAFETY)
        with pytest.raises(ConfigurationError, match="Unknown agent type: SAFETY"):
            registry.get(AgentCategory.SAFETY)


class TestDefaultRegistry:
    def test_all_nine_agents(self, registry):
        assert registry.categories() == list(AgentCategory)
        for category in AgentCategory:
            handler = registry.get(category)
            assert isinstance(handler, AgentHandler)
            assert handler.name == category.display_name

    def test_list_handlers_metadata(self, registry):
        listing = {h["category"]: h for h in registry.list_handlers()}
        assert listing["COMPLIANCE"]["actions"] == ["monitor", "check_violation", "audit", "update_regulation"]
        assert listing["PROCUREMENT"]["name"] == "Procurement Agent"
        assert listing["SAFETY"]["description"]
