"""Handler Registry — category → agent lookup.

Manifesto:
The dispatcher needs to resolve ``AgentCategory.SAFETY`` to the agent
that handles it.  The registry decouples registration (once, at process
start) from resolution (at dispatch time).  It is read-only after
startup, so concurrent dispatches can look up handlers without locking.

ARCHITECTURE
────────────
::

    HandlerRegistry
      ├── .register(handler)        ─ store handler under handler.category
      ├── .get(category)            ─ O(1) lookup, ConfigurationError if absent
      ├── .has(category)            ─ existence check
      ├── .categories()             ─ registered categories
      └── .list_handlers()          ─ metadata for admin UIs / CLI

    build_default_registry(domain_store, thresholds)
      ─ wires all nine agents

Related modules:
    dispatcher.py — AgentDispatcher uses the registry
    agents/       — the concrete agents

Tags:
    siteagents, execution, registry, handler-registry, lookup
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from siteagents.core.errors import ConfigurationError
from siteagents.execution.models import AgentCategory

if TYPE_CHECKING:
    from siteagents.agents.base import AgentHandler


class HandlerRegistry:
    """Injectable handler registry.

    Example:
        >>> registry = HandlerRegistry()
        >>> registry.register(SafetyAgent(domain_store))
        >>> registry.get(AgentCategory.SAFETY).name
        'Safety Agent'
    """

    def __init__(self, handlers: list[AgentHandler] | None = None):
        self._handlers: dict[AgentCategory, AgentHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: AgentHandler, *, replace: bool = False) -> None:
        """Register a handler under its own category.

        Args:
            handler: Agent to register
            replace: Allow overwriting an existing registration

        Raises:
            ConfigurationError: If the category is already taken and
                ``replace`` is False
        """
        category = AgentCategory(handler.category)
        if category in self._handlers and not replace:
            raise ConfigurationError(
                f"Handler already registered for {category.value}",
                category_name=category.value,
            )
        self._handlers[category] = handler

    def get(self, category: AgentCategory | str) -> AgentHandler:
        """Get the handler for *category*.

        Raises:
            ConfigurationError: If the category is unknown or unregistered
        """
        resolved = AgentCategory.parse(category)
        if resolved is None or resolved not in self._handlers:
            name = category.value if isinstance(category, AgentCategory) else str(category)
            available = [c.value for c in self.categories()]
            raise ConfigurationError(
                f"Unknown agent type: {name}. Registered agents: {available or 'none'}",
                category_name=name,
            )
        return self._handlers[resolved]

    def has(self, category: AgentCategory | str) -> bool:
        """Check if a handler is registered for *category*."""
        resolved = AgentCategory.parse(category)
        return resolved is not None and resolved in self._handlers

    def categories(self) -> list[AgentCategory]:
        """Registered categories in declaration order."""
        return [c for c in AgentCategory if c in self._handlers]

    def list_handlers(self) -> list[dict[str, Any]]:
        """List handlers with their metadata.

        Useful for building documentation or admin UIs.
        """
        result = []
        for category in self.categories():
            handler = self._handlers[category]
            doc = (type(handler).__doc__ or "").strip()
            result.append({
                "category": category.value,
                "name": handler.name,
                "actions": list(getattr(handler, "actions", ())),
                "description": doc.splitlines()[0] if doc else None,
            })
        return result

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, category: object) -> bool:
        return isinstance(category, (AgentCategory, str)) and self.has(category)


def build_default_registry(domain_store, thresholds=None) -> HandlerRegistry:
    """Build the startup registry with all nine agents.

    Args:
        domain_store: ``DomainStore`` the agents read and write through
        thresholds: ``ReviewThresholds``; defaults from settings when None
    """
    from siteagents.agents import AGENT_CLASSES
    from siteagents.core.settings import get_settings

    thresholds = thresholds or get_settings().review
    return HandlerRegistry([cls(domain_store, thresholds=thresholds) for cls in AGENT_CLASSES])
