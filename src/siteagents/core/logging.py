"""
siteagents logging - structured logging for the dispatcher and agents.

Every log line emitted by the dispatcher carries the execution id and
agent category (bound with ``LogContext`` for the lifetime of one
dispatch), so a single ``execution.id`` filter in the log aggregator
reconstructs the lifecycle of one request.

Architecture:
    ::

        configure_logging(level="INFO", json_format=True, service="siteagents")
            │
            ▼
        structlog processor chain:
          1. TimeStamper(iso)
          2. merge_contextvars        (execution_id, category from LogContext)
          3. add_log_level / add_logger_name
          4. ServiceName(service)
          5. _ecs_field_names         (JSON mode only)
          6. JSONRenderer | ConsoleRenderer

    In JSON mode the dispatch fields are renamed to ECS-style dotted
    keys (``execution_id`` -> ``execution.id``, ``category`` ->
    ``agent.category``, ``handler`` -> ``agent.name``).

Examples:
    >>> from siteagents.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("agent.execute.start", category="SAFETY")

Tags:
    logging, structlog, observability, siteagents
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

ECS_FIELD_NAMES = {
    "timestamp": "@timestamp",
    "level": "log.level",
    "logger": "log.logger",
    "execution_id": "execution.id",
    "category": "agent.category",
    "handler": "agent.name",
}


class ServiceName:
    """Processor stamping ``service.name`` on every event."""

    def __init__(self, service: str = "siteagents"):
        self.service = service

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", self.service)
        return event_dict


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key, ecs_key in ECS_FIELD_NAMES.items():
        if key in event_dict:
            event_dict[ecs_key] = event_dict.pop(key)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "siteagents",
    add_timestamp: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog (and the stdlib root logger) for siteagents.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        json_format: JSON lines when True, coloured console when False;
            None picks JSON unless stdout is a terminal
        service: Value of ``service.name`` on every event
        add_timestamp: Prefix events with an ISO timestamp
        stream: Destination for log lines (default stdout); the CLI
            passes stderr so ``--json`` output stays parseable
    """
    threshold = getattr(logging, level.upper())
    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = []
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))
    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        ServiceName(service),
    ]
    if json_format:
        processors += [_ecs_field_names, structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=stream is None and sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=stream or sys.stdout, level=threshold)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind fields onto every later event of the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for the duration of a ``with`` / ``async with`` block.

    Fields are restored to their outer values on exit, so a batch-level
    context survives the per-execution contexts nested inside it.
    Context variables are per-task under asyncio; concurrent dispatches
    inside ``execute_many`` never see each other's ``execution_id``.

    Example:
        async with LogContext(execution_id="abc", category="SAFETY"):
            logger.info("agent.execute.start")
    """

    def __init__(self, **fields: Any):
        self._fields = fields
        self._outer: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        current = structlog.contextvars.get_contextvars()
        self._outer = {k: current[k] for k in self._fields if k in current}
        bind_context(**self._fields)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        unbind_context(*self._fields)
        if self._outer:
            bind_context(**self._outer)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


__all__ = [
    "ECS_FIELD_NAMES",
    "LogContext",
    "ServiceName",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
