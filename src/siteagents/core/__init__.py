"""Shared primitives: errors, logging, settings."""

from siteagents.core.errors import (
    AgentError,
    ConfigurationError,
    ErrorCategory,
    ErrorContext,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    HandlerFault,
    NotFoundError,
    RecordNotFoundError,
    StoreError,
    ValidationError,
)
from siteagents.core.logging import LogContext, configure_logging, get_logger
from siteagents.core.settings import AgentSettings, ReviewThresholds, get_settings

__all__ = [
    "AgentError",
    "ConfigurationError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutionCancelledError",
    "ExecutionTimeoutError",
    "HandlerFault",
    "NotFoundError",
    "RecordNotFoundError",
    "StoreError",
    "ValidationError",
    "LogContext",
    "configure_logging",
    "get_logger",
    "AgentSettings",
    "ReviewThresholds",
    "get_settings",
]
