"""
Structured error types for siteagents.

Every failure the dispatcher can observe is expressed as an ``AgentError``
subclass carrying a category, a retry hint, and structured context.  The
dispatcher turns these into FAILED execution records; ``to_dict()`` is what
ends up in ``ExecutionRecord.error_details``.

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────┐
        │                        AgentError                           │
        │        (category, retryable, context, cause)                │
        ├────────────────────────────────────────────────────────────┤
        │                                                             │
        │  ConfigurationError   ValidationError     NotFoundError     │
        │  (CONFIG)             (VALIDATION)        (SOURCE)          │
        │                                                             │
        │  HandlerFault         ExecutionCancelledError               │
        │  (HANDLER)            ExecutionTimeoutError (CANCELLED)     │
        │                                                             │
        │  StoreError ── RecordNotFoundError  (STORAGE)               │
        └────────────────────────────────────────────────────────────┘

    ``InvalidTransitionError`` lives in ``siteagents.execution.models``
    next to the state machine it guards.

Examples:
    >>> error = ValidationError("Missing required field: action", field="action")
    >>> error.to_dict()["category"]
    'VALIDATION'

    >>> try:
    ...     raise KeyError("supplier")
    ... except KeyError as e:
    ...     fault = HandlerFault.wrap(e, handler="Procurement Agent")
    >>> fault.context.handler
    'Procurement Agent'

Tags:
    error-handling, exception-hierarchy, error-context, siteagents
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONFIG = "CONFIG"  # Unknown category, bad settings
    VALIDATION = "VALIDATION"  # Missing input, unknown action
    SOURCE = "SOURCE"  # Domain record lookups
    HANDLER = "HANDLER"  # Unexpected handler faults
    CANCELLED = "CANCELLED"  # Caller cancellation, deadlines
    STORAGE = "STORAGE"  # Audit / domain store failures
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Typed fields cover what the dispatcher knows about an execution; any
    handler-specific detail goes into ``metadata``.
    """

    handler: str | None = None
    category: str | None = None
    action: str | None = None
    execution_id: str | None = None
    organization_id: str | None = None
    project_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging, dropping unset fields."""
        result = {}
        for key in ["handler", "category", "action", "execution_id", "organization_id", "project_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class AgentError(Exception):
    """Base exception for all siteagents errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override either per instance.  ``cause`` is chained onto
    ``__cause__`` so tracebacks keep the original exception.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> AgentError:
        """Add context to this error (fluent API).

        Usage:
            raise NotFoundError("Vendor not found").with_context(vendor_id="v-1")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# DISPATCH ERRORS
# =============================================================================


class ConfigurationError(AgentError):
    """Requested category has no registered handler.

    Reported before any audit record exists, so there is nothing to
    attribute it to.
    """

    default_category = ErrorCategory.CONFIG

    def __init__(self, message: str, *, category_name: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.category_name = category_name


class ValidationError(AgentError):
    """A handler's input check failed. Never retryable: the input must change."""

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class NotFoundError(AgentError):
    """A domain record a handler depends on does not exist."""

    default_category = ErrorCategory.SOURCE

    def __init__(self, message: str, *, collection: str | None = None, record_id: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.collection = collection
        self.record_id = record_id

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.collection:
            result["collection"] = self.collection
        if self.record_id:
            result["record_id"] = self.record_id
        return result


class HandlerFault(AgentError):
    """Unexpected exception raised while a handler ran."""

    default_category = ErrorCategory.HANDLER

    @classmethod
    def wrap(cls, error: BaseException, **context: Any) -> AgentError:
        """Return *error* unchanged if it is already typed, else wrap it."""
        if isinstance(error, AgentError):
            return error.with_context(**context) if context else error
        message = str(error) or error.__class__.__name__
        fault = cls(message, cause=error if isinstance(error, Exception) else None)
        fault.context.metadata["exception_type"] = error.__class__.__name__
        fault.context.metadata["traceback"] = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
        return fault.with_context(**context) if context else fault


class ExecutionCancelledError(AgentError):
    """The caller cancelled an in-flight execution."""

    default_category = ErrorCategory.CANCELLED


class ExecutionTimeoutError(ExecutionCancelledError):
    """An execution exceeded its deadline."""

    default_retryable = True

    def __init__(self, timeout_seconds: float, message: str | None = None, **kwargs: Any):
        self.timeout_seconds = timeout_seconds
        super().__init__(message or f"Execution timed out after {timeout_seconds:g}s", **kwargs)


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StoreError(AgentError):
    """Audit or domain store failure."""

    default_category = ErrorCategory.STORAGE


class RecordNotFoundError(StoreError):
    """No execution record with the given id."""

    def __init__(self, record_id: str, message: str | None = None):
        self.record_id = record_id
        super().__init__(message or f"Execution not found: {record_id}")


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, AgentError):
        return error.category
    if isinstance(error, (KeyError, TypeError, ValueError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "AgentError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "HandlerFault",
    "ExecutionCancelledError",
    "ExecutionTimeoutError",
    "StoreError",
    "RecordNotFoundError",
    "categorize_error",
]
