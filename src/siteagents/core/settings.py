"""Runtime settings for siteagents.

Configuration is environment-driven (``SITEAGENTS_`` prefix, optional
``.env`` file) and validated once at startup.  Review thresholds are
policy, not contract: each agent decides whether its own result needs a
human, but the cut-off values it compares against live here so operators
can tune them without code changes.

Examples:
    >>> from siteagents.core.settings import AgentSettings
    >>> settings = AgentSettings(history_default_limit=25)
    >>> settings.review.procurement_min_score
    0.7

    Overriding a nested threshold from the environment::

        SITEAGENTS_REVIEW__SAFETY_OVERALL_RISK=0.5

Tags:
    settings, configuration, pydantic, environment, siteagents
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReviewThresholds(BaseModel):
    """Cut-offs agents use to flag a result for human review."""

    procurement_min_score: float = Field(0.7, ge=0.0, le=1.0)
    safety_overall_risk: float = Field(0.7, ge=0.0, le=1.0)
    decision_overall_risk: float = Field(0.7, ge=0.0, le=1.0)
    decision_min_confidence: float = Field(0.7, ge=0.0, le=1.0)
    due_diligence_min_score: float = Field(0.7, ge=0.0, le=1.0)
    due_diligence_financial_risk: float = Field(0.7, ge=0.0, le=1.0)
    review_severities: frozenset[str] = frozenset({"HIGH", "CRITICAL"})


class AgentSettings(BaseSettings):
    """Settings for the dispatcher, audit store, and transports.

    Fields
    ──────
    log_level               : structlog level
    json_logs               : JSON rendering (None = auto-detect tty)
    database_path           : SQLite audit ledger location
    history_default_limit   : rows returned by history when no limit given
    history_max_limit       : hard cap on history limit
    max_concurrency         : semaphore bound for execute_many (None = unbounded)
    default_timeout_seconds : per-execution deadline (None = no deadline)
    review                  : ReviewThresholds
    """

    model_config = SettingsConfigDict(
        env_prefix="SITEAGENTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Storage ──────────────────────────────────────────────────
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".siteagents" / "executions.db",
        description="SQLite file backing the execution audit ledger",
    )

    # ── Dispatch ─────────────────────────────────────────────────
    history_default_limit: int = Field(50, gt=0)
    history_max_limit: int = Field(200, gt=0)
    max_concurrency: int | None = Field(None, gt=0)
    default_timeout_seconds: float | None = Field(None, gt=0)

    review: ReviewThresholds = Field(default_factory=ReviewThresholds)


@lru_cache(maxsize=1)
def get_settings() -> AgentSettings:
    """Process-wide settings, loaded on first use."""
    return AgentSettings()
