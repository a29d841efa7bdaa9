"""Pydantic models for audit log writes, queries and responses."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class OperatingMode(StrEnum):
    ASSISTANT = "assistant"
    PROXY = "proxy"


class Persona(StrEnum):
    WORK = "work"
    PERSONAL = "personal"


ROLLBACK_ELIGIBLE_KEY = "_rollbackEligible"


class LogProxyActionRequest(BaseModel):
    """Request body for POST /v1/audit; the user comes from the caller identity."""

    authorization_id: str | None = None
    action: str = Field(..., description="Human-readable description of the action.")
    action_class: str
    mode: OperatingMode = OperatingMode.PROXY
    persona: Persona = Persona.WORK
    input: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] = Field(default_factory=dict)
    model_used: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    tokens_used: int | None = Field(default=None, ge=0)
    latency_ms: int | None = Field(default=None, ge=0)
    success: bool
    error: str | None = None
    user_confirmed: bool = False


class LogProxyActionParams(LogProxyActionRequest):
    """Everything recorded about one attempted action."""

    user_id: str = Field(..., min_length=1)


class AuditEntry(BaseModel):
    """Read-only view of an audit log row."""

    id: str
    user_id: str
    authorization_id: str | None
    action: str
    action_class: str
    mode: OperatingMode
    persona: str
    input: dict[str, Any] | None
    output: dict[str, Any] | None
    model_used: str | None
    confidence: int | None
    tokens_used: int | None
    latency_ms: int | None
    success: bool
    error: str | None
    user_confirmed: bool
    confirmed_at: datetime | None
    timestamp: datetime

    model_config = {"from_attributes": True}

    @property
    def rollback_eligible(self) -> bool:
        return bool((self.output or {}).get(ROLLBACK_ELIGIBLE_KEY, False))


class AuditQuery(BaseModel):
    """Filters for querying the audit log."""

    action_class: str | None = None
    mode: OperatingMode | None = None
    success: bool | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int | None = Field(default=None, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class AuditStats(BaseModel):
    total_actions: int = 0
    successful_actions: int = 0
    failed_actions: int = 0
    actions_by_class: dict[str, int] = Field(default_factory=dict)
    actions_by_mode: dict[str, int] = Field(default_factory=dict)
    average_confidence: float = 0.0  # percentage, over entries that carry one
    total_tokens_used: int = 0
    average_latency_ms: float = 0.0


class AuthorizationUsage(BaseModel):
    total_actions: int = 0
    last_used: datetime | None = None
    actions_today: int = 0
    actions_this_week: int = 0
